"""Per-caller calendar permissions.

Permissions are granted per caller, not globally: a calendar maps each user
to a role, and each role grants a set of operations. Callers are identified
by email; a user may sign in with any of their configured addresses.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import get_args

from oneweek.config import AccessConfig, CalendarConfig, Permission
from oneweek.errors import PermissionDeniedError

ALL_PERMISSIONS: frozenset[str] = frozenset(get_args(Permission))


@dataclass(frozen=True)
class CalendarSource:
    """A calendar as presented to one caller.

    Attributes:
        id: Remote calendar ID
        name: Display name
        color: Display color
        permissions: Operations the caller may perform on this calendar
    """

    id: str
    name: str
    color: str
    permissions: frozenset[str]

    def allows(self, permission: Permission) -> bool:
        return permission in self.permissions


class AccessPolicy:
    """Answers permission questions against an :class:`AccessConfig`."""

    def __init__(self, config: AccessConfig) -> None:
        self.config = config
        self._by_email = {
            email.lower(): user_id
            for user_id, user in config.users.items()
            for email in user.emails
        }
        self._calendars = {calendar.id: calendar for calendar in config.calendars}

    def user_id_for(self, email: str) -> str | None:
        """Return the user ID an email belongs to, or None if unknown."""
        return self._by_email.get(email.lower())

    def is_allowed(self, email: str) -> bool:
        return self.user_id_for(email) is not None

    def emails_for(self, user_id: str) -> list[str]:
        user = self.config.users.get(user_id)
        return list(user.emails) if user else []

    def permissions_for(self, email: str, calendar_id: str) -> frozenset[str]:
        """All operations ``email`` may perform on ``calendar_id``."""
        user_id = self.user_id_for(email)
        calendar = self._calendars.get(calendar_id)
        if user_id is None or calendar is None:
            return frozenset()
        role = calendar.permissions.get(user_id)
        if role is None:
            return frozenset()
        return frozenset(self.config.roles.get(role, ()))

    def has_permission(self, email: str, calendar_id: str, permission: Permission) -> bool:
        return permission in self.permissions_for(email, calendar_id)

    def require(self, email: str, calendar_id: str, permission: Permission) -> None:
        """Raise unless ``email`` holds ``permission`` on ``calendar_id``.

        Raises:
            PermissionDeniedError: If the permission is missing
        """
        if not self.has_permission(email, calendar_id, permission):
            raise PermissionDeniedError(
                f"No permission to {permission} events in calendar {calendar_id}",
                calendar_id=calendar_id,
                permission=permission,
            )

    def calendars_for(self, email: str) -> list[CalendarSource]:
        """Calendars the caller has any role on, with their permissions."""
        user_id = self.user_id_for(email)
        if user_id is None:
            return []
        return [
            self._source(calendar, email)
            for calendar in self.config.calendars
            if user_id in calendar.permissions
        ]

    def _source(self, calendar: CalendarConfig, email: str) -> CalendarSource:
        return CalendarSource(
            id=calendar.id,
            name=calendar.name,
            color=calendar.color,
            permissions=self.permissions_for(email, calendar.id),
        )


class AllowAll(AccessPolicy):
    """Policy granting every permission on every calendar (single-user setups).

    Args:
        calendar_ids: Calendars reported by :meth:`calendars_for`
    """

    def __init__(self, calendar_ids: Iterable[str] = ()) -> None:
        super().__init__(
            AccessConfig(
                users={},
                roles={},
                calendars=[CalendarConfig(id=cid, name=cid) for cid in calendar_ids],
            )
        )

    def user_id_for(self, email: str) -> str | None:
        return email

    def permissions_for(self, email: str, calendar_id: str) -> frozenset[str]:
        return ALL_PERMISSIONS

    def calendars_for(self, email: str) -> list[CalendarSource]:
        return [self._source(calendar, email) for calendar in self.config.calendars]


__all__ = ["ALL_PERMISSIONS", "CalendarSource", "AccessPolicy", "AllowAll"]
