"""Event operations exposed to the board.

EventService is the single entry point a UI (or HTTP layer) uses to read and
change events. Each mutation:

1. checks the caller's calendar permissions (before any remote call)
2. applies an optimistic patch to the affected week(s) of the cache
3. performs the remote call(s) through the store or the series router
4. confirms the patches on success, or rolls them back before re-raising

Mutations whose effect on other occurrences cannot be simulated locally
(whole-series and this-and-future edits, new recurring events) skip step 2
and invalidate the affected weeks once the remote calls settle.

Mutations against the same event are queued: a second one waits until the
first has settled.
"""

import asyncio
import logging
import uuid
from collections import Counter
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import date, datetime
from typing import TypeVar
from zoneinfo import ZoneInfo

from oneweek.cache import (
    EventKey,
    MutationCache,
    Patch,
    RemovePatch,
    ReplacePatch,
    UpsertPatch,
)
from oneweek.drag import Drop, MoveOp, TimeUpdateOp, route
from oneweek.errors import MutationError, OneWeekError, SeriesSplitError, ValidationError
from oneweek.event import Event, EventChanges
from oneweek.permissions import AccessPolicy, AllowAll, CalendarSource
from oneweek.recurrence import RecurrenceRule, to_recurrence
from oneweek.series import SeriesEditRouter, SeriesIntent, check_scope
from oneweek.store import EventStore
from oneweek.util import week_bounds, week_key, week_start

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

Staged = list[tuple[str, Patch]]


def placeholder_id() -> str:
    """Cache-local ID for an event the store has not created yet."""
    return f"local-{uuid.uuid4().hex}"


class EventService:
    """Permission-checked, optimistically cached event operations for one caller."""

    def __init__(
        self,
        store: EventStore,
        policy: AccessPolicy | None = None,
        email: str = "",
        *,
        zone: ZoneInfo | None = None,
        cache: MutationCache | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Remote event store (one shared client)
            policy: Access policy (default: allow everything on every calendar
                the store reports)
            email: Email of the caller the policy is checked against
            zone: Zone defining day and week boundaries on the board
            cache: Week cache (default: a new cache loading from ``store``)
        """
        self.store = store
        self.policy = policy if policy is not None else AllowAll()
        self._discover_calendars = policy is None
        self.email = email
        self.zone = zone
        self.cache = cache if cache is not None else MutationCache(self.load_week, zone)
        self.router = SeriesEditRouter(store)
        self._locks: dict[EventKey, asyncio.Lock] = {}
        self._lock_users: Counter[EventKey] = Counter()

    # Reads

    def calendars(self) -> list[CalendarSource]:
        """Calendars the caller can see, with their permissions."""
        return self.policy.calendars_for(self.email)

    def readable_calendar_ids(self) -> list[str]:
        return [c.id for c in self.calendars() if c.allows("read")]

    async def discover_calendars(self) -> list[CalendarSource]:
        """Open every calendar the store reports under the default policy.

        Called on the first load when the service was built without a policy.
        """
        infos = await self.store.list_calendars()
        self.policy = AllowAll([info.id for info in infos])
        self._discover_calendars = False
        logger.debug("Discovered %d calendars", len(infos))
        return self.calendars()

    async def load_week(self, key: str) -> list[Event]:
        """Load a week from the store (the cache's loader)."""
        if self._discover_calendars:
            await self.discover_calendars()
        time_min, time_max = week_bounds(key)
        return await self.store.list_many(self.readable_calendar_ids(), time_min, time_max)

    async def list_week(self, moment: datetime | date | str) -> tuple[Event, ...]:
        """Return the events of the week containing ``moment`` (or of a week key)."""
        key = moment if isinstance(moment, str) else week_key(moment, self.zone)
        return await self.cache.fetch(key)

    async def get_event(self, calendar_id: str, event_id: str) -> Event:
        self.policy.require(self.email, calendar_id, "read")
        return await self._current(calendar_id, event_id)

    # Mutations

    async def create_event(
        self,
        calendar_id: str,
        *,
        title: str,
        start: datetime,
        end: datetime,
        all_day: bool = False,
        description: str | None = None,
        recurrence: RecurrenceRule | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> Event:
        """Create an event (a series master when ``recurrence`` is given).

        Raises:
            PermissionDeniedError: Without create permission on the calendar
            ValidationError: If the event or rule is malformed
        """
        self.policy.require(self.email, calendar_id, "create")
        event = Event(
            id=placeholder_id(),
            calendar_id=calendar_id,
            title=title,
            description=description,
            start=start,
            end=end,
            all_day=all_day,
            recurrence=tuple(to_recurrence(recurrence)) if recurrence else None,
            metadata=dict(metadata or {}),
        )
        if event.is_master:
            created = await self.store.insert_event(calendar_id, event)
            self._invalidate_from(created.start)
        else:
            created = await self._commit(
                self._stage(None, event),
                lambda: self.store.insert_event(calendar_id, event),
            )
        logger.info("Created %s on %s", created.id, calendar_id)
        return created

    async def update_event(
        self,
        calendar_id: str,
        event_id: str,
        changes: EventChanges,
        scope: str | None = None,
    ) -> Event:
        """Change an event, or a recurring series per ``scope``.

        Args:
            calendar_id: Calendar owning the event
            event_id: Event or occurrence to change
            changes: Fields to change
            scope: "this" (default), "all" or "future"; ignored for events
                that are not part of a series

        Returns:
            The event the user now sees in place of the original

        Raises:
            PermissionDeniedError: Without update permission on the calendar
            NotFoundError: If the event (or its series master) is gone
            SeriesSplitError: If a multi-step series change failed part-way
        """
        mode = check_scope(scope)
        self.policy.require(self.email, calendar_id, "update")
        intent = SeriesIntent(calendar_id=calendar_id, occurrence_id=event_id, changes=changes)

        async with self._locked((calendar_id, event_id)):
            current = await self._current(calendar_id, event_id)
            if current.is_recurring and not (mode == "this" and current.is_occurrence):
                return await self._series_wide(intent, mode, current)

            after = changes.apply_to(current)
            if current.is_recurring:
                # A standalone copy takes the occurrence's place
                copy = replace(after, id=placeholder_id(), recurring_event_id=None)
                staged = self._stage(None, copy) + self._stage(current, None)
            else:
                staged = self._stage(current, after)
            try:
                updated = await self._commit(
                    staged, lambda: self._route(intent, mode, current)
                )
            except SeriesSplitError:
                # Part of the change reached the store; reload what it holds
                for key, _ in staged:
                    self.cache.invalidate(key)
                raise
            assert updated is not None
            return updated

    async def delete_event(
        self, calendar_id: str, event_id: str, scope: str | None = None
    ) -> None:
        """Delete an event, or part of a recurring series per ``scope``.

        Raises:
            PermissionDeniedError: Without delete permission on the calendar
            NotFoundError: If the event (or its series master) is gone
        """
        mode = check_scope(scope)
        self.policy.require(self.email, calendar_id, "delete")
        intent = SeriesIntent(calendar_id=calendar_id, occurrence_id=event_id, delete=True)

        async with self._locked((calendar_id, event_id)):
            current = await self._current(calendar_id, event_id)
            if current.is_recurring and not (mode == "this" and current.is_occurrence):
                await self._series_wide(intent, mode, current)
                return
            await self._commit(
                self._stage(current, None), lambda: self._route(intent, mode, current)
            )

    async def move_event(
        self, source_calendar_id: str, event_id: str, target_calendar_id: str
    ) -> Event:
        """Move an event to another calendar.

        The event gets a new ID on the target calendar; the cache swaps the
        old identity for the new one once the store confirms.

        Raises:
            PermissionDeniedError: Without delete permission on the source or
                create permission on the target
        """
        self.policy.require(self.email, source_calendar_id, "delete")
        self.policy.require(self.email, target_calendar_id, "create")
        if source_calendar_id == target_calendar_id:
            raise ValidationError(
                f"Event {event_id} is already on calendar {target_calendar_id}"
            )

        async with self._locked((source_calendar_id, event_id)):
            current = await self._current(source_calendar_id, event_id)
            moved = replace(current, calendar_id=target_calendar_id, recurring_event_id=None)
            created = await self._commit(
                self._stage(current, moved),
                lambda: self.store.move_event(source_calendar_id, event_id, target_calendar_id),
            )
        logger.info(
            "Moved %s from %s to %s as %s",
            event_id,
            source_calendar_id,
            target_calendar_id,
            created.id,
        )
        return created

    async def apply_drop(self, calendar_id: str, event_id: str, drop: Drop) -> Event:
        """Carry out a drag-and-drop of an event.

        Operations run in order, each awaited before the next. After a move,
        later operations target the moved event's new calendar and ID.

        Returns:
            The event as it ends up (unchanged if the drop changes nothing)

        Raises:
            PermissionDeniedError: If any operation of the drop is not
                permitted (checked before the first write)
            MutationError: If an operation fails after an earlier one was
                committed
        """
        self.policy.require(self.email, calendar_id, "read")
        event = await self._current(calendar_id, event_id)
        ops = route(event, drop, self.zone)
        for op in ops:
            if isinstance(op, MoveOp):
                self.policy.require(self.email, op.source_calendar_id, "delete")
                self.policy.require(self.email, op.target_calendar_id, "create")
            else:
                self.policy.require(self.email, op.calendar_id, "update")

        done: list[str] = []
        for op in ops:
            try:
                if isinstance(op, MoveOp):
                    event = await self.move_event(
                        op.source_calendar_id, event.id, op.target_calendar_id
                    )
                    done.append(f"moved to {op.target_calendar_id}")
                elif isinstance(op, TimeUpdateOp):
                    changes = EventChanges(start=op.start, end=op.end, all_day=op.all_day)
                    event = await self.update_event(event.calendar_id, event.id, changes)
                    done.append(f"rescheduled to {op.start.isoformat()}")
            except OneWeekError as exc:
                if not done:
                    raise
                raise MutationError([exc], completed=done) from exc
        return event

    # Helpers

    async def _current(self, calendar_id: str, event_id: str) -> Event:
        cached = self.cache.find((calendar_id, event_id))
        if cached is not None:
            return cached
        return await self.store.get_event(calendar_id, event_id)

    async def _route(self, intent: SeriesIntent, mode: str, current: Event) -> Event | None:
        return await self.router.apply(intent, mode, occurrence=current)  # type: ignore[arg-type]

    async def _series_wide(
        self, intent: SeriesIntent, mode: str, current: Event
    ) -> Event | None:
        try:
            return await self._route(intent, mode, current)
        finally:
            if mode == "future":
                self._invalidate_from(current.start)
            else:
                self._invalidate_all()

    def _stage(self, before: Event | None, after: Event | None) -> Staged:
        """Patches turning ``before`` into ``after`` in the cache.

        An event whose week changes gets a removal in its old week and an
        insertion in its new one; each week is resolved independently.
        """
        if before is None and after is None:
            return []
        if before is None:
            assert after is not None
            return [(self.cache.key_for(after), UpsertPatch(after))]
        if after is None:
            return [(self.cache.key_for(before), RemovePatch(before.key))]

        old_week, new_week = self.cache.key_for(before), self.cache.key_for(after)
        if old_week != new_week:
            return [(old_week, RemovePatch(before.key)), (new_week, UpsertPatch(after))]
        if before.key != after.key:
            return [(new_week, ReplacePatch(before.key, after))]
        return [(new_week, UpsertPatch(after))]

    async def _commit(self, staged: Staged, call: Callable[[], Awaitable[_T]]) -> _T:
        for key, patch in staged:
            self.cache.optimistic_apply(key, patch)
        try:
            result = await call()
        except Exception:
            for key, patch in staged:
                self.cache.rollback(key, patch)
            raise
        for key, patch in staged:
            server = result if isinstance(result, Event) else None
            self.cache.confirm(key, patch, server)
        return result

    def _invalidate_all(self) -> None:
        for key in self.cache.keys():
            self.cache.invalidate(key)

    def _invalidate_from(self, moment: datetime) -> None:
        first = week_start(moment, self.zone)
        for key in self.cache.keys():
            if week_bounds(key)[1] > first:
                self.cache.invalidate(key)

    @asynccontextmanager
    async def _locked(self, key: EventKey) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                # Nobody holds or awaits the lock any more
                del self._lock_users[key]
                del self._locks[key]


__all__ = ["EventService", "placeholder_id"]
