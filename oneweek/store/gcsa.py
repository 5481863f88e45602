"""Google Calendar event store.

This module provides GoogleCalendarStore, an EventStore that reads from and
writes to Google Calendar via the gcsa library. gcsa is synchronous, so each
call runs in a worker thread to keep the event loop responsive.
"""

import logging
from collections.abc import Mapping
from datetime import date, datetime, time, timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from gcsa.event import Event as GcsaEvent
from gcsa.google_calendar import GoogleCalendar
from google.oauth2 import service_account
from typing_extensions import override

from oneweek.errors import RemoteError
from oneweek.event import Event
from oneweek.remote import remote_call
from oneweek.store import CalendarInfo, EventStore, check_patch

logger = logging.getLogger(__name__)

CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]

_UTC_TIMEZONE = "UTC"


def _zone_name(moment: datetime) -> str:
    """IANA name of a datetime's zone, falling back to UTC."""
    tz = moment.tzinfo
    if isinstance(tz, ZoneInfo):
        return tz.key
    return _UTC_TIMEZONE


def _event_zone(gcsa_event: Any) -> tzinfo:
    name = getattr(gcsa_event, "timezone", None)
    return ZoneInfo(name) if name else timezone.utc


def _is_all_day_event(gcsa_event: Any) -> bool:
    """Check if a gcsa event is an all-day event.

    gcsa gives all-day events ``date`` starts and timed events ``datetime``
    starts (datetime is a subclass of date, so check it first).
    """
    return not isinstance(gcsa_event.start, datetime) and isinstance(
        gcsa_event.start, date
    )


def _to_instant(value: datetime | date, zone: tzinfo) -> datetime:
    """Normalize a gcsa start/end to an aware datetime.

    Dates become midnight UTC (all-day semantics are date-only); naive
    datetimes are interpreted in the event's own zone.
    """
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    return value


def _extract_metadata(gcsa_event: Any) -> dict[str, str]:
    other = getattr(gcsa_event, "other", None) or {}
    private = (other.get("extendedProperties") or {}).get("private") or {}
    return {str(k): str(v) for k, v in private.items() if v is not None}


def _from_gcsa(gcsa_event: Any, calendar_id: str) -> Event:
    """Convert a gcsa event to an Event."""
    zone = _event_zone(gcsa_event)
    return Event(
        id=gcsa_event.id,
        calendar_id=calendar_id,
        title=gcsa_event.summary or "Untitled",
        description=gcsa_event.description or None,
        start=_to_instant(gcsa_event.start, zone),
        end=_to_instant(gcsa_event.end, zone),
        all_day=_is_all_day_event(gcsa_event),
        recurrence=tuple(gcsa_event.recurrence) if gcsa_event.recurrence else None,
        recurring_event_id=getattr(gcsa_event, "recurring_event_id", None),
        metadata=_extract_metadata(gcsa_event),
    )


def _boundaries(event: Event) -> tuple[datetime | date, datetime | date]:
    if event.all_day:
        return event.start.date(), event.end.date()
    return event.start, event.end


def _to_gcsa(event: Event) -> GcsaEvent:
    """Convert an Event to a new gcsa event (no ID)."""
    start, end = _boundaries(event)
    other: dict[str, Any] = {}
    if event.metadata:
        other["extendedProperties"] = {"private": dict(event.metadata)}
    return GcsaEvent(
        summary=event.title,
        start=start,
        end=end,
        timezone=_zone_name(event.start) if not event.all_day else _UTC_TIMEZONE,
        description=event.description,
        recurrence=list(event.recurrence) if event.recurrence else None,
        **other,
    )


def _apply_patch(gcsa_event: Any, current: Event, fields: Mapping[str, Any]) -> None:
    """Write patched fields onto a fetched gcsa event in place."""
    if "title" in fields:
        gcsa_event.summary = fields["title"]
    if "description" in fields:
        gcsa_event.description = fields["description"]
    if "recurrence" in fields:
        recurrence = fields["recurrence"]
        gcsa_event.recurrence = list(recurrence) if recurrence else []
    if "metadata" in fields:
        other = getattr(gcsa_event, "other", None)
        if other is None:
            other = {}
            gcsa_event.other = other
        other["extendedProperties"] = {"private": dict(fields["metadata"])}

    if {"start", "end", "all_day"} & set(fields):
        all_day = fields.get("all_day", current.all_day)
        start = fields.get("start", current.start)
        end = fields.get("end", current.end)
        if all_day:
            gcsa_event.start, gcsa_event.end = start.date(), end.date()
        else:
            gcsa_event.start, gcsa_event.end = start, end
            gcsa_event.timezone = _zone_name(start)


class GoogleCalendarStore(EventStore):
    """Event store backed by the Google Calendar API.

    One authenticated client is shared by every calendar; pass it in (or use
    :func:`connect`) rather than building one per call.
    """

    def __init__(self, client: GoogleCalendar) -> None:
        """Initialize the store.

        Args:
            client: Authenticated gcsa client (any calendar as its default)
        """
        self.client = client

    @override
    def __str__(self) -> str:
        return f"GoogleCalendarStore(default='{self.client.default_calendar}')"

    @override
    async def list_calendars(self) -> list[CalendarInfo]:
        return await self._list_calendars()

    @remote_call("List calendars")
    def _list_calendars(self) -> list[CalendarInfo]:
        return [
            CalendarInfo(
                id=entry.id,
                summary=getattr(entry, "summary_override", None) or entry.summary,
                color=getattr(entry, "background_color", None),
            )
            for entry in self.client.get_calendar_list()
            if entry.id is not None and entry.summary is not None
        ]

    @override
    async def list_events(
        self, calendar_id: str, time_min: datetime, time_max: datetime
    ) -> list[Event]:
        return await self._list_events(calendar_id, time_min, time_max)

    @remote_call("List events")
    def _list_events(
        self, calendar_id: str, time_min: datetime, time_max: datetime
    ) -> list[Event]:
        events = self.client.get_events(
            time_min=time_min,
            time_max=time_max,
            single_events=True,
            order_by="startTime",
            calendar_id=calendar_id,
        )
        return [
            _from_gcsa(e, calendar_id)
            for e in events
            if e.id is not None and e.start is not None and e.end is not None
        ]

    @override
    async def get_event(self, calendar_id: str, event_id: str) -> Event:
        gcsa_event = await self._get_raw(calendar_id, event_id)
        return _from_gcsa(gcsa_event, calendar_id)

    @remote_call("Get event")
    def _get_raw(self, calendar_id: str, event_id: str) -> Any:
        return self.client.get_event(event_id, calendar_id=calendar_id)

    @override
    async def insert_event(self, calendar_id: str, event: Event) -> Event:
        return await self._insert(calendar_id, event)

    @remote_call("Insert event")
    def _insert(self, calendar_id: str, event: Event) -> Event:
        created = self.client.add_event(_to_gcsa(event), calendar_id=calendar_id)
        if not created.id:
            raise RemoteError("Google Calendar did not return an event ID")
        return _from_gcsa(created, calendar_id)

    @override
    async def patch_event(
        self, calendar_id: str, event_id: str, fields: Mapping[str, Any]
    ) -> Event:
        check_patch(fields)
        return await self._patch(calendar_id, event_id, dict(fields))

    @remote_call("Patch event")
    def _patch(self, calendar_id: str, event_id: str, fields: dict[str, Any]) -> Event:
        gcsa_event = self.client.get_event(event_id, calendar_id=calendar_id)
        current = _from_gcsa(gcsa_event, calendar_id)
        _apply_patch(gcsa_event, current, fields)
        updated = self.client.update_event(gcsa_event, calendar_id=calendar_id)
        return _from_gcsa(updated, calendar_id)

    @override
    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        await self._delete(calendar_id, event_id)

    @remote_call("Delete event")
    def _delete(self, calendar_id: str, event_id: str) -> None:
        self.client.delete_event(event_id, calendar_id=calendar_id)


def connect(credentials_path: str, default_calendar: str = "primary") -> GoogleCalendarStore:
    """Build a store authenticated with a service-account key file.

    Args:
        credentials_path: Path to the service account's JSON key
        default_calendar: Calendar ID the client uses when none is given

    Returns:
        GoogleCalendarStore sharing one authenticated client
    """
    credentials = service_account.Credentials.from_service_account_file(
        credentials_path, scopes=CALENDAR_SCOPES
    )
    client = GoogleCalendar(default_calendar, credentials=credentials)
    logger.info("Connected to Google Calendar as %s", credentials.service_account_email)
    return GoogleCalendarStore(client)


__all__ = ["GoogleCalendarStore", "CALENDAR_SCOPES", "connect"]
