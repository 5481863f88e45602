"""In-memory event store implementation.

This module provides MemoryEventStore, an event store backed by plain
dictionaries. It behaves like the remote calendar closely enough for tests,
prototyping and offline demos: series masters are expanded into occurrences
on read, occurrences can be patched or cancelled individually, and every call
is recorded so callers can assert on call order.
"""

import asyncio
import itertools
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import replace
from datetime import datetime
from typing import Any

from dateutil.rrule import rrule, rrulestr

from oneweek.errors import NotFoundError
from oneweek.event import Event
from oneweek.recurrence import RRULE_PREFIX, is_rrule
from oneweek.store import CalendarInfo, EventStore, check_patch
from oneweek.util import from_compact_utc, to_compact_utc

logger = logging.getLogger(__name__)


def occurrence_id(master_id: str, start: datetime) -> str:
    """ID of the occurrence of ``master_id`` starting at ``start``."""
    return f"{master_id}_{to_compact_utc(start)}"


def _series_rule(master: Event) -> rrule | None:
    """Return the dateutil rule generating a master's occurrences."""
    for line in master.recurrence or ():
        if is_rrule(line):
            return rrulestr(line.removeprefix(RRULE_PREFIX), dtstart=master.start)
    return None


class MemoryEventStore(EventStore):
    """In-memory event store.

    Attributes:
        calls: Every store call in order, as ``(operation, calendar_id, event_id)``
            tuples (event_id is None for list calls)
    """

    def __init__(
        self,
        events: Iterable[Event] = (),
        *,
        calendars: Iterable[CalendarInfo] = (),
        delay: float = 0.0,
    ) -> None:
        """Initialize an empty or pre-populated store.

        Args:
            events: Initial events, stored under their own IDs
            calendars: Calendars reported by ``list_calendars``
            delay: Seconds every call sleeps before running (simulated latency)
        """
        self._events: dict[str, dict[str, Event]] = {}
        self._cancelled: dict[str, set[str]] = {}
        self._calendars = list(calendars)
        self._ids = itertools.count(1)
        self._failures: dict[str, list[Exception]] = {}
        self.delay = delay
        self.calls: list[tuple[str, str, str | None]] = []

        for event in events:
            self._events.setdefault(event.calendar_id, {})[event.id] = event

    def fail_next(self, operation: str, error: Exception) -> None:
        """Make the next call of ``operation`` (e.g. "insert") raise ``error``."""
        self._failures.setdefault(operation, []).append(error)

    def events(self, calendar_id: str) -> list[Event]:
        """Stored (unexpanded) events of a calendar, for assertions."""
        return list(self._events.get(calendar_id, {}).values())

    async def _enter(self, operation: str, calendar_id: str, event_id: str | None) -> None:
        self.calls.append((operation, calendar_id, event_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _new_id(self) -> str:
        return f"evt-{next(self._ids)}"

    def _expand(
        self, master: Event, time_min: datetime, time_max: datetime
    ) -> Iterator[Event]:
        rule = _series_rule(master)
        if rule is None:
            return
        calendar = self._events.get(master.calendar_id, {})
        cancelled = self._cancelled.get(master.calendar_id, set())
        duration = master.duration
        for start in rule.between(time_min - duration, time_max, inc=True):
            if start >= time_max or start + duration <= time_min:
                continue
            oid = occurrence_id(master.id, start)
            if oid in cancelled or oid in calendar:
                continue
            yield replace(
                master,
                id=oid,
                start=start,
                end=start + duration,
                recurrence=None,
                recurring_event_id=master.id,
            )

    def _virtual(self, calendar_id: str, event_id: str) -> Event | None:
        """Materialize a generated occurrence by ID, if it exists."""
        master_id, sep, stamp = event_id.rpartition("_")
        if not sep:
            return None
        master = self._events.get(calendar_id, {}).get(master_id)
        if master is None or event_id in self._cancelled.get(calendar_id, set()):
            return None
        rule = _series_rule(master)
        if rule is None:
            return None
        try:
            start = from_compact_utc(stamp)
        except ValueError:
            return None
        if not rule.between(start, start, inc=True):
            return None
        start = start.astimezone(master.start.tzinfo)
        return replace(
            master,
            id=event_id,
            start=start,
            end=start + master.duration,
            recurrence=None,
            recurring_event_id=master.id,
        )

    async def list_calendars(self) -> list[CalendarInfo]:
        if self._calendars:
            return list(self._calendars)
        return [CalendarInfo(id=cid, summary=cid) for cid in self._events]

    async def list_events(
        self, calendar_id: str, time_min: datetime, time_max: datetime
    ) -> list[Event]:
        await self._enter("list", calendar_id, None)
        found: list[Event] = []
        for event in self._events.get(calendar_id, {}).values():
            if event.is_master:
                found.extend(self._expand(event, time_min, time_max))
            elif event.start < time_max and event.end > time_min:
                found.append(event)
        found.sort(key=lambda e: (e.start, e.end, e.id))
        return found

    async def get_event(self, calendar_id: str, event_id: str) -> Event:
        await self._enter("get", calendar_id, event_id)
        stored = self._events.get(calendar_id, {}).get(event_id)
        if stored is not None:
            return stored
        virtual = self._virtual(calendar_id, event_id)
        if virtual is None:
            raise NotFoundError(f"Event {event_id} not found in calendar {calendar_id}")
        return virtual

    async def insert_event(self, calendar_id: str, event: Event) -> Event:
        await self._enter("insert", calendar_id, event.id or None)
        created = replace(event, id=self._new_id(), calendar_id=calendar_id)
        self._events.setdefault(calendar_id, {})[created.id] = created
        logger.debug("Inserted %s into %s", created.id, calendar_id)
        return created

    async def patch_event(
        self, calendar_id: str, event_id: str, fields: Mapping[str, Any]
    ) -> Event:
        await self._enter("patch", calendar_id, event_id)
        check_patch(fields)
        calendar = self._events.get(calendar_id, {})
        current = calendar.get(event_id) or self._virtual(calendar_id, event_id)
        if current is None:
            raise NotFoundError(f"Event {event_id} not found in calendar {calendar_id}")
        updates = dict(fields)
        if updates.get("recurrence") is not None:
            updates["recurrence"] = tuple(updates["recurrence"])
        updated = replace(current, **updates)
        self._events.setdefault(calendar_id, {})[event_id] = updated
        return updated

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        await self._enter("delete", calendar_id, event_id)
        calendar = self._events.get(calendar_id, {})
        stored = calendar.pop(event_id, None)
        if stored is not None:
            if stored.is_master:
                # Deleting a master removes its exceptions too
                for oid in [e.id for e in calendar.values() if e.recurring_event_id == event_id]:
                    del calendar[oid]
            elif stored.recurring_event_id is not None:
                self._cancelled.setdefault(calendar_id, set()).add(event_id)
            return
        if self._virtual(calendar_id, event_id) is None:
            raise NotFoundError(f"Event {event_id} not found in calendar {calendar_id}")
        self._cancelled.setdefault(calendar_id, set()).add(event_id)


__all__ = ["MemoryEventStore", "occurrence_id"]
