"""Remote event store contract.

This module provides the abstract base class every event backend implements,
along with the generic logic shared by all of them. The engine only ever talks
to a store through these five calls (plus the derived ``move_event``):

- ``list_events(calendar_id, time_min, time_max)``
- ``get_event(calendar_id, event_id)``
- ``insert_event(calendar_id, event)``
- ``patch_event(calendar_id, event_id, fields)``
- ``delete_event(calendar_id, event_id)``
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from oneweek.errors import ValidationError
from oneweek.event import PATCHABLE_FIELDS, Event

logger = logging.getLogger(__name__)

# Metadata key recording the calendar an event was first created on
ORIGINAL_CALENDAR_KEY = "original_calendar_id"


@dataclass(frozen=True)
class CalendarInfo:
    """A calendar visible to the store's credentials.

    Attributes:
        id: Remote calendar ID
        summary: Human-readable calendar name
        color: Background color reported by the store, if any
    """

    id: str
    summary: str
    color: str | None = None


def check_patch(fields: Mapping[str, Any]) -> None:
    """Reject patches naming fields the store cannot write.

    Raises:
        ValidationError: If ``fields`` is empty or has unknown keys
    """
    if not fields:
        raise ValidationError("Patch must change at least one field")
    unknown = set(fields) - PATCHABLE_FIELDS
    if unknown:
        raise ValidationError(
            f"Cannot patch field(s): {', '.join(sorted(unknown))}\n"
            f"Patchable fields: {', '.join(sorted(PATCHABLE_FIELDS))}"
        )


class EventStore(ABC):
    """Abstract base class for remote event stores.

    Backends implement the CRUD calls; generic operations built on top of
    them (such as moving an event between calendars) live here.
    """

    @abstractmethod
    async def list_calendars(self) -> list[CalendarInfo]:
        """Return the calendars the store's credentials can see."""

    @abstractmethod
    async def list_events(
        self, calendar_id: str, time_min: datetime, time_max: datetime
    ) -> list[Event]:
        """List materialized events (occurrences expanded) overlapping a range.

        Args:
            calendar_id: Calendar to read
            time_min: Inclusive lower bound
            time_max: Exclusive upper bound

        Returns:
            Events ordered by start time
        """

    @abstractmethod
    async def get_event(self, calendar_id: str, event_id: str) -> Event:
        """Fetch one event (master, occurrence, or standalone).

        Raises:
            NotFoundError: If the event does not exist
        """

    @abstractmethod
    async def insert_event(self, calendar_id: str, event: Event) -> Event:
        """Create an event and return it with its store-assigned ID.

        The event's own ``id`` and ``calendar_id`` are ignored.
        """

    @abstractmethod
    async def patch_event(
        self, calendar_id: str, event_id: str, fields: Mapping[str, Any]
    ) -> Event:
        """Change some fields of an event and return the updated event.

        Args:
            calendar_id: Calendar owning the event
            event_id: Event to change
            fields: Event field names mapped to new values

        Raises:
            NotFoundError: If the event does not exist
            ValidationError: If ``fields`` names an unpatchable field
        """

    @abstractmethod
    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event (a master deletes its whole series).

        Raises:
            NotFoundError: If the event does not exist
        """

    async def move_event(
        self,
        source_calendar_id: str,
        event_id: str,
        target_calendar_id: str,
    ) -> Event:
        """Move an event to another calendar.

        The event is recreated on the target (so it gets a new ID) and then
        deleted from the source. The first calendar the event lived on is
        kept in its metadata under ``original_calendar_id``.

        Returns:
            The event as created on the target calendar
        """
        original = await self.get_event(source_calendar_id, event_id)
        metadata = dict(original.metadata)
        metadata.setdefault(ORIGINAL_CALENDAR_KEY, source_calendar_id)

        created = await self.insert_event(
            target_calendar_id,
            replace(
                original,
                id="",
                calendar_id=target_calendar_id,
                recurring_event_id=None,
                metadata=metadata,
            ),
        )
        await self.delete_event(source_calendar_id, event_id)
        logger.debug(
            "Moved event %s from %s to %s as %s",
            event_id,
            source_calendar_id,
            target_calendar_id,
            created.id,
        )
        return created

    async def list_many(
        self, calendar_ids: Sequence[str], time_min: datetime, time_max: datetime
    ) -> list[Event]:
        """List events across several calendars, merged and sorted by start."""
        batches = await asyncio.gather(
            *(self.list_events(cid, time_min, time_max) for cid in calendar_ids)
        )
        events = [event for batch in batches for event in batch]
        events.sort(key=lambda e: (e.start, e.end, e.calendar_id, e.id))
        return events


__all__ = ["EventStore", "CalendarInfo", "ORIGINAL_CALENDAR_KEY", "check_patch"]
