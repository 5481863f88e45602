"""Calendar events as seen by the board.

An :class:`Event` is one materialized block on a calendar: a standalone
event, a series master (carrying ``recurrence``), or an occurrence generated
from a master (carrying ``recurring_event_id``).
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from typing_extensions import override

from oneweek.errors import ValidationError
from oneweek.recurrence import RecurrenceRule, to_recurrence


@dataclass(frozen=True, kw_only=True)
class Event:
    """A calendar event.

    Attributes:
        id: Remote event ID (a local placeholder until the store confirms it)
        calendar_id: ID of the calendar owning this event
        title: Event title/summary
        description: Event description (optional)
        start: Timezone-aware start instant
        end: Timezone-aware exclusive end instant. For all-day events this is
            midnight of the day after the last included day.
        all_day: True for date-only events
        recurrence: Repeat rule lines (``RRULE:...``), present on series
            masters only
        recurring_event_id: ID of the series master, present on occurrences
            only (None for standalone and master events)
        metadata: Private key/value properties (e.g. original_calendar_id)
    """

    id: str
    calendar_id: str
    title: str
    description: str | None = None
    start: datetime
    end: datetime
    all_day: bool = False
    recurrence: tuple[str, ...] | None = None
    recurring_event_id: str | None = None
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValidationError(
                f"Event times must be timezone-aware, got {self.start!r}→{self.end!r}\n"
                f"Hint: datetime(..., tzinfo=ZoneInfo('Europe/Stockholm'))"
            )
        if self.end <= self.start:
            raise ValidationError(
                f"Event end ({self.end.isoformat()}) must be after "
                f"start ({self.start.isoformat()})"
            )
        if self.all_day and not (
            self.start.time() == time.min and self.end.time() == time.min
        ):
            raise ValidationError(
                f"All-day event '{self.title}' must start and end at midnight, "
                f"got {self.start.isoformat()}→{self.end.isoformat()}"
            )
        if self.recurrence is not None and not isinstance(self.recurrence, tuple):
            object.__setattr__(self, "recurrence", tuple(self.recurrence))

    @override
    def __str__(self) -> str:
        span = "all day" if self.all_day else f"{self.duration}"
        return f"Event('{self.title}', {self.start.isoformat()}, {span})"

    @property
    def key(self) -> tuple[str, str]:
        """Identity of the event: (calendar_id, id)."""
        return (self.calendar_id, self.id)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def day(self) -> date:
        """Calendar day the event starts on, in its own zone."""
        return self.start.date()

    @property
    def is_occurrence(self) -> bool:
        return self.recurring_event_id is not None

    @property
    def is_master(self) -> bool:
        return self.recurring_event_id is None and bool(self.recurrence)

    @property
    def is_recurring(self) -> bool:
        return self.is_occurrence or self.is_master

    @property
    def series_id(self) -> str | None:
        """ID of the series master, or None for non-recurring events."""
        if self.recurring_event_id is not None:
            return self.recurring_event_id
        if self.recurrence:
            return self.id
        return None

    def with_times(self, start: datetime, end: datetime) -> "Event":
        return replace(self, start=start, end=end)


@dataclass(frozen=True, kw_only=True)
class EventChanges:
    """Partial update to an event. ``None`` leaves a field unchanged.

    Attributes:
        title: New title
        description: New description (empty string clears it)
        start: New start instant
        end: New end instant
        all_day: New all-day flag
        recurrence: New repeat rule (a ``RecurrenceRule``), compiled on write
    """

    title: str | None = None
    description: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    all_day: bool | None = None
    recurrence: RecurrenceRule | None = None

    @property
    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (
                self.title,
                self.description,
                self.start,
                self.end,
                self.all_day,
                self.recurrence,
            )
        )

    @property
    def changes_time(self) -> bool:
        return self.start is not None or self.end is not None

    def apply_to(self, event: Event) -> Event:
        """Return ``event`` with these changes merged in.

        When only one of start/end changes, the other keeps the event's
        duration.
        """
        start, end = event.start, event.end
        if self.start is not None and self.end is not None:
            start, end = self.start, self.end
        elif self.start is not None:
            start, end = self.start, self.start + event.duration
        elif self.end is not None:
            end = self.end

        updates: dict[str, Any] = {"start": start, "end": end}
        if self.title is not None:
            updates["title"] = self.title
        if self.description is not None:
            updates["description"] = self.description or None
        if self.all_day is not None:
            updates["all_day"] = self.all_day
        if self.recurrence is not None:
            updates["recurrence"] = tuple(to_recurrence(self.recurrence))
        return replace(event, **updates)

    def as_patch(self, event: Event | None = None) -> dict[str, Any]:
        """Return the changed fields as a store patch.

        Args:
            event: Current event; when given, a lone start or end change is
                completed so the patch keeps the event's duration

        Returns:
            Mapping of Event field names to new values
        """
        patch: dict[str, Any] = {}
        if self.title is not None:
            patch["title"] = self.title
        if self.description is not None:
            patch["description"] = self.description or None
        if self.changes_time:
            if event is not None:
                merged = self.apply_to(event)
                patch["start"], patch["end"] = merged.start, merged.end
            else:
                if self.start is not None:
                    patch["start"] = self.start
                if self.end is not None:
                    patch["end"] = self.end
        if self.all_day is not None:
            patch["all_day"] = self.all_day
        if self.recurrence is not None:
            patch["recurrence"] = tuple(to_recurrence(self.recurrence))
        return patch


PATCHABLE_FIELDS = frozenset(
    {"title", "description", "start", "end", "all_day", "recurrence", "metadata"}
)


def all_day_bounds(first: date, last: date | None = None) -> tuple[datetime, datetime]:
    """Return UTC midnight bounds for an all-day span.

    Args:
        first: First included day
        last: Last included day (default: same as ``first``)

    Returns:
        Tuple of (start, exclusive end) at 00:00 UTC
    """
    last = last if last is not None else first
    start = datetime.combine(first, time.min, tzinfo=timezone.utc)
    end = datetime.combine(last + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return start, end


__all__ = ["Event", "EventChanges", "PATCHABLE_FIELDS", "all_day_bounds"]
