"""Turning a drag-and-drop into primitive mutations.

A drop lands on a day, optionally on another calendar's column and
optionally at a time of day. :func:`route` decides which of "move to another
calendar" and "change time" to issue, in order:

1. all-day event: move if the calendar differs, then re-date if the day
   differs (stays all-day); nothing if neither differs
2. timed event, new calendar and a time: move, then set the new time
3. timed event, a time only: set the new time on the same calendar
4. timed event, new calendar only: move, then keep the time of day on the
   dropped date
5. timed event, date only: keep the time of day on the dropped date

Durations are always preserved. A move is always listed (and must be
executed) before a time change of the same event, and the time change
targets the calendar the event was moved to.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from oneweek.errors import ValidationError
from oneweek.event import Event


@dataclass(frozen=True, kw_only=True)
class Drop:
    """Where an event was dropped.

    Attributes:
        date: Day the event was dropped on
        calendar_id: Calendar column dropped on, if any
        hour: Hour of day dropped at (0-23), if any
        minute: Minute dropped at (0-59); defaults to 0 when only hour is given
    """

    date: date
    calendar_id: str | None = None
    hour: int | None = None
    minute: int | None = None

    def __post_init__(self) -> None:
        if self.hour is not None and not 0 <= self.hour <= 23:
            raise ValidationError(f"Drop hour must be 0-23, got {self.hour}")
        if self.minute is not None and not 0 <= self.minute <= 59:
            raise ValidationError(f"Drop minute must be 0-59, got {self.minute}")

    @property
    def has_time(self) -> bool:
        return self.hour is not None or self.minute is not None

    @property
    def time_of_day(self) -> time:
        return time(self.hour or 0, self.minute or 0)


@dataclass(frozen=True, kw_only=True)
class MoveOp:
    """Move an event to another calendar (it gets a new ID there)."""

    source_calendar_id: str
    event_id: str
    target_calendar_id: str


@dataclass(frozen=True, kw_only=True)
class TimeUpdateOp:
    """Set an event's start and end."""

    calendar_id: str
    event_id: str
    start: datetime
    end: datetime
    all_day: bool = False


Operation = MoveOp | TimeUpdateOp


def _local(event: Event, zone: ZoneInfo | None) -> datetime:
    return event.start.astimezone(zone) if zone is not None else event.start


def route(event: Event, drop: Drop, zone: ZoneInfo | None = None) -> list[Operation]:
    """Return the operations that carry out ``drop`` for ``event``.

    Args:
        event: The dragged event
        drop: Where it was dropped
        zone: Zone the board displays times in (default: the event's own)

    Returns:
        Operations to execute in order; empty if the drop changes nothing
    """
    target = drop.calendar_id
    moves = target is not None and target != event.calendar_id
    calendar_id = target if moves else event.calendar_id

    ops: list[Operation] = []
    if moves:
        assert target is not None
        ops.append(
            MoveOp(
                source_calendar_id=event.calendar_id,
                event_id=event.id,
                target_calendar_id=target,
            )
        )

    if event.all_day:
        if drop.date != event.start.date():
            start = datetime.combine(drop.date, time.min, tzinfo=timezone.utc)
            ops.append(
                TimeUpdateOp(
                    calendar_id=calendar_id,
                    event_id=event.id,
                    start=start,
                    end=start + event.duration,
                    all_day=True,
                )
            )
        return ops

    local = _local(event, zone)
    tod = drop.time_of_day if drop.has_time else local.time()
    start = datetime.combine(drop.date, tod, tzinfo=local.tzinfo)
    if not moves and start == event.start:
        return ops
    ops.append(
        TimeUpdateOp(
            calendar_id=calendar_id,
            event_id=event.id,
            start=start,
            end=start + event.duration,
        )
    )
    return ops


__all__ = ["Drop", "MoveOp", "TimeUpdateOp", "Operation", "route"]
