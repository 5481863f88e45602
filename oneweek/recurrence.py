"""Repeat rules for recurring events.

This module compiles the board's structured recurrence description into an
RFC 5545 RRULE, and rewrites existing rules when a series is split at an
occurrence. Occurrence arithmetic is delegated to python-dateutil's rrule.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Literal, TypeAlias

from dateutil.parser import isoparse
from dateutil.rrule import FR, MO, SA, SU, TH, TU, WE, rrulestr, weekday

from oneweek.errors import ValidationError
from oneweek.util import to_compact_utc

Frequency: TypeAlias = Literal["DAILY", "WEEKLY", "MONTHLY", "YEARLY"]

RRULE_PREFIX = "RRULE:"

_FREQUENCIES: tuple[Frequency, ...] = ("DAILY", "WEEKLY", "MONTHLY", "YEARLY")

# Mapping from two-letter codes to dateutil weekday constants
_DAY_MAP: dict[str, weekday] = {
    "MO": MO,
    "TU": TU,
    "WE": WE,
    "TH": TH,
    "FR": FR,
    "SA": SA,
    "SU": SU,
}

_DAY_NAMES = {
    "monday": "MO",
    "tuesday": "TU",
    "wednesday": "WE",
    "thursday": "TH",
    "friday": "FR",
    "saturday": "SA",
    "sunday": "SU",
}

_END_OF_DAY = time(23, 59, 59)


def _normalize_day(day: str) -> str:
    code = _DAY_NAMES.get(day.lower(), day.upper())
    if code not in _DAY_MAP:
        valid = ", ".join(_DAY_MAP)
        raise ValidationError(f"Invalid weekday: '{day}'\nValid codes: {valid}")
    return code


@dataclass(frozen=True, kw_only=True)
class RecurrenceRule:
    """User-facing description of a repeating event.

    Attributes:
        frequency: DAILY, WEEKLY, MONTHLY or YEARLY
        interval: Repeat every N units (default 1)
        by_day: Weekday codes ("MO", "TU", ...) for weekly rules; order is
            irrelevant and an empty set means "not restricted"
        count: Number of occurrences requested by the user
        until: Last day (or instant) of the series
    """

    frequency: Frequency
    interval: int = 1
    by_day: frozenset[str] = field(default_factory=frozenset)
    count: int | None = None
    until: datetime | date | None = None

    def __post_init__(self) -> None:
        if self.frequency not in _FREQUENCIES:
            raise ValidationError(
                f"Invalid recurrence frequency: {self.frequency!r}\n"
                f"Must be one of: {', '.join(_FREQUENCIES)}"
            )
        if self.interval < 1:
            raise ValidationError(f"interval must be >= 1, got {self.interval}")
        if self.count is not None and self.count < 1:
            raise ValidationError(f"count must be >= 1, got {self.count}")
        days = frozenset(_normalize_day(d) for d in self.by_day)
        object.__setattr__(self, "by_day", days)

    @property
    def is_bounded(self) -> bool:
        return self.count is not None or self.until is not None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RecurrenceRule":
        """Build a rule from its wire form.

        Accepts ``frequency``, ``interval``, ``count``, ``until`` (ISO date or
        datetime string) and ``byDay`` (list of weekday codes).

        Raises:
            ValidationError: If the mapping is not a valid rule
        """
        if not isinstance(data, Mapping) or "frequency" not in data:
            raise ValidationError("Invalid recurrence rule: 'frequency' is required")

        until: datetime | date | None = None
        raw_until = data.get("until")
        if raw_until:
            try:
                parsed = isoparse(str(raw_until))
            except ValueError as exc:
                raise ValidationError(f"Invalid recurrence until: {raw_until!r}") from exc
            until = parsed if "T" in str(raw_until) else parsed.date()

        try:
            return cls(
                frequency=str(data["frequency"]).upper(),  # type: ignore[arg-type]
                interval=int(data.get("interval") or 1),
                by_day=frozenset(data.get("byDay") or ()),
                count=int(data["count"]) if data.get("count") else None,
                until=until,
            )
        except ValidationError:
            raise
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid recurrence rule: {exc}") from exc


def _until_instant(until: datetime | date) -> datetime:
    """Resolve an UNTIL value to an aware instant.

    A bare date ends at 23:59:59 UTC so that occurrences on that day are kept.
    Naive datetimes are taken as UTC.
    """
    if isinstance(until, datetime):
        return until if until.tzinfo is not None else until.replace(tzinfo=timezone.utc)
    return datetime.combine(until, _END_OF_DAY, tzinfo=timezone.utc)


def compile_rule(rule: RecurrenceRule) -> str:
    """Compile a recurrence description into an RRULE value.

    The result has no ``RRULE:`` prefix. COUNT and UNTIL are mutually
    exclusive; when both are given, COUNT wins.

    Note:
        COUNT is emitted as ``count + 1``. The remote calendar treats the
        seed event as outside the user's count, and this compensation has to
        stay in step with it.

    Examples:
        >>> compile_rule(RecurrenceRule(frequency="DAILY", count=10))
        'FREQ=DAILY;COUNT=11'
        >>> compile_rule(RecurrenceRule(frequency="WEEKLY", interval=2, by_day={"WE", "MO"}))
        'FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE'
    """
    parts = [f"FREQ={rule.frequency}"]
    if rule.interval > 1:
        parts.append(f"INTERVAL={rule.interval}")
    if rule.by_day:
        codes = sorted(rule.by_day, key=lambda code: _DAY_MAP[code].weekday)
        parts.append(f"BYDAY={','.join(codes)}")
    if rule.count is not None:
        parts.append(f"COUNT={rule.count + 1}")
    elif rule.until is not None:
        parts.append(f"UNTIL={to_compact_utc(_until_instant(rule.until))}")
    return ";".join(parts)


def to_recurrence(rule: RecurrenceRule) -> list[str]:
    """Return the remote store's recurrence field for ``rule`` (one RRULE line)."""
    return [RRULE_PREFIX + compile_rule(rule)]


def is_rrule(line: str) -> bool:
    return line.startswith(RRULE_PREFIX)


def parse_rule(line: str) -> dict[str, str]:
    """Split an RRULE line into its ``NAME=value`` parts (insertion ordered)."""
    body = line.removeprefix(RRULE_PREFIX)
    parts: dict[str, str] = {}
    for item in body.split(";"):
        if not item:
            continue
        name, _, value = item.partition("=")
        parts[name.upper()] = value
    return parts


def _format_rule(parts: Mapping[str, str]) -> str:
    return RRULE_PREFIX + ";".join(f"{name}={value}" for name, value in parts.items())


def strip_termination(line: str) -> str:
    """Remove COUNT and UNTIL from an RRULE line."""
    parts = parse_rule(line)
    parts.pop("COUNT", None)
    parts.pop("UNTIL", None)
    return _format_rule(parts)


def with_until(line: str, until: datetime) -> str:
    """Replace the termination of an RRULE line with ``UNTIL=until``.

    Any COUNT is discarded: the series now ends at ``until``.
    """
    parts = parse_rule(strip_termination(line))
    parts["UNTIL"] = to_compact_utc(until)
    return _format_rule(parts)


def recurrence_with_until(recurrence: Iterable[str], until: datetime) -> list[str]:
    """Apply :func:`with_until` to the RRULE lines of a recurrence field.

    Other lines (EXDATE, RDATE) are preserved untouched.
    """
    return [with_until(line, until) if is_rrule(line) else line for line in recurrence]


def has_rule(recurrence: Iterable[str] | None) -> bool:
    if not recurrence:
        return False
    return any(is_rrule(line) for line in recurrence)


def remaining_tail(line: str, series_start: datetime, split_start: datetime) -> str:
    """Return the rule a new series starting at ``split_start`` should carry.

    UNTIL-bounded and unbounded rules are returned unchanged. For a
    COUNT-bounded rule the count becomes the number of occurrences still due
    at or after ``split_start``, so the two halves together keep the
    original number of occurrences.

    Args:
        line: RRULE line of the original series
        series_start: Start of the original series master
        split_start: Start of the occurrence the new series begins with

    Returns:
        RRULE line for the new series
    """
    parts = parse_rule(line)
    if "COUNT" not in parts:
        return line if is_rrule(line) else RRULE_PREFIX + line

    rule = rrulestr(line.removeprefix(RRULE_PREFIX), dtstart=series_start)
    before = 0
    for occurrence in rule:
        if occurrence >= split_start:
            break
        before += 1
    parts["COUNT"] = str(max(int(parts["COUNT"]) - before, 1))
    return _format_rule(parts)


def boundary_before(
    occurrence_start: datetime | date | str | None, is_all_day: bool
) -> datetime:
    """Compute the UNTIL cutoff that ends a series just before an occurrence.

    Timed occurrences end the series at 23:59:59 of the previous calendar day
    in the occurrence's own zone. All-day occurrences use 23:59:59 UTC of the
    previous day: all-day dates carry no offset, and the remote calendar uses
    the same convention for all-day UNTIL values.

    Args:
        occurrence_start: Start of the occurrence (datetime, date, or ISO string)
        is_all_day: Whether the occurrence is all-day

    Returns:
        Timezone-aware cutoff instant

    Raises:
        ValidationError: If the start is missing, or naive for a timed occurrence
    """
    if occurrence_start is None or occurrence_start == "":
        raise ValidationError(
            "Occurrence start is required to split a series at that occurrence"
        )

    if isinstance(occurrence_start, str):
        try:
            occurrence_start = (
                date.fromisoformat(occurrence_start[:10])
                if is_all_day
                else isoparse(occurrence_start)
            )
        except ValueError as exc:
            raise ValidationError(
                f"Invalid occurrence start: {occurrence_start!r}"
            ) from exc

    if is_all_day:
        day = (
            occurrence_start.date()
            if isinstance(occurrence_start, datetime)
            else occurrence_start
        )
        return datetime.combine(day - timedelta(days=1), _END_OF_DAY, tzinfo=timezone.utc)

    if not isinstance(occurrence_start, datetime) or occurrence_start.tzinfo is None:
        raise ValidationError(
            f"Timed occurrence start must be a timezone-aware datetime, "
            f"got {occurrence_start!r}"
        )
    previous = occurrence_start.date() - timedelta(days=1)
    return datetime.combine(previous, _END_OF_DAY, tzinfo=occurrence_start.tzinfo)


__all__ = [
    "Frequency",
    "RecurrenceRule",
    "RRULE_PREFIX",
    "compile_rule",
    "to_recurrence",
    "is_rrule",
    "has_rule",
    "parse_rule",
    "strip_termination",
    "with_until",
    "recurrence_with_until",
    "remaining_tail",
    "boundary_before",
]
