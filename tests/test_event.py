"""Tests for the Event model and partial changes."""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from oneweek.errors import ValidationError
from oneweek.event import Event, EventChanges, all_day_bounds
from oneweek.recurrence import RecurrenceRule

STOCKHOLM = ZoneInfo("Europe/Stockholm")


def _event(**overrides) -> Event:
    values = dict(
        id="e1",
        calendar_id="family",
        title="Dentist",
        start=datetime(2024, 3, 12, 9, 0, tzinfo=STOCKHOLM),
        end=datetime(2024, 3, 12, 11, 0, tzinfo=STOCKHOLM),
    )
    values.update(overrides)
    return Event(**values)


def test_event_requires_aware_times():
    with pytest.raises(ValidationError):
        _event(start=datetime(2024, 3, 12, 9, 0), end=datetime(2024, 3, 12, 10, 0))


def test_event_requires_end_after_start():
    with pytest.raises(ValidationError):
        _event(end=datetime(2024, 3, 12, 9, 0, tzinfo=STOCKHOLM))


def test_all_day_event_must_be_midnight_aligned():
    start, end = all_day_bounds(date(2024, 3, 12))
    assert _event(start=start, end=end, all_day=True).all_day

    with pytest.raises(ValidationError):
        _event(all_day=True)


def test_all_day_bounds_end_is_exclusive():
    start, end = all_day_bounds(date(2024, 3, 12), date(2024, 3, 14))

    assert start == datetime(2024, 3, 12, tzinfo=timezone.utc)
    assert end == datetime(2024, 3, 15, tzinfo=timezone.utc)


def test_series_identity():
    master = _event(id="m1", recurrence=["RRULE:FREQ=WEEKLY"])
    occurrence = _event(id="m1_20240312T080000Z", recurring_event_id="m1")
    single = _event()

    assert master.is_master and master.series_id == "m1"
    assert isinstance(master.recurrence, tuple)
    assert occurrence.is_occurrence and occurrence.series_id == "m1"
    assert not single.is_recurring and single.series_id is None


def test_apply_start_only_keeps_duration():
    event = _event()
    new_start = datetime(2024, 3, 13, 14, 0, tzinfo=STOCKHOLM)

    moved = EventChanges(start=new_start).apply_to(event)

    assert moved.start == new_start
    assert moved.duration == timedelta(hours=2)
    assert moved.title == "Dentist"


def test_apply_empty_description_clears_it():
    event = _event(description="Bring card")

    assert EventChanges(description="").apply_to(event).description is None


def test_apply_recurrence_compiles_rule():
    event = EventChanges(recurrence=RecurrenceRule(frequency="DAILY", count=2)).apply_to(_event())

    assert event.recurrence == ("RRULE:FREQ=DAILY;COUNT=3",)


def test_as_patch_completes_lone_start_with_event():
    event = _event()
    new_start = datetime(2024, 3, 12, 15, 0, tzinfo=STOCKHOLM)

    patch = EventChanges(start=new_start, title="Moved").as_patch(event)

    assert patch == {
        "title": "Moved",
        "start": new_start,
        "end": new_start + timedelta(hours=2),
    }


def test_changes_emptiness():
    assert EventChanges().is_empty
    assert not EventChanges(all_day=False).is_empty
    assert EventChanges(end=datetime(2024, 1, 1, tzinfo=timezone.utc)).changes_time
