"""Tests for GoogleCalendarStore against a stub gcsa client."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

import httplib2
import pytest
from googleapiclient.errors import HttpError

from oneweek.errors import NotFoundError, RemoteError, ValidationError
from oneweek.event import Event, all_day_bounds
from oneweek.store.gcsa import GoogleCalendarStore

STOCKHOLM = ZoneInfo("Europe/Stockholm")


class _StubEvent:
    """Stub for gcsa Event object."""

    def __init__(
        self,
        *,
        id: str | None,
        summary: str | None,
        start: datetime | date,
        end: datetime | date,
        description: str | None = None,
        timezone: str | None = None,
        recurrence: list[str] | None = None,
        recurring_event_id: str | None = None,
        other: dict[str, Any] | None = None,
    ) -> None:
        self.id = id
        self.summary = summary
        self.start = start
        self.end = end
        self.description = description
        self.timezone = timezone
        self.recurrence = recurrence or []
        self.recurring_event_id = recurring_event_id
        self.other = other or {}


class _StubCalendarEntry:
    def __init__(self, id: str, summary: str, summary_override: str | None = None) -> None:
        self.id = id
        self.summary = summary
        self.summary_override = summary_override
        self.background_color = "#9fe1e7"


def _http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": status}), b"error")


class _StubGoogleCalendar:
    def __init__(self, events: list[_StubEvent] | None = None):
        self._events = {e.id: e for e in events or []}
        self.calls: list[tuple[str, dict[str, object]]] = []
        self.added: list[Any] = []
        self.fail_with: Exception | None = None
        self.default_calendar = "primary"

    def _record(self, name: str, **kwargs: object) -> None:
        self.calls.append((name, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    def get_events(self, **kwargs: object):
        self._record("get_events", **kwargs)
        return iter(list(self._events.values()))

    def get_event(self, event_id: str, calendar_id: str | None = None):
        self._record("get_event", event_id=event_id, calendar_id=calendar_id)
        if event_id not in self._events:
            raise _http_error(404)
        return self._events[event_id]

    def add_event(self, event: Any, calendar_id: str | None = None):
        self._record("add_event", calendar_id=calendar_id)
        self.added.append(event)
        created = _StubEvent(
            id=f"new-{len(self.added)}",
            summary=event.summary,
            start=event.start,
            end=event.end,
            description=event.description,
            timezone=event.timezone,
            recurrence=list(event.recurrence or []),
            other=dict(event.other),
        )
        self._events[created.id] = created
        return created

    def update_event(self, event: Any, calendar_id: str | None = None):
        self._record("update_event", event_id=event.id, calendar_id=calendar_id)
        return event

    def delete_event(self, event_id: str, calendar_id: str | None = None):
        self._record("delete_event", event_id=event_id, calendar_id=calendar_id)
        self._events.pop(event_id, None)

    def get_calendar_list(self):
        return [
            _StubCalendarEntry("family@group", "Family", summary_override="Us"),
            _StubCalendarEntry("annie@example.com", "Annie"),
        ]


def _timed_stub(**overrides: Any) -> _StubEvent:
    values: dict[str, Any] = dict(
        id="evt-1",
        summary="Piano lesson",
        start=datetime(2024, 3, 12, 9, 0, tzinfo=STOCKHOLM),
        end=datetime(2024, 3, 12, 11, 0, tzinfo=STOCKHOLM),
        timezone="Europe/Stockholm",
    )
    values.update(overrides)
    return _StubEvent(**values)


async def test_list_events_converts_timed_and_all_day():
    stub = _StubGoogleCalendar(
        [
            _timed_stub(recurring_event_id="master-1"),
            _StubEvent(
                id="evt-2",
                summary=None,
                start=date(2024, 3, 13),
                end=date(2024, 3, 14),
                other={"extendedProperties": {"private": {"category": "school"}}},
            ),
        ]
    )
    store = GoogleCalendarStore(stub)
    time_min = datetime(2024, 3, 11, tzinfo=STOCKHOLM)
    time_max = datetime(2024, 3, 18, tzinfo=STOCKHOLM)

    timed, all_day = await store.list_events("family@group", time_min, time_max)

    assert stub.calls == [
        (
            "get_events",
            {
                "time_min": time_min,
                "time_max": time_max,
                "single_events": True,
                "order_by": "startTime",
                "calendar_id": "family@group",
            },
        )
    ]
    assert timed.calendar_id == "family@group"
    assert timed.recurring_event_id == "master-1"
    assert not timed.all_day
    assert all_day.all_day
    assert all_day.title == "Untitled"
    assert (all_day.start, all_day.end) == all_day_bounds(date(2024, 3, 13))
    assert all_day.metadata == {"category": "school"}


async def test_naive_datetimes_take_the_event_zone():
    stub = _StubGoogleCalendar(
        [_timed_stub(start=datetime(2024, 3, 12, 9, 0), end=datetime(2024, 3, 12, 10, 0))]
    )

    event = await GoogleCalendarStore(stub).get_event("primary", "evt-1")

    assert event.start == datetime(2024, 3, 12, 9, 0, tzinfo=STOCKHOLM)


async def test_get_missing_event_raises_not_found():
    store = GoogleCalendarStore(_StubGoogleCalendar())

    with pytest.raises(NotFoundError):
        await store.get_event("primary", "gone")


async def test_other_client_errors_become_remote_errors():
    stub = _StubGoogleCalendar([_timed_stub()])
    stub.fail_with = _http_error(500)

    with pytest.raises(RemoteError) as excinfo:
        await GoogleCalendarStore(stub).delete_event("primary", "evt-1")

    assert isinstance(excinfo.value.original, HttpError)


async def test_insert_sends_metadata_and_recurrence():
    stub = _StubGoogleCalendar()
    store = GoogleCalendarStore(stub)
    event = Event(
        id="",
        calendar_id="family@group",
        title="Swimming",
        start=datetime(2024, 3, 12, 17, 0, tzinfo=STOCKHOLM),
        end=datetime(2024, 3, 12, 18, 0, tzinfo=STOCKHOLM),
        recurrence=("RRULE:FREQ=WEEKLY;COUNT=11",),
        metadata={"original_calendar_id": "annie@example.com"},
    )

    created = await store.insert_event("family@group", event)

    (sent,) = stub.added
    assert sent.summary == "Swimming"
    assert sent.timezone == "Europe/Stockholm"
    assert list(sent.recurrence) == ["RRULE:FREQ=WEEKLY;COUNT=11"]
    assert sent.other["extendedProperties"] == {
        "private": {"original_calendar_id": "annie@example.com"}
    }
    assert stub.calls == [("add_event", {"calendar_id": "family@group"})]
    assert created.id == "new-1"
    assert created.recurrence == ("RRULE:FREQ=WEEKLY;COUNT=11",)
    assert created.metadata == {"original_calendar_id": "annie@example.com"}


async def test_insert_all_day_sends_dates():
    stub = _StubGoogleCalendar()
    start, end = all_day_bounds(date(2024, 3, 20), date(2024, 3, 21))
    event = Event(id="", calendar_id="primary", title="Camp", start=start, end=end, all_day=True)

    created = await GoogleCalendarStore(stub).insert_event("primary", event)

    (sent,) = stub.added
    assert sent.start == date(2024, 3, 20)
    assert sent.end == date(2024, 3, 22)
    assert created.all_day
    assert created.end == datetime(2024, 3, 22, tzinfo=timezone.utc)


async def test_patch_fetches_mutates_and_updates():
    stub = _StubGoogleCalendar([_timed_stub()])
    new_start = datetime(2024, 3, 12, 14, 0, tzinfo=STOCKHOLM)
    new_end = datetime(2024, 3, 12, 16, 0, tzinfo=STOCKHOLM)

    updated = await GoogleCalendarStore(stub).patch_event(
        "primary",
        "evt-1",
        {"title": "Piano (moved)", "start": new_start, "end": new_end, "recurrence": ()},
    )

    assert [name for name, _ in stub.calls] == ["get_event", "update_event"]
    assert updated.title == "Piano (moved)"
    assert (updated.start, updated.end) == (new_start, new_end)
    assert updated.recurrence is None


async def test_patch_to_all_day_writes_dates():
    stub = _StubGoogleCalendar([_timed_stub()])
    start, end = all_day_bounds(date(2024, 3, 12))

    updated = await GoogleCalendarStore(stub).patch_event(
        "primary", "evt-1", {"start": start, "end": end, "all_day": True}
    )

    assert updated.all_day
    assert stub._events["evt-1"].start == date(2024, 3, 12)


async def test_patch_rejects_unknown_fields_without_calling_client():
    stub = _StubGoogleCalendar([_timed_stub()])

    with pytest.raises(ValidationError):
        await GoogleCalendarStore(stub).patch_event("primary", "evt-1", {"location": "Home"})
    assert stub.calls == []


async def test_list_calendars_prefers_override():
    calendars = await GoogleCalendarStore(_StubGoogleCalendar()).list_calendars()

    assert [(c.id, c.summary) for c in calendars] == [
        ("family@group", "Us"),
        ("annie@example.com", "Annie"),
    ]
    assert calendars[0].color == "#9fe1e7"
