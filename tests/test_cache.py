"""Tests for the week-keyed optimistic mutation cache."""

from dataclasses import replace
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from oneweek.cache import MutationCache, RemovePatch, ReplacePatch, UpsertPatch, apply_patch
from oneweek.event import Event, all_day_bounds
from oneweek.util import week_key

STOCKHOLM = ZoneInfo("Europe/Stockholm")
MONDAY = datetime(2024, 3, 11, tzinfo=STOCKHOLM)
KEY = week_key(MONDAY)


def _event(event_id: str, hour: int, *, calendar_id: str = "family", day: int = 12) -> Event:
    start = datetime(2024, 3, day, hour, 0, tzinfo=STOCKHOLM)
    return Event(
        id=event_id,
        calendar_id=calendar_id,
        title=event_id.title(),
        start=start,
        end=start + timedelta(hours=1),
    )


class _Loader:
    def __init__(self, events: list[Event]):
        self.events = events
        self.calls: list[str] = []

    async def __call__(self, key: str) -> list[Event]:
        self.calls.append(key)
        return list(self.events)


@pytest.fixture
def loader() -> _Loader:
    return _Loader([_event("lunch", 12), _event("breakfast", 8)])


@pytest.fixture
async def cache(loader) -> MutationCache:
    cache = MutationCache(loader, STOCKHOLM)
    await cache.fetch(KEY)
    return cache


async def test_fetch_loads_once_and_orders_by_start(loader):
    cache = MutationCache(loader, STOCKHOLM)

    first = await cache.fetch(KEY)
    second = await cache.fetch(KEY)

    assert [e.id for e in first] == ["breakfast", "lunch"]
    assert second is first
    assert loader.calls == [KEY]


def test_get_unloaded_week_is_none(loader):
    assert MutationCache(loader).get(KEY) is None


async def test_optimistic_apply_is_visible_immediately(cache):
    patch = UpsertPatch(_event("dinner", 18))

    cache.optimistic_apply(KEY, patch)

    assert [e.id for e in cache.get(KEY)] == ["breakfast", "lunch", "dinner"]
    assert cache.pending(KEY) == 1


async def test_rollback_restores_snapshot_exactly(cache):
    before = cache.get(KEY)
    patch = ReplacePatch(("family", "lunch"), replace(_event("lunch", 12), calendar_id="work"))

    cache.optimistic_apply(KEY, patch)
    assert cache.get(KEY) != before
    cache.rollback(KEY, patch)

    assert cache.get(KEY) == before
    assert cache.pending(KEY) == 0


async def test_rollback_without_pending_patch_is_a_no_op(cache):
    before = cache.get(KEY)
    patch = RemovePatch(("family", "lunch"))

    cache.rollback(KEY, patch)
    assert cache.get(KEY) is before

    cache.optimistic_apply(KEY, patch)
    cache.rollback(KEY, patch)
    cache.rollback(KEY, patch)
    assert cache.get(KEY) == before


async def test_rollback_reapplies_later_pending_patches(cache):
    first = RemovePatch(("family", "breakfast"))
    second = UpsertPatch(_event("dinner", 18))

    cache.optimistic_apply(KEY, first)
    cache.optimistic_apply(KEY, second)
    cache.rollback(KEY, first)

    assert [e.id for e in cache.get(KEY)] == ["breakfast", "lunch", "dinner"]

    cache.rollback(KEY, second)
    assert [e.id for e in cache.get(KEY)] == ["breakfast", "lunch"]


async def test_confirm_replaces_placeholder_id(cache):
    placeholder = _event("local-1", 15)
    patch = UpsertPatch(placeholder)
    cache.optimistic_apply(KEY, patch)

    server = replace(placeholder, id="abc123")
    cache.confirm(KEY, patch, server)

    ids = [e.id for e in cache.get(KEY)]
    assert "abc123" in ids
    assert "local-1" not in ids
    assert cache.pending(KEY) == 0


async def test_confirm_updates_snapshots_of_later_patches(cache):
    created = UpsertPatch(_event("local-1", 15))
    removal = RemovePatch(("family", "lunch"))
    cache.optimistic_apply(KEY, created)
    cache.optimistic_apply(KEY, removal)

    cache.confirm(KEY, created, replace(created.event, id="abc123"))
    cache.rollback(KEY, removal)

    assert [e.id for e in cache.get(KEY)] == ["breakfast", "lunch", "abc123"]


async def test_rollback_replays_patches_confirmed_after_it(cache):
    renamed = UpsertPatch(replace(_event("breakfast", 8), title="Brunch"))
    moved = UpsertPatch(replace(_event("lunch", 12), title="Late lunch"))
    cache.optimistic_apply(KEY, renamed)
    cache.optimistic_apply(KEY, moved)

    cache.confirm(KEY, moved, moved.event)
    assert cache.pending(KEY) == 1
    cache.rollback(KEY, renamed)

    titles = {e.id: e.title for e in cache.get(KEY)}
    assert titles == {"breakfast": "Breakfast", "lunch": "Late lunch"}
    assert cache.pending(KEY) == 0


async def test_rollback_replays_server_identity_of_confirmed_create(cache):
    removal = RemovePatch(("family", "lunch"))
    created = UpsertPatch(_event("local-1", 15))
    cache.optimistic_apply(KEY, removal)
    cache.optimistic_apply(KEY, created)

    cache.confirm(KEY, created, replace(created.event, id="abc123"))
    cache.rollback(KEY, removal)

    assert [e.id for e in cache.get(KEY)] == ["breakfast", "lunch", "abc123"]


async def test_rollback_replays_confirmed_move_without_duplicates(cache):
    renamed = UpsertPatch(replace(_event("breakfast", 8), title="Brunch"))
    move = ReplacePatch(("family", "lunch"), replace(_event("lunch", 12), calendar_id="work"))
    cache.optimistic_apply(KEY, renamed)
    cache.optimistic_apply(KEY, move)

    cache.confirm(KEY, move, replace(move.event, id="moved-1"))
    cache.rollback(KEY, renamed)

    assert [e.key for e in cache.get(KEY)] == [("family", "breakfast"), ("work", "moved-1")]


async def test_invalidate_forces_reload(cache, loader):
    cache.invalidate(KEY)
    assert cache.get(KEY) is None

    await cache.fetch(KEY)
    assert loader.calls == [KEY, KEY]


def test_optimistic_apply_on_unloaded_week_does_nothing(loader):
    cache = MutationCache(loader)
    patch = UpsertPatch(_event("dinner", 18))

    cache.optimistic_apply(KEY, patch)
    cache.confirm(KEY, patch, patch.event)

    assert cache.get(KEY) is None


async def test_find_looks_across_weeks(cache):
    assert cache.find(("family", "lunch")).title == "Lunch"
    assert cache.find(("family", "missing")) is None


def test_key_for_timed_and_all_day(loader):
    cache = MutationCache(loader, STOCKHOLM)
    sunday_late = _event("late", 23, day=17)
    start, end = all_day_bounds(date(2024, 3, 17))
    all_day = Event(id="trip", calendar_id="family", title="Trip", start=start, end=end, all_day=True)

    assert cache.key_for(sunday_late) == KEY
    assert cache.key_for(all_day) == KEY
    assert cache.key_for(_event("next", 9, day=18)) != KEY


def test_apply_patch_is_pure():
    events = (_event("a", 9), _event("b", 10))

    result = apply_patch(events, RemovePatch(("family", "a")))

    assert [e.id for e in events] == ["a", "b"]
    assert [e.id for e in result] == ["b"]
