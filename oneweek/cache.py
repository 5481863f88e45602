"""Week-keyed event cache with optimistic mutations.

MutationCache holds, for each Monday-aligned week, the events believed
correct for that week. Mutations are applied optimistically before the remote
call settles and then resolved with exactly one terminal call:

- ``confirm``: the remote call succeeded; placeholder IDs are swapped for the
  IDs the store assigned
- ``rollback``: the remote call failed; the week goes back to the snapshot
  taken before the patch

When the outcome of a mutation cannot be simulated locally (splitting a
series), the week is invalidated instead and reloaded on the next fetch.

Reads never wait on in-flight mutations; they observe the optimistic state.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from zoneinfo import ZoneInfo

from oneweek.event import Event
from oneweek.util import week_key

logger = logging.getLogger(__name__)

Loader = Callable[[str], Awaitable[Sequence[Event]]]

EventKey = tuple[str, str]


@dataclass(frozen=True, eq=False)
class UpsertPatch:
    """Insert ``event``, or replace the cached event with the same identity."""

    event: Event


@dataclass(frozen=True, eq=False)
class RemovePatch:
    """Remove the event identified by ``key`` (calendar_id, event_id)."""

    key: EventKey


@dataclass(frozen=True, eq=False)
class ReplacePatch:
    """Swap the event at ``old_key`` for ``event`` (identity change: a move)."""

    old_key: EventKey
    event: Event


Patch = UpsertPatch | RemovePatch | ReplacePatch


def _ordered(events: Iterable[Event]) -> tuple[Event, ...]:
    return tuple(sorted(events, key=lambda e: (e.start, e.end, e.calendar_id, e.id)))


def _without(events: Iterable[Event], key: EventKey) -> list[Event]:
    return [e for e in events if e.key != key]


def apply_patch(events: Sequence[Event], patch: Patch) -> tuple[Event, ...]:
    """Return ``events`` with ``patch`` applied (pure)."""
    match patch:
        case UpsertPatch(event=event):
            return _ordered([*_without(events, event.key), event])
        case RemovePatch(key=key):
            return _ordered(_without(events, key))
        case ReplacePatch(old_key=old_key, event=event):
            kept = _without(_without(events, old_key), event.key)
            return _ordered([*kept, event])
    raise TypeError(f"Unknown patch type: {type(patch).__name__}")


def _placeholder_key(patch: Patch) -> EventKey | None:
    if isinstance(patch, (UpsertPatch, ReplacePatch)):
        return patch.event.key
    return None


def _swap_identity(
    events: Sequence[Event], old_key: EventKey, server_event: Event
) -> tuple[Event, ...]:
    if not any(e.key == old_key for e in events):
        return tuple(events)
    return _ordered([*_without(_without(events, old_key), server_event.key), server_event])


@dataclass
class _Pending:
    patch: Patch
    snapshot: tuple[Event, ...]
    committed: bool = False


@dataclass
class _Window:
    """Events of one week plus the log of patches applied on top of them.

    Confirmed patches stay in the log, marked committed, while an earlier
    patch is still unresolved: rolling that one back rebuilds the week from
    its snapshot and must replay them.
    """

    events: tuple[Event, ...]
    pending: list[_Pending] = field(default_factory=list)

    def find(self, patch: Patch) -> int | None:
        for index, entry in enumerate(self.pending):
            if entry.patch is patch and not entry.committed:
                return index
        return None

    def prune(self) -> None:
        while self.pending and self.pending[0].committed:
            del self.pending[0]


class MutationCache:
    """In-memory cache of events keyed by week.

    Patches are tracked by identity: pass the same patch object to
    ``optimistic_apply`` and to its terminal ``confirm`` or ``rollback``.
    """

    def __init__(self, loader: Loader, zone: ZoneInfo | None = None) -> None:
        """Initialize an empty cache.

        Args:
            loader: Coroutine function returning the events of a week key
            zone: Zone whose calendar defines week boundaries (default: each
                event's own zone)
        """
        self._loader = loader
        self.zone = zone
        self._windows: dict[str, _Window] = {}

    def key_for(self, event: Event) -> str:
        """Week key of the week ``event`` starts in."""
        if event.all_day:
            return week_key(event.start.date(), self.zone)
        return week_key(event.start, self.zone)

    def keys(self) -> list[str]:
        return list(self._windows)

    def get(self, key: str) -> tuple[Event, ...] | None:
        """Return the events cached for ``key``, or None if not loaded."""
        window = self._windows.get(key)
        return window.events if window is not None else None

    def find(self, event_key: EventKey) -> Event | None:
        """Return a cached event by (calendar_id, event_id), from any week."""
        for window in self._windows.values():
            for event in window.events:
                if event.key == event_key:
                    return event
        return None

    def pending(self, key: str) -> int:
        """Number of optimistic patches awaiting a terminal call."""
        window = self._windows.get(key)
        if window is None:
            return 0
        return sum(1 for entry in window.pending if not entry.committed)

    async def fetch(self, key: str) -> tuple[Event, ...]:
        """Return the events of ``key``, loading them if not cached."""
        window = self._windows.get(key)
        if window is not None:
            return window.events

        events = _ordered(await self._loader(key))
        # A concurrent fetch may have won the race; keep its optimistic state
        window = self._windows.setdefault(key, _Window(events=events))
        logger.debug("Loaded week %s (%d events)", key, len(events))
        return window.events

    def optimistic_apply(self, key: str, patch: Patch) -> None:
        """Apply ``patch`` to a week immediately.

        Does nothing if the week is not loaded; its eventual fetch will see
        the remote state. Never raises.
        """
        window = self._windows.get(key)
        if window is None:
            logger.debug("Week %s not loaded; skipping optimistic %s", key, type(patch).__name__)
            return
        window.pending.append(_Pending(patch=patch, snapshot=window.events))
        window.events = apply_patch(window.events, patch)

    def confirm(self, key: str, patch: Patch, server_event: Event | None = None) -> None:
        """Resolve a pending patch as successful.

        Args:
            key: Week the patch was applied to
            patch: The pending patch
            server_event: The event as returned by the store; replaces the
                optimistic event (and its placeholder ID) in the week
        """
        window = self._windows.get(key)
        index = window.find(patch) if window is not None else None
        if window is None or index is None:
            return

        entry = window.pending[index]
        entry.committed = True
        old_key = _placeholder_key(patch)
        if server_event is not None and old_key is not None:
            # Replays after an earlier rollback must produce the server's event
            replaced = patch.old_key if isinstance(patch, ReplacePatch) else old_key
            entry.patch = ReplacePatch(replaced, server_event)
            window.events = _swap_identity(window.events, old_key, server_event)
            for later in window.pending[index + 1 :]:
                later.snapshot = _swap_identity(later.snapshot, old_key, server_event)
        window.prune()

    def rollback(self, key: str, patch: Patch) -> None:
        """Undo a pending patch.

        The week returns to the snapshot taken just before ``patch``; every
        patch applied after it, pending or already confirmed, is re-applied
        on top. A no-op when ``patch`` is not pending.
        """
        window = self._windows.get(key)
        index = window.find(patch) if window is not None else None
        if window is None or index is None:
            return

        events = window.pending[index].snapshot
        later = window.pending[index + 1 :]
        del window.pending[index:]
        for entry in later:
            window.pending.append(replace(entry, snapshot=events))
            events = apply_patch(events, entry.patch)
        window.events = events
        window.prune()
        logger.info("Rolled back %s on week %s", type(patch).__name__, key)

    def invalidate(self, key: str) -> None:
        """Drop a week so the next fetch reloads it from the store."""
        if self._windows.pop(key, None) is not None:
            logger.debug("Invalidated week %s", key)

    def clear(self) -> None:
        self._windows.clear()


__all__ = [
    "MutationCache",
    "Patch",
    "UpsertPatch",
    "RemovePatch",
    "ReplacePatch",
    "apply_patch",
]
