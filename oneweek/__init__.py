from .cache import MutationCache, RemovePatch, ReplacePatch, UpsertPatch
from .drag import Drop, MoveOp, TimeUpdateOp, route
from .errors import (
    MutationError,
    NotFoundError,
    OneWeekError,
    PermissionDeniedError,
    RemoteError,
    SeriesIntegrityError,
    SeriesSplitError,
    ValidationError,
)
from .event import Event, EventChanges, all_day_bounds
from .permissions import AccessPolicy, AllowAll, CalendarSource
from .recurrence import RecurrenceRule, boundary_before, compile_rule
from .series import SeriesEditRouter, SeriesIntent
from .service import EventService
from .store import EventStore
from .store.memory import MemoryEventStore
from .util import week_key, week_start

__all__ = [
    "Event",
    "EventChanges",
    "all_day_bounds",
    "RecurrenceRule",
    "compile_rule",
    "boundary_before",
    "SeriesIntent",
    "SeriesEditRouter",
    "MutationCache",
    "UpsertPatch",
    "RemovePatch",
    "ReplacePatch",
    "Drop",
    "MoveOp",
    "TimeUpdateOp",
    "route",
    "EventService",
    "EventStore",
    "MemoryEventStore",
    "AccessPolicy",
    "AllowAll",
    "CalendarSource",
    "week_key",
    "week_start",
    "OneWeekError",
    "ValidationError",
    "PermissionDeniedError",
    "NotFoundError",
    "SeriesIntegrityError",
    "RemoteError",
    "SeriesSplitError",
    "MutationError",
]
