"""Edits and deletions against recurring series.

An edit or deletion aimed at an occurrence of a series can apply to just
that occurrence ("this"), to every occurrence ("all"), or to that occurrence
and everything after it ("future"). SeriesEditRouter picks the strategy and
issues the one or two remote calls each needs:

- this:   edit → insert a standalone copy carrying the changes;
          delete → delete the occurrence by ID
- all:    patch or delete the series master
- future: end the master the instant before the occurrence (UNTIL), then,
          for edits, start a new series at the occurrence with the changes

Multi-step strategies are not transactional. If a later step fails, earlier
remote writes stay in place and the failure is reported as one
SeriesSplitError listing what was already applied.
"""

import logging
from dataclasses import dataclass, replace
from typing import Literal, TypeAlias

from oneweek.errors import OneWeekError, SeriesIntegrityError, SeriesSplitError, ValidationError
from oneweek.event import Event, EventChanges
from oneweek.recurrence import (
    boundary_before,
    has_rule,
    is_rrule,
    recurrence_with_until,
    remaining_tail,
    to_recurrence,
)
from oneweek.store import EventStore
from oneweek.util import to_compact_utc

logger = logging.getLogger(__name__)

Scope: TypeAlias = Literal["this", "all", "future"]

SCOPES: tuple[Scope, ...] = ("this", "all", "future")


@dataclass(frozen=True, kw_only=True)
class SeriesIntent:
    """An edit or deletion aimed at one event.

    Attributes:
        calendar_id: Calendar owning the event
        occurrence_id: ID of the occurrence (or standalone event) targeted
        changes: Fields to change (edits only)
        delete: True for a deletion
    """

    calendar_id: str
    occurrence_id: str
    changes: EventChanges | None = None
    delete: bool = False

    def __post_init__(self) -> None:
        if self.delete and self.changes is not None:
            raise ValidationError("An intent cannot both delete and change an event")
        if not self.delete and (self.changes is None or self.changes.is_empty):
            raise ValidationError("An edit must change at least one field")


def check_scope(scope: str | None) -> Scope:
    """Validate a scope string (None means "this")."""
    if scope is None:
        return "this"
    if scope not in SCOPES:
        raise ValidationError(
            f"Invalid scope: {scope!r}. Must be one of: {', '.join(SCOPES)}"
        )
    return scope  # type: ignore[return-value]


class _Steps:
    """Tracks the remote writes of a multi-step strategy."""

    def __init__(self) -> None:
        self.completed: list[str] = []

    def done(self, description: str) -> None:
        self.completed.append(description)

    def fail(self, error: OneWeekError) -> OneWeekError:
        if not self.completed:
            return error
        return SeriesSplitError(error, self.completed)


class SeriesEditRouter:
    """Routes edits and deletions of (possibly recurring) events."""

    def __init__(self, store: EventStore) -> None:
        self.store = store

    async def apply(
        self,
        intent: SeriesIntent,
        mode: Scope = "this",
        *,
        occurrence: Event | None = None,
    ) -> Event | None:
        """Apply an edit or deletion with the given scope.

        Args:
            intent: What to change (or delete) and on which event
            mode: "this", "all" or "future"; ignored for non-recurring events
            occurrence: The targeted event when the caller already holds it
                (skips the initial fetch)

        Returns:
            The event the user now sees in place of the target (the patched
            event, the standalone copy, or the new series master), or None
            for deletions

        Raises:
            NotFoundError: If the event or its series master is gone
            SeriesIntegrityError: If the series master has no repeat rule
            SeriesSplitError: If a later step of a multi-step strategy failed
        """
        mode = check_scope(mode)
        if occurrence is None:
            occurrence = await self.store.get_event(intent.calendar_id, intent.occurrence_id)

        if not occurrence.is_recurring:
            return await self._apply_single(intent, occurrence)

        logger.info(
            "%s %s of series %s (scope=%s)",
            "Deleting" if intent.delete else "Editing",
            occurrence.id,
            occurrence.series_id,
            mode,
        )
        if mode == "this" and occurrence.is_occurrence:
            return await self._apply_this(intent, occurrence)
        if mode == "future":
            return await self._apply_future(intent, occurrence)
        return await self._apply_all(intent, occurrence)

    async def _apply_single(self, intent: SeriesIntent, event: Event) -> Event | None:
        if intent.delete:
            await self.store.delete_event(event.calendar_id, event.id)
            return None
        assert intent.changes is not None
        return await self.store.patch_event(
            event.calendar_id, event.id, intent.changes.as_patch(event)
        )

    async def _apply_this(self, intent: SeriesIntent, occurrence: Event) -> Event | None:
        if intent.delete:
            await self.store.delete_event(occurrence.calendar_id, occurrence.id)
            return None

        assert intent.changes is not None
        detached = intent.changes.apply_to(
            replace(occurrence, id="", recurring_event_id=None, recurrence=None)
        )
        # The standalone copy replaces the occurrence, which is cancelled
        steps = _Steps()
        try:
            created = await self.store.insert_event(occurrence.calendar_id, detached)
            steps.done(f"inserted standalone copy {created.id}")
            await self.store.delete_event(occurrence.calendar_id, occurrence.id)
            steps.done(f"cancelled occurrence {occurrence.id}")
        except OneWeekError as exc:
            error = steps.fail(exc)
            if error is exc:
                raise
            logger.warning("Detaching occurrence %s failed part-way: %s", occurrence.id, error)
            raise error from exc
        return created

    async def _resolve_master(self, occurrence: Event) -> Event:
        if occurrence.is_master:
            master = occurrence
        else:
            assert occurrence.recurring_event_id is not None
            master = await self.store.get_event(
                occurrence.calendar_id, occurrence.recurring_event_id
            )
        if not has_rule(master.recurrence):
            raise SeriesIntegrityError(
                f"Series master {master.id} has no repeat rule "
                f"(resolved from occurrence {occurrence.id})"
            )
        return master

    async def _apply_all(self, intent: SeriesIntent, occurrence: Event) -> Event | None:
        master = await self._resolve_master(occurrence)
        if intent.delete:
            await self.store.delete_event(master.calendar_id, master.id)
            return None

        assert intent.changes is not None
        changes = intent.changes
        if changes.changes_time and not occurrence.is_master:
            # Shift the whole series by the occurrence's delta
            moved = changes.apply_to(occurrence)
            start = master.start + (moved.start - occurrence.start)
            changes = replace(changes, start=start, end=start + moved.duration)
        return await self.store.patch_event(
            master.calendar_id, master.id, changes.as_patch(master)
        )

    async def _apply_future(self, intent: SeriesIntent, occurrence: Event) -> Event | None:
        master = await self._resolve_master(occurrence)
        split_start = occurrence.start.date() if occurrence.all_day else occurrence.start
        until = boundary_before(split_start, occurrence.all_day)
        if until < master.start:
            # Splitting at the first occurrence leaves nothing before it
            return await self._apply_all(intent, master)

        assert master.recurrence is not None
        steps = _Steps()
        try:
            await self.store.patch_event(
                master.calendar_id,
                master.id,
                {"recurrence": tuple(recurrence_with_until(master.recurrence, until))},
            )
            steps.done(f"ended series {master.id} at {to_compact_utc(until)}")
            if intent.delete:
                return None

            assert intent.changes is not None
            if intent.changes.recurrence is not None:
                tail = to_recurrence(intent.changes.recurrence)
            else:
                tail = [
                    remaining_tail(line, master.start, occurrence.start)
                    for line in master.recurrence
                    if is_rrule(line)
                ]
            successor = intent.changes.apply_to(
                replace(
                    occurrence,
                    id="",
                    recurring_event_id=None,
                    recurrence=tuple(tail),
                    title=master.title,
                    description=master.description,
                )
            )
            created = await self.store.insert_event(master.calendar_id, successor)
            steps.done(f"started series {created.id}")
            return created
        except OneWeekError as exc:
            error = steps.fail(exc)
            if error is exc:
                raise
            logger.warning("Series split of %s failed part-way: %s", master.id, error)
            raise error from exc


__all__ = ["Scope", "SCOPES", "SeriesIntent", "SeriesEditRouter", "check_scope"]
