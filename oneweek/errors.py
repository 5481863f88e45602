"""Error taxonomy for oneweek.

Every error raised by the engine derives from :class:`OneWeekError` and
carries an HTTP-style ``status_code`` so an outer web layer can map it to a
response without inspecting the message.
"""

from collections.abc import Sequence


class OneWeekError(Exception):
    """Base class for all oneweek errors."""

    status_code: int = 500


class ValidationError(OneWeekError, ValueError):
    """Malformed input: bad recurrence rule, missing start date, bad drop."""

    status_code = 400


class PermissionDeniedError(OneWeekError):
    """Caller lacks the calendar-level capability the operation needs.

    Always raised before any remote call is issued.
    """

    status_code = 403

    def __init__(self, message: str, *, calendar_id: str, permission: str) -> None:
        super().__init__(message)
        self.calendar_id = calendar_id
        self.permission = permission


class NotFoundError(OneWeekError):
    """Target event, series master, or task no longer exists remotely."""

    status_code = 404


class SeriesIntegrityError(OneWeekError):
    """A series operation resolved a master that has no repeat rule."""

    status_code = 409


class RemoteError(OneWeekError):
    """The remote store rejected a call for any other reason.

    Attributes:
        original: The exception raised by the underlying client
    """

    status_code = 502

    def __init__(self, message: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original


class SeriesSplitError(OneWeekError):
    """A multi-step series operation failed part-way.

    Remote calls committed before the failure are not compensated; the
    completed steps are listed so the caller can report them.

    Attributes:
        completed: Descriptions of the steps that succeeded before the failure
        cause: The error raised by the failing step
    """

    def __init__(self, cause: OneWeekError, completed: Sequence[str]) -> None:
        done = ", ".join(completed) if completed else "none"
        super().__init__(f"{cause} (steps already applied: {done})")
        self.cause = cause
        self.completed = tuple(completed)
        self.status_code = cause.status_code


class MutationError(OneWeekError):
    """One or more remote calls of a single user action failed.

    Combines the failures of every window/step touched by the action into a
    single error so the user sees one message per attempt.

    Attributes:
        errors: The individual failures, in the order they occurred
        completed: Steps of the action that succeeded before the failure
    """

    def __init__(self, errors: Sequence[Exception], completed: Sequence[str] = ()) -> None:
        if not errors:
            raise ValueError("MutationError requires at least one error")
        message = "; ".join(str(e) for e in errors)
        if completed:
            message += f" (steps already applied: {', '.join(completed)})"
        super().__init__(message)
        self.errors = tuple(errors)
        self.completed = tuple(completed)
        first = errors[0]
        self.status_code = getattr(first, "status_code", 500)


__all__ = [
    "OneWeekError",
    "ValidationError",
    "PermissionDeniedError",
    "NotFoundError",
    "SeriesIntegrityError",
    "RemoteError",
    "SeriesSplitError",
    "MutationError",
]
