"""Calling blocking Google API clients from async code.

The Google clients (gcsa and googleapiclient) are synchronous. The
:func:`remote_call` decorator runs a blocking method in a worker thread and
turns client exceptions into the oneweek error taxonomy at that boundary.
"""

import asyncio
import logging
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from googleapiclient.errors import HttpError

from oneweek.errors import NotFoundError, OneWeekError, RemoteError

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_MISSING_STATUSES = (404, 410)


def http_status(error: HttpError) -> int | None:
    """HTTP status of a client error, if it carries one."""
    status = getattr(error, "status_code", None)
    if status is None and getattr(error, "resp", None) is not None:
        status = getattr(error.resp, "status", None)
    return int(status) if status is not None else None


def translate_error(error: Exception, what: str) -> OneWeekError:
    """Map a client exception to the oneweek error taxonomy.

    404 and 410 responses become NotFoundError; anything else becomes a
    RemoteError keeping the original exception.
    """
    if isinstance(error, OneWeekError):
        return error
    if isinstance(error, HttpError) and http_status(error) in _MISSING_STATUSES:
        return NotFoundError(f"{what}: not found")
    return RemoteError(f"{what}: {error}", original=error)


def remote_call(what: str) -> Callable[[Callable[..., _T]], Callable[..., Any]]:
    """Decorator running a blocking client call in a thread.

    Client exceptions are logged and translated, so callers only ever see
    NotFoundError or RemoteError (or a OneWeekError the call raised itself).

    Args:
        what: Short description of the call used in messages ("Get event")
    """

    def decorate(func: Callable[..., _T]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> _T:
            try:
                return await asyncio.to_thread(func, *args, **kwargs)
            except Exception as exc:
                error = translate_error(exc, what)
                if error is exc:
                    raise
                logger.warning("%s failed: %s", what, exc)
                raise error from exc

        return wrapper

    return decorate


__all__ = ["remote_call", "translate_error", "http_status"]
