"""Google integration for oneweek.

This module provides the public entry points for the Google-backed stores.
It re-exports the implementations from `oneweek.store.gcsa` and
`oneweek.tasks`.

Example:
    >>> from datetime import datetime
    >>> from oneweek import EventService
    >>> from oneweek.config import Settings, load_access_config
    >>> from oneweek.gcsa import connect
    >>> from oneweek.permissions import AccessPolicy
    >>>
    >>> settings = Settings.from_env()
    >>> store = connect(str(settings.credentials_path))
    >>> policy = AccessPolicy(load_access_config(settings.access_config_path))
    >>> service = EventService(store, policy, "annie@example.com", zone=settings.zone)
    >>> week = await service.list_week(datetime.now(settings.zone))
"""

# Re-export public API from store.gcsa and tasks
from oneweek.store.gcsa import CALENDAR_SCOPES, GoogleCalendarStore, connect
from oneweek.tasks import TaskService, connect_tasks

__all__ = ["GoogleCalendarStore", "TaskService", "CALENDAR_SCOPES", "connect", "connect_tasks"]
