"""Google Tasks integration with per-task metadata.

Google Tasks has no custom fields, so structured metadata (such as the user a
task is assigned to) is stored at the end of the task's notes:

    Buy milk, the oat one

    ---ONEWEEK_METADATA---{"assigned_user": "annie"}

:func:`decode_metadata` splits the user-visible notes from the metadata and
:func:`encode_metadata` puts them back together. For metadata free of the
marker, ``decode_metadata(encode_metadata(notes, meta)) == (notes, meta)``;
the notes text is kept byte for byte, surrounding whitespace included.
"""

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from dateutil.parser import isoparse
from google.oauth2 import service_account
from googleapiclient.discovery import build

from oneweek.errors import ValidationError
from oneweek.remote import remote_call

logger = logging.getLogger(__name__)

METADATA_MARKER = "---ONEWEEK_METADATA---"

# Blank line between the visible notes and the metadata block
_SEPARATOR = "\n\n"

TASKS_SCOPES = ["https://www.googleapis.com/auth/tasks"]

TaskStatus = Literal["needsAction", "completed"]


def encode_metadata(notes: str | None, metadata: Mapping[str, str]) -> str:
    """Append a metadata block to notes, replacing any existing one.

    Args:
        notes: User-visible notes (may already carry a metadata block)
        metadata: Key/value pairs to store

    Returns:
        Notes text suitable for the Tasks API ``notes`` field
    """
    clean, _ = decode_metadata(notes)
    block = METADATA_MARKER + json.dumps(dict(metadata), separators=(",", ":"))
    if not clean:
        return block
    return f"{clean}{_SEPARATOR}{block}"


def decode_metadata(notes: str | None) -> tuple[str, dict[str, str]]:
    """Split notes into user-visible text and metadata.

    Only the last marker starts a metadata block, so notes that mention the
    marker themselves survive. Notes without a block (or with an unreadable
    one) are returned unchanged with empty metadata.
    """
    if not notes:
        return "", {}

    head, marker, payload = notes.rpartition(METADATA_MARKER)
    if not marker:
        return notes, {}

    try:
        metadata = json.loads(payload)
    except json.JSONDecodeError as exc:
        logger.warning("Ignoring unreadable task metadata: %s", exc)
        return notes, {}
    if not isinstance(metadata, dict):
        logger.warning("Ignoring task metadata that is not an object: %r", metadata)
        return notes, {}
    return head.removesuffix(_SEPARATOR), {
        str(k): str(v) for k, v in metadata.items() if v is not None
    }


def update_metadata(notes: str | None, updates: Mapping[str, str]) -> str:
    """Merge ``updates`` into the metadata stored in ``notes``."""
    clean, metadata = decode_metadata(notes)
    return encode_metadata(clean, {**metadata, **updates})


@dataclass(frozen=True, kw_only=True)
class Task:
    """A task on a Google Tasks list.

    Attributes:
        id: Remote task ID
        task_list_id: ID of the list owning the task
        title: Task title
        notes: User-visible notes (metadata block removed)
        due: Due date (the Tasks API keeps only the date part)
        status: "needsAction" or "completed"
        completed: When the task was completed
        parent: ID of the parent task for subtasks
        metadata: Key/value pairs decoded from the notes
    """

    id: str
    task_list_id: str
    title: str
    notes: str | None = None
    due: datetime | None = None
    status: TaskStatus = "needsAction"
    completed: datetime | None = None
    parent: str | None = None
    metadata: Mapping[str, str] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        return (self.task_list_id, self.id)

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def assigned_user(self) -> str | None:
        return self.metadata.get("assigned_user")


@dataclass(frozen=True)
class TaskList:
    id: str
    title: str


def _parse_time(value: str | None) -> datetime | None:
    return isoparse(value) if value else None


def _format_due(due: datetime) -> str:
    if due.tzinfo is None:
        raise ValidationError(f"Task due time must be timezone-aware, got {due!r}")
    return due.isoformat().replace("+00:00", "Z")


def task_from_api(item: Mapping[str, Any], task_list_id: str) -> Task:
    """Convert a Tasks API resource into a Task."""
    notes, metadata = decode_metadata(item.get("notes"))
    return Task(
        id=item.get("id", ""),
        task_list_id=task_list_id,
        title=item.get("title") or "Untitled",
        notes=notes or None,
        due=_parse_time(item.get("due")),
        status=item.get("status") or "needsAction",
        completed=_parse_time(item.get("completed")),
        parent=item.get("parent"),
        metadata=metadata,
    )


class TaskService:
    """Async access to Google Tasks through one shared API client."""

    def __init__(self, client: Any) -> None:
        """Initialize the service.

        Args:
            client: ``googleapiclient`` Tasks v1 resource (see :func:`connect_tasks`)
        """
        self.client = client

    @remote_call("List task lists")
    def list_task_lists(self) -> list[TaskList]:
        response = self.client.tasklists().list().execute()
        return [
            TaskList(id=item["id"], title=item.get("title", ""))
            for item in response.get("items", [])
        ]

    @remote_call("Get task list")
    def get_task_list(self, task_list_id: str) -> TaskList:
        item = self.client.tasklists().get(tasklist=task_list_id).execute()
        return TaskList(id=item["id"], title=item.get("title", ""))

    @remote_call("Create task list")
    def create_task_list(self, title: str) -> TaskList:
        item = self.client.tasklists().insert(body={"title": title}).execute()
        return TaskList(id=item["id"], title=item.get("title", title))

    @remote_call("List tasks")
    def list_tasks(
        self,
        task_list_id: str,
        *,
        show_completed: bool = False,
        show_hidden: bool = False,
        max_results: int = 100,
    ) -> list[Task]:
        response = (
            self.client.tasks()
            .list(
                tasklist=task_list_id,
                showCompleted=show_completed,
                showHidden=show_hidden,
                maxResults=max_results,
            )
            .execute()
        )
        return [task_from_api(item, task_list_id) for item in response.get("items", [])]

    @remote_call("Get task")
    def get_task(self, task_list_id: str, task_id: str) -> Task:
        item = self.client.tasks().get(tasklist=task_list_id, task=task_id).execute()
        return task_from_api(item, task_list_id)

    @remote_call("Create task")
    def create_task(
        self,
        task_list_id: str,
        *,
        title: str,
        notes: str | None = None,
        due: datetime | None = None,
        parent: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> Task:
        """Create a task; ``metadata`` is stored in the notes."""
        body: dict[str, Any] = {"title": title}
        text = encode_metadata(notes, metadata) if metadata else notes
        if text:
            body["notes"] = text
        if due is not None:
            body["due"] = _format_due(due)

        request: dict[str, Any] = {"tasklist": task_list_id, "body": body}
        if parent:
            request["parent"] = parent
        item = self.client.tasks().insert(**request).execute()
        logger.debug("Created task %s in %s", item.get("id"), task_list_id)
        return task_from_api(item, task_list_id)

    @remote_call("Update task")
    def update_task(
        self,
        task_list_id: str,
        task_id: str,
        *,
        title: str | None = None,
        notes: str | None = None,
        due: datetime | None = None,
        status: TaskStatus | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> Task:
        """Patch a task.

        Metadata updates are merged into the metadata already stored on the
        task (which is fetched first); ``notes`` replaces the visible notes
        and keeps the stored metadata.
        """
        body: dict[str, Any] = {}
        if title is not None:
            body["title"] = title
        if due is not None:
            body["due"] = _format_due(due)
        if status is not None:
            body["status"] = status
            if status == "needsAction":
                body["completed"] = None

        if metadata is not None or notes is not None:
            current = (
                self.client.tasks().get(tasklist=task_list_id, task=task_id).execute()
            )
            stored_notes, stored = decode_metadata(current.get("notes"))
            merged = {**stored, **(metadata or {})}
            visible = notes if notes is not None else stored_notes
            body["notes"] = encode_metadata(visible, merged) if merged else visible

        if not body:
            raise ValidationError("Task update must change at least one field")
        item = (
            self.client.tasks()
            .patch(tasklist=task_list_id, task=task_id, body=body)
            .execute()
        )
        return task_from_api(item, task_list_id)

    async def complete_task(self, task_list_id: str, task_id: str) -> Task:
        return await self.update_task(task_list_id, task_id, status="completed")

    async def uncomplete_task(self, task_list_id: str, task_id: str) -> Task:
        return await self.update_task(task_list_id, task_id, status="needsAction")

    @remote_call("Delete task")
    def delete_task(self, task_list_id: str, task_id: str) -> None:
        self.client.tasks().delete(tasklist=task_list_id, task=task_id).execute()

    async def list_tasks_for_user(self, task_list_id: str, user_id: str) -> list[Task]:
        """Open tasks assigned to ``user_id``."""
        tasks = await self.list_tasks(task_list_id)
        return [t for t in tasks if t.assigned_user == user_id]

    async def list_tasks_due(
        self, task_list_id: str, start: datetime, end: datetime
    ) -> list[Task]:
        """Open tasks due within ``[start, end]`` (inclusive)."""
        tasks = await self.list_tasks(task_list_id)
        return [t for t in tasks if t.due is not None and start <= t.due <= end]


def connect_tasks(credentials_path: str) -> TaskService:
    """Build a TaskService authenticated with a service-account key file."""
    credentials = service_account.Credentials.from_service_account_file(
        credentials_path, scopes=TASKS_SCOPES
    )
    client = build("tasks", "v1", credentials=credentials, cache_discovery=False)
    return TaskService(client)


__all__ = [
    "METADATA_MARKER",
    "Task",
    "TaskList",
    "TaskService",
    "encode_metadata",
    "decode_metadata",
    "update_metadata",
    "task_from_api",
    "connect_tasks",
]
