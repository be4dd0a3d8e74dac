"""Conflict detection for client-submitted tasks.

Whole-record last-writer-wins on ``lastModified``: the engine never merges
individual fields, and ties go to the server.
"""
from enum import Enum
from typing import Optional

from tasksync.models.task import CLIENT_WRITABLE_FIELDS, Task
from tasksync.schemas.task import NON_NULLABLE_FIELDS, ClientTask
from tasksync.utils.timestamps import ensure_utc

_TIMESTAMP_FIELDS = {"completed_at", "due_date", "deleted_at"}


class SyncDecision(str, Enum):
    CREATE = "create"
    OVERWRITE = "overwrite"
    CONFLICT = "conflict"
    NOOP = "noop"


def decide(server_task: Optional[Task], client_task: ClientTask) -> SyncDecision:
    """Classify one client task against the owner's server row.

    A client copy that carries no ``lastModified`` has never seen the server
    row, so it counts as older than it.
    """
    if server_task is None:
        return SyncDecision.CREATE

    client_modified = client_task.last_modified
    if client_modified is None:
        return SyncDecision.CONFLICT

    server_modified = ensure_utc(server_task.last_modified)
    if server_modified > client_modified:
        return SyncDecision.CONFLICT
    if server_modified < client_modified:
        return SyncDecision.OVERWRITE
    return SyncDecision.NOOP


def _server_assigned(field: str, value, client_task: ClientTask) -> bool:
    """True when a null in the payload means "let the server fill it in"."""
    if value is not None:
        return False
    if field in NON_NULLABLE_FIELDS:
        return True
    if field == "completed_at":
        return client_task.completed
    if field == "deleted_at":
        return client_task.is_deleted
    return False


def matches_server(server_task: Task, client_task: ClientTask) -> bool:
    """Whether every field the client sent already equals the server row.

    Used to recognise a retried request whose overwrite already landed.
    """
    sent = client_task.model_fields_set
    data = client_task.model_dump(include=sent & set(CLIENT_WRITABLE_FIELDS))
    for field, value in data.items():
        if _server_assigned(field, value, client_task):
            continue
        current = getattr(server_task, field)
        if field in _TIMESTAMP_FIELDS:
            current = ensure_utc(current)
        if value != current:
            return False

    if ("is_deleted" in sent or "deleted_at" in sent) and (
        client_task.is_deleted != server_task.is_deleted
    ):
        return False
    return True
