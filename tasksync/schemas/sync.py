"""Sync request/response schemas."""
from typing import Any, List, Optional

from pydantic import Field

from tasksync.schemas.task import CamelModel, ClientTask, TaskResponse, UtcDateTime


class SyncRequest(CamelModel):
    """Body of POST /tasks/sync.

    ``lastSyncTime`` stays raw here so a missing or malformed
    checkpoint is reported as 400 rather than a schema error.
    """
    last_sync_time: Optional[Any] = None
    client_tasks: List[ClientTask] = Field(default_factory=list, max_length=500)


class SyncConflict(CamelModel):
    task_id: str
    server_version: TaskResponse
    client_version: ClientTask


class SyncResponse(CamelModel):
    server_tasks: List[TaskResponse]
    conflicts: List[SyncConflict]
    updates: List[TaskResponse]
    sync_time: UtcDateTime
