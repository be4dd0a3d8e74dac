"""Task schemas. Everything on the wire is camelCase."""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from tasksync.models.delete_state import ACTIVE, Archived, DeleteState, to_deleted_at
from tasksync.models.task import TaskPriority
from tasksync.utils.timestamps import ensure_utc

UtcDateTime = Annotated[datetime, AfterValidator(ensure_utc)]
Tag = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=30)]

# Columns that reject NULL; an explicit null in a partial update is dropped.
NON_NULLABLE_FIELDS = {"title", "completed", "priority", "category", "tags", "order"}


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        str_strip_whitespace=True,
    )


class TaskCreate(CamelModel):
    """Schema for creating a task."""
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    completed: bool = False
    priority: TaskPriority = TaskPriority.MEDIUM.value
    due_date: Optional[UtcDateTime] = None
    category: str = Field("default", min_length=1, max_length=50)
    tags: List[Tag] = Field(default_factory=list, max_length=10)
    order: int = 0
    client_id: Optional[str] = Field(None, max_length=50)

    def to_fields(self) -> Dict[str, Any]:
        return self.model_dump()


class TaskUpdate(CamelModel):
    """Schema for a partial task update; only the fields sent are written."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    completed: Optional[bool] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[UtcDateTime] = None
    category: Optional[str] = Field(None, min_length=1, max_length=50)
    tags: Optional[List[Tag]] = Field(None, max_length=10)
    order: Optional[int] = None
    client_id: Optional[str] = Field(None, max_length=50)

    def to_changes(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        return {
            key: value
            for key, value in data.items()
            if not (value is None and key in NON_NULLABLE_FIELDS)
        }


class ClientTask(CamelModel):
    """A client's cached copy of a task, as submitted for sync.

    ``lastModified`` is the server timestamp the client last saw, not a
    client clock reading. ``ownerId`` and ``syncVersion`` are echoed back in
    conflict reports but never written.
    """
    id: Optional[str] = Field(None, min_length=1, max_length=64)
    owner_id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    completed: bool = False
    completed_at: Optional[UtcDateTime] = None
    priority: TaskPriority = TaskPriority.MEDIUM.value
    due_date: Optional[UtcDateTime] = None
    category: str = Field("default", min_length=1, max_length=50)
    tags: List[Tag] = Field(default_factory=list, max_length=10)
    order: int = 0
    client_id: Optional[str] = Field(None, max_length=50)
    is_deleted: bool = False
    deleted_at: Optional[UtcDateTime] = None
    last_modified: Optional[UtcDateTime] = None
    sync_version: Optional[int] = None

    @model_validator(mode="after")
    def check_delete_fields(self):
        if self.deleted_at is not None and not self.is_deleted:
            raise ValueError("deletedAt is set but isDeleted is false")
        return self

    def delete_state(self, now: datetime) -> DeleteState:
        if not self.is_deleted:
            return ACTIVE
        return Archived(at=self.deleted_at or now)

    def to_changes(self, now: datetime, only_sent: bool) -> Dict[str, Any]:
        """Column values this copy would write.

        Args:
            now: Server time, used for a tombstone without ``deletedAt``
            only_sent: Limit to the fields present in the payload
        """
        sent = self.model_fields_set
        data = self.model_dump(
            exclude_unset=only_sent,
            exclude={"id", "owner_id", "is_deleted", "deleted_at", "last_modified", "sync_version"},
        )
        if not only_sent or "is_deleted" in sent or "deleted_at" in sent:
            data["deleted_at"] = to_deleted_at(self.delete_state(now))
        return {
            key: value
            for key, value in data.items()
            if not (value is None and key in NON_NULLABLE_FIELDS)
        }


class TaskResponse(CamelModel):
    """Schema for task API responses."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    title: str
    description: Optional[str] = None
    completed: bool
    completed_at: Optional[UtcDateTime] = None
    priority: str
    due_date: Optional[UtcDateTime] = None
    category: str
    tags: List[str] = Field(default_factory=list)
    order: int
    last_modified: UtcDateTime
    sync_version: int
    is_deleted: bool
    deleted_at: Optional[UtcDateTime] = None
    client_id: Optional[str] = None
    created_at: UtcDateTime


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class TaskListResponse(CamelModel):
    tasks: List[TaskResponse]
    pagination: Pagination


class TaskOverview(CamelModel):
    total: int
    completed: int
    pending: int
    overdue: int
    high_priority: int
    urgent: int
    completion_rate: int


class ReorderItem(CamelModel):
    task_id: str = Field(..., min_length=1)
    order: int


class ReorderRequest(CamelModel):
    """Schema for a drag-reorder batch."""
    tasks: List[ReorderItem] = Field(..., min_length=1, max_length=100)

    @field_validator("tasks")
    @classmethod
    def unique_ids(cls, value: List[ReorderItem]) -> List[ReorderItem]:
        ids = [item.task_id for item in value]
        if len(set(ids)) != len(ids):
            raise ValueError("each task may appear only once")
        return value


class BatchActionRequest(CamelModel):
    """Schema for applying one action to many tasks."""
    task_ids: List[str] = Field(..., min_length=1, max_length=100)
    action: Literal["complete", "incomplete", "delete", "update"]
    data: Optional[TaskUpdate] = None

    @model_validator(mode="after")
    def check_payload(self):
        if len(set(self.task_ids)) != len(self.task_ids):
            raise ValueError("each task may appear only once")
        if self.action == "update" and (self.data is None or not self.data.to_changes()):
            raise ValueError("update requires non-empty data")
        return self


class BatchActionResponse(CamelModel):
    action: str
    affected_count: int


class ReorderResponse(CamelModel):
    tasks: List[TaskResponse]
