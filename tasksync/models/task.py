"""Task model for SQLModel."""
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional
import uuid

from sqlalchemy import JSON, Column, ForeignKey, Index, String
from sqlmodel import Field, Relationship, SQLModel

from tasksync.models.delete_state import DeleteState, from_deleted_at
from tasksync.models.types import UTCDateTime
from tasksync.utils.timestamps import utcnow

if TYPE_CHECKING:
    from tasksync.models.user import User


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# Fields a client may write, either directly or through sync.
CLIENT_WRITABLE_FIELDS = (
    "title",
    "description",
    "completed",
    "completed_at",
    "priority",
    "due_date",
    "category",
    "tags",
    "order",
    "deleted_at",
    "client_id",
)


class Task(SQLModel, table=True):
    """Task entity with the metadata the sync engine relies on."""

    __table_args__ = (
        Index("ix_task_owner_last_modified", "owner_id", "last_modified"),
    )

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()), primary_key=True, max_length=64
    )
    owner_id: str = Field(
        sa_column=Column(
            String, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    title: str = Field(max_length=200, min_length=1)
    description: Optional[str] = Field(default=None, max_length=1000)
    completed: bool = Field(default=False, index=True)
    completed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(UTCDateTime, nullable=True)
    )
    priority: str = Field(default=TaskPriority.MEDIUM.value, max_length=20, index=True)
    due_date: Optional[datetime] = Field(
        default=None, sa_column=Column(UTCDateTime, nullable=True, index=True)
    )
    category: str = Field(default="default", max_length=50)
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    order: int = Field(default=0, index=True)
    client_id: Optional[str] = Field(default=None, max_length=50, index=True)

    # Sync metadata, written only by the server
    last_modified: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False)
    )
    sync_version: int = Field(default=1, nullable=False)
    deleted_at: Optional[datetime] = Field(
        default=None, sa_column=Column(UTCDateTime, nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False)
    )

    owner: "User" = Relationship(back_populates="tasks")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def delete_state(self) -> DeleteState:
        return from_deleted_at(self.deleted_at)
