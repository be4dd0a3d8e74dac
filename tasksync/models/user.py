"""User model for SQLModel."""
from datetime import datetime
from typing import TYPE_CHECKING
import uuid

from sqlalchemy import Column
from sqlmodel import Field, Relationship, SQLModel

from tasksync.models.types import UTCDateTime
from tasksync.utils.timestamps import utcnow

if TYPE_CHECKING:
    from tasksync.models.task import Task

PLAN_FREE = "free"
PLAN_PREMIUM = "premium"


class User(SQLModel, table=True):
    """User entity for authentication and task ownership."""

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        primary_key=True,
        index=True
    )
    email: str = Field(unique=True, index=True, max_length=255)
    name: str | None = Field(default=None, max_length=255)
    password_hash: str = Field(default="", max_length=255)
    plan: str = Field(default=PLAN_FREE, max_length=20)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False)
    )

    tasks: list["Task"] = Relationship(
        back_populates="owner",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )

    @property
    def is_premium(self) -> bool:
        return self.plan == PLAN_PREMIUM
