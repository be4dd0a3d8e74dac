"""Soft-delete lifecycle of a task.

A task is Active, Archived at some instant (a tombstone that still syncs),
or Purged (the row is gone). Only ``deleted_at`` is persisted; the two wire
fields ``isDeleted``/``deletedAt`` are derived from it.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union


@dataclass(frozen=True)
class Active:
    pass


@dataclass(frozen=True)
class Archived:
    at: datetime


@dataclass(frozen=True)
class Purged:
    task_id: str


DeleteState = Union[Active, Archived, Purged]

ACTIVE = Active()


def from_deleted_at(deleted_at: Optional[datetime]) -> DeleteState:
    return ACTIVE if deleted_at is None else Archived(at=deleted_at)


def to_deleted_at(state: DeleteState) -> Optional[datetime]:
    if isinstance(state, Archived):
        return state.at
    if isinstance(state, Purged):
        raise ValueError("a purged task has no row to store")
    return None
