"""Ownership guard for task rows.

Existence is checked by id alone, then ownership, so a client can never
mistake someone else's task id for an unknown one.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from sqlmodel import Session, select

from tasksync.errors import TaskForbiddenError, TaskNotFoundError
from tasksync.models.task import Task


class OwnershipStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class OwnershipResult:
    task_id: str
    status: OwnershipStatus
    task: Optional[Task] = None

    @property
    def ok(self) -> bool:
        return self.status is OwnershipStatus.OK


def check_ownership(session: Session, task_id: str, owner_id: str) -> OwnershipResult:
    """Look a task up by id and classify it against ``owner_id``."""
    task = session.get(Task, task_id)
    if task is None:
        return OwnershipResult(task_id, OwnershipStatus.NOT_FOUND)
    if task.owner_id != owner_id:
        return OwnershipResult(task_id, OwnershipStatus.FORBIDDEN)
    return OwnershipResult(task_id, OwnershipStatus.OK, task)


def check_many(session: Session, task_ids: Iterable[str], owner_id: str) -> List[OwnershipResult]:
    """Classify a batch of ids with a single query."""
    ids = list(task_ids)
    if not ids:
        return []
    rows = session.exec(select(Task).where(Task.id.in_(set(ids)))).all()
    by_id = {task.id: task for task in rows}

    results = []
    for task_id in ids:
        task = by_id.get(task_id)
        if task is None:
            results.append(OwnershipResult(task_id, OwnershipStatus.NOT_FOUND))
        elif task.owner_id != owner_id:
            results.append(OwnershipResult(task_id, OwnershipStatus.FORBIDDEN))
        else:
            results.append(OwnershipResult(task_id, OwnershipStatus.OK, task))
    return results


def raise_for_result(result: OwnershipResult) -> Task:
    if result.status is OwnershipStatus.NOT_FOUND:
        raise TaskNotFoundError(result.task_id)
    if result.status is OwnershipStatus.FORBIDDEN:
        raise TaskForbiddenError(result.task_id)
    return result.task


def require_owned_task(session: Session, task_id: str, owner_id: str) -> Task:
    """Return the caller's task or raise ``TaskNotFoundError``/``TaskForbiddenError``."""
    return raise_for_result(check_ownership(session, task_id, owner_id))
