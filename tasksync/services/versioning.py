"""Version tracking for task mutations.

Every accepted mutation sets ``last_modified`` to the server clock and bumps
``sync_version`` by exactly one. Writes are compare-and-set on the version
the caller read, so two writers racing on the same row cannot both win.
Writes with identical field values still count as mutations.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlmodel import Session

from tasksync.errors import StaleTaskError
from tasksync.models.task import Task
from tasksync.utils.timestamps import utcnow


def completion_side_effects(
    task: Optional[Task], changes: Dict[str, Any], now: datetime
) -> Dict[str, Any]:
    """Keep ``completed_at`` consistent with a change to ``completed``."""
    if "completed" not in changes:
        return changes
    changes = dict(changes)
    if changes["completed"]:
        if changes.get("completed_at") is None:
            previous = task.completed_at if task is not None and task.completed else None
            changes["completed_at"] = previous or now
    else:
        changes["completed_at"] = None
    return changes


def new_task(owner_id: str, fields: Dict[str, Any], now: Optional[datetime] = None) -> Task:
    """Build a task row at version 1. The caller adds and commits it."""
    now = now or utcnow()
    values = completion_side_effects(None, dict(fields), now)
    values.pop("owner_id", None)
    values.pop("sync_version", None)
    values.pop("last_modified", None)
    values.pop("created_at", None)
    if values.get("id") is None:
        values.pop("id", None)
    if values.get("tags") is None:
        values.pop("tags", None)
    return Task(
        **values,
        owner_id=owner_id,
        sync_version=1,
        last_modified=now,
        created_at=now,
    )


def apply_mutation(
    session: Session,
    task: Task,
    changes: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
    expected_version: Optional[int] = None,
) -> Task:
    """Write ``changes`` to ``task`` if its version has not moved.

    Args:
        session: Session the task was loaded in; the caller commits
        task: The row as the caller last read it
        changes: Column values to write (may be empty: a pure version bump)
        now: Server time of the mutation
        expected_version: Version the caller's decision was based on,
            defaults to ``task.sync_version``

    Returns:
        The refreshed task

    Raises:
        StaleTaskError: If the stored version no longer matches
    """
    now = now or utcnow()
    expected = task.sync_version if expected_version is None else expected_version
    values = completion_side_effects(task, dict(changes or {}), now)
    values["last_modified"] = now
    values["sync_version"] = expected + 1

    statement = (
        update(Task)
        .where(Task.id == task.id)
        .where(Task.sync_version == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = session.exec(statement)
    if result.rowcount != 1:
        raise StaleTaskError(task.id, expected)

    session.refresh(task)
    return task
