"""Ordering and batch mutations.

A batch is validated in full before anything is written and then applied in
a single transaction: either every row gets its version bump or none does.
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Sequence

from sqlmodel import Session

from tasksync.errors import StaleTaskError, TaskStateError
from tasksync.models.task import Task
from tasksync.schemas.task import BatchActionRequest, ReorderItem
from tasksync.services.ownership import check_many, raise_for_result
from tasksync.services.versioning import apply_mutation
from tasksync.utils.logger import get_logger
from tasksync.utils.timestamps import utcnow

logger = get_logger("tasksync.ordering")


class OrderingService:
    """Bulk position updates and bulk actions for one owner."""

    def __init__(self, session: Session, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock

    def _load_batch(self, owner_id: str, task_ids: Sequence[str]) -> List[Task]:
        """Every id must be the owner's live task, or the whole batch is rejected."""
        tasks = [raise_for_result(result) for result in check_many(self.session, task_ids, owner_id)]
        archived = [task.id for task in tasks if task.is_deleted]
        if archived:
            raise TaskStateError(f"Task {archived[0]} is deleted")
        return tasks

    def _apply_all(self, owner_id: str, writes: List[tuple]) -> List[Task]:
        now = self.clock()
        try:
            for task, changes in writes:
                apply_mutation(self.session, task, changes, now=now)
            self.session.commit()
        except StaleTaskError:
            self.session.rollback()
            logger.warning("Batch rolled back after a version race", owner_id=owner_id)
            raise
        except Exception:
            self.session.rollback()
            raise
        return [task for task, _ in writes]

    def reorder(self, owner_id: str, items: List[ReorderItem]) -> List[Task]:
        """Write new ``order`` values for a drag-reorder."""
        tasks = self._load_batch(owner_id, [item.task_id for item in items])
        writes = [(task, {"order": item.order}) for task, item in zip(tasks, items)]
        updated = self._apply_all(owner_id, writes)
        logger.info("Tasks reordered", owner_id=owner_id, count=len(updated))
        return updated

    def batch_action(self, owner_id: str, request: BatchActionRequest) -> int:
        """Apply one action to every listed task; returns the affected count."""
        tasks = self._load_batch(owner_id, request.task_ids)
        changes = self._changes_for(request, self.clock())
        writes = [(task, dict(changes)) for task in tasks]
        updated = self._apply_all(owner_id, writes)
        logger.info(
            "Batch action applied",
            owner_id=owner_id,
            action=request.action,
            count=len(updated),
        )
        return len(updated)

    @staticmethod
    def _changes_for(request: BatchActionRequest, now: datetime) -> Dict[str, Any]:
        if request.action == "complete":
            return {"completed": True}
        if request.action == "incomplete":
            return {"completed": False}
        if request.action == "delete":
            return {"deleted_at": now}
        return request.data.to_changes()
