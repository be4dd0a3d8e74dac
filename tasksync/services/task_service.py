"""Task service: direct CRUD and the soft-delete lifecycle."""
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy import String, case, cast, func, or_
from sqlmodel import Session, select

from tasksync.errors import TaskStateError
from tasksync.models.delete_state import Archived, Purged
from tasksync.models.task import Task, TaskPriority
from tasksync.schemas.task import TaskCreate, TaskOverview, TaskUpdate
from tasksync.services.ownership import require_owned_task
from tasksync.services.versioning import apply_mutation, new_task
from tasksync.utils.logger import get_logger
from tasksync.utils.timestamps import utcnow

logger = get_logger("tasksync.tasks")

SORTABLE_FIELDS = {
    "createdAt": Task.created_at,
    "lastModified": Task.last_modified,
    "dueDate": Task.due_date,
    "order": Task.order,
    "title": Task.title,
}

PRIORITY_RANK = case(
    (Task.priority == TaskPriority.URGENT.value, 4),
    (Task.priority == TaskPriority.HIGH.value, 3),
    (Task.priority == TaskPriority.MEDIUM.value, 2),
    (Task.priority == TaskPriority.LOW.value, 1),
    else_=0,
)


@dataclass(frozen=True)
class TaskFilters:
    completed: Optional[bool] = None
    priorities: Tuple[str, ...] = ()
    category: Optional[str] = None
    tag: Optional[str] = None
    search: Optional[str] = None
    include_deleted: bool = False
    sort_by: str = "createdAt"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 50


class TaskService:
    """Service class for task operations scoped to one owner."""

    def __init__(self, session: Session, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock

    def create(self, owner_id: str, data: TaskCreate) -> Task:
        """Create a new task at syncVersion 1."""
        task = new_task(owner_id, data.to_fields(), self.clock())
        self.session.add(task)
        self.session.commit()
        self.session.refresh(task)
        logger.info("Task created", owner_id=owner_id, task_id=task.id)
        return task

    def list_tasks(self, owner_id: str, filters: TaskFilters) -> Tuple[List[Task], int]:
        """Get one page of the owner's tasks and the total matching count."""
        statement = select(Task).where(Task.owner_id == owner_id)

        if not filters.include_deleted:
            statement = statement.where(Task.deleted_at.is_(None))
        if filters.completed is not None:
            statement = statement.where(Task.completed == filters.completed)
        if filters.priorities:
            statement = statement.where(Task.priority.in_(filters.priorities))
        if filters.category:
            statement = statement.where(Task.category == filters.category)
        if filters.tag:
            # JSON array stored as text; match the quoted element.
            statement = statement.where(cast(Task.tags, String).like(f'%"{filters.tag}"%'))
        if filters.search:
            pattern = f"%{filters.search}%"
            statement = statement.where(
                or_(
                    Task.title.ilike(pattern),
                    Task.description.ilike(pattern),
                    Task.category.ilike(pattern),
                )
            )

        total = self.session.exec(
            select(func.count()).select_from(statement.subquery())
        ).one()

        if filters.sort_by == "priority":
            column = PRIORITY_RANK
        else:
            column = SORTABLE_FIELDS.get(filters.sort_by, Task.created_at)
        ordering = column.asc() if filters.sort_order == "asc" else column.desc()
        statement = (
            statement.order_by(ordering, Task.id)
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )
        return list(self.session.exec(statement).all()), total

    def get(self, owner_id: str, task_id: str) -> Task:
        return require_owned_task(self.session, task_id, owner_id)

    def update(self, owner_id: str, task_id: str, data: TaskUpdate) -> Task:
        """Apply a partial update; an empty body still bumps the version."""
        task = require_owned_task(self.session, task_id, owner_id)
        apply_mutation(self.session, task, data.to_changes(), now=self.clock())
        self.session.commit()
        return task

    def toggle_complete(self, owner_id: str, task_id: str) -> Task:
        """Toggle task completion status."""
        task = require_owned_task(self.session, task_id, owner_id)
        apply_mutation(self.session, task, {"completed": not task.completed}, now=self.clock())
        self.session.commit()
        return task

    def archive(self, owner_id: str, task_id: str) -> Task:
        """Soft-delete: the tombstone keeps syncing to other devices."""
        task = require_owned_task(self.session, task_id, owner_id)
        now = self.clock()
        apply_mutation(self.session, task, {"deleted_at": now}, now=now)
        self.session.commit()
        logger.info("Task archived", owner_id=owner_id, task_id=task_id)
        return task

    def restore(self, owner_id: str, task_id: str) -> Task:
        task = require_owned_task(self.session, task_id, owner_id)
        if not isinstance(task.delete_state, Archived):
            raise TaskStateError(f"Task {task_id} is not deleted")
        apply_mutation(self.session, task, {"deleted_at": None}, now=self.clock())
        self.session.commit()
        logger.info("Task restored", owner_id=owner_id, task_id=task_id)
        return task

    def purge(self, owner_id: str, task_id: str) -> Purged:
        """Physically remove the row.

        Devices that have not synced since before the archive never learn
        about the removal and keep their local copy.
        """
        task = require_owned_task(self.session, task_id, owner_id)
        self.session.delete(task)
        self.session.commit()
        logger.info("Task purged", owner_id=owner_id, task_id=task_id)
        return Purged(task_id=task_id)

    def overview(self, owner_id: str) -> TaskOverview:
        """Counts over the owner's non-deleted tasks."""
        now = self.clock()
        row = self.session.exec(
            select(
                func.count(Task.id),
                func.sum(case((Task.completed == True, 1), else_=0)),  # noqa: E712
                func.sum(
                    case(
                        (
                            (Task.completed == False)  # noqa: E712
                            & Task.due_date.is_not(None)
                            & (Task.due_date < now),
                            1,
                        ),
                        else_=0,
                    )
                ),
                func.sum(case((Task.priority == TaskPriority.HIGH.value, 1), else_=0)),
                func.sum(case((Task.priority == TaskPriority.URGENT.value, 1), else_=0)),
            )
            .where(Task.owner_id == owner_id)
            .where(Task.deleted_at.is_(None))
        ).one()

        total, completed, overdue, high, urgent = (value or 0 for value in row)
        return TaskOverview(
            total=total,
            completed=completed,
            pending=total - completed,
            overdue=overdue,
            high_priority=high,
            urgent=urgent,
            completion_rate=round(completed * 100 / total) if total else 0,
        )


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0
