"""Task router: sync, CRUD, archive lifecycle and batch operations."""
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlmodel import Session

from tasksync.db.config import get_session
from tasksync.middleware.auth import (
    CurrentUser,
    get_current_user,
    require_known_user,
    require_sync_entitlement,
)
from tasksync.middleware.rate_limit import enforce_rate_limit
from tasksync.models.task import TaskPriority
from tasksync.schemas.sync import SyncRequest, SyncResponse
from tasksync.schemas.task import (
    BatchActionRequest,
    BatchActionResponse,
    Pagination,
    ReorderRequest,
    ReorderResponse,
    TaskCreate,
    TaskListResponse,
    TaskOverview,
    TaskResponse,
    TaskUpdate,
)
from tasksync.services.ordering import OrderingService
from tasksync.services.sync_service import SyncCoordinator
from tasksync.services.task_service import SORTABLE_FIELDS, TaskFilters, TaskService, page_count

router = APIRouter(prefix="/tasks", tags=["Tasks"])  # main.py adds the /api prefix

_PRIORITIES = {priority.value for priority in TaskPriority}


def get_task_service(session: Session = Depends(get_session)) -> TaskService:
    """Dependency for getting TaskService instance."""
    return TaskService(session)


def get_ordering_service(session: Session = Depends(get_session)) -> OrderingService:
    return OrderingService(session)


def get_sync_coordinator(session: Session = Depends(get_session)) -> SyncCoordinator:
    return SyncCoordinator(session)


@router.post(
    "/sync",
    response_model=SyncResponse,
    dependencies=[Depends(enforce_rate_limit)],
)
def sync_tasks(
    request: SyncRequest,
    current_user: CurrentUser = Depends(require_sync_entitlement),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    """Reconcile the client's cached tasks and return everything changed since its checkpoint."""
    return coordinator.sync(current_user.user_id, request.last_sync_time, request.client_tasks)


@router.get("", response_model=TaskListResponse)
def list_tasks(
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
    completed: Optional[bool] = Query(None, description="Filter by completion status"),
    priority: Optional[str] = Query(None, description="Comma separated priorities, e.g. high,urgent"),
    category: Optional[str] = Query(None),
    tag: Optional[str] = Query(None, description="Filter by specific tag"),
    search: Optional[str] = Query(None, description="Search title, description and category"),
    include_deleted: bool = Query(False, alias="includeDeleted"),
    sort_by: str = Query("createdAt", alias="sortBy", description="createdAt, lastModified, dueDate, priority, order or title"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
):
    """List the caller's tasks with filtering, sorting and pagination."""
    priorities = tuple(
        value.strip() for value in (priority or "").split(",") if value.strip() in _PRIORITIES
    )
    filters = TaskFilters(
        completed=completed,
        priorities=priorities,
        category=category,
        tag=tag,
        search=search,
        include_deleted=include_deleted,
        sort_by=sort_by if sort_by in SORTABLE_FIELDS or sort_by == "priority" else "createdAt",
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    tasks, total = service.list_tasks(current_user.user_id, filters)
    return TaskListResponse(
        tasks=[TaskResponse.model_validate(task) for task in tasks],
        pagination=Pagination(page=page, limit=limit, total=total, pages=page_count(total, limit)),
    )


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    task_data: TaskCreate,
    current_user: CurrentUser = Depends(require_known_user),
    service: TaskService = Depends(get_task_service),
):
    """Create a new task."""
    return TaskResponse.model_validate(service.create(current_user.user_id, task_data))


@router.get("/stats/overview", response_model=TaskOverview)
def task_overview(
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return service.overview(current_user.user_id)


@router.patch("/batch/reorder", response_model=ReorderResponse)
def reorder_tasks(
    request: ReorderRequest,
    current_user: CurrentUser = Depends(require_known_user),
    service: OrderingService = Depends(get_ordering_service),
):
    """Persist a drag-reorder; all positions are written or none."""
    tasks = service.reorder(current_user.user_id, request.tasks)
    return ReorderResponse(tasks=[TaskResponse.model_validate(task) for task in tasks])


@router.patch("/batch/action", response_model=BatchActionResponse)
def batch_action(
    request: BatchActionRequest,
    current_user: CurrentUser = Depends(require_known_user),
    service: OrderingService = Depends(get_ordering_service),
):
    affected = service.batch_action(current_user.user_id, request)
    return BatchActionResponse(action=request.action, affected_count=affected)


@router.get("/{task_id}", response_model=TaskResponse)
def get_task(
    task_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Get a specific task by ID."""
    return TaskResponse.model_validate(service.get(current_user.user_id, task_id))


@router.put("/{task_id}", response_model=TaskResponse)
def update_task(
    task_id: str,
    task_data: TaskUpdate,
    current_user: CurrentUser = Depends(require_known_user),
    service: TaskService = Depends(get_task_service),
):
    """Update the fields present in the body."""
    return TaskResponse.model_validate(service.update(current_user.user_id, task_id, task_data))


@router.patch("/{task_id}/toggle", response_model=TaskResponse)
def toggle_complete(
    task_id: str,
    current_user: CurrentUser = Depends(require_known_user),
    service: TaskService = Depends(get_task_service),
):
    """Toggle task completion status."""
    return TaskResponse.model_validate(service.toggle_complete(current_user.user_id, task_id))


@router.delete("/{task_id}", response_model=TaskResponse)
def archive_task(
    task_id: str,
    current_user: CurrentUser = Depends(require_known_user),
    service: TaskService = Depends(get_task_service),
):
    """Soft-delete a task; the tombstone still syncs."""
    return TaskResponse.model_validate(service.archive(current_user.user_id, task_id))


@router.patch("/{task_id}/restore", response_model=TaskResponse)
def restore_task(
    task_id: str,
    current_user: CurrentUser = Depends(require_known_user),
    service: TaskService = Depends(get_task_service),
):
    return TaskResponse.model_validate(service.restore(current_user.user_id, task_id))


@router.delete("/{task_id}/permanent", status_code=status.HTTP_204_NO_CONTENT)
def purge_task(
    task_id: str,
    current_user: CurrentUser = Depends(require_known_user),
    service: TaskService = Depends(get_task_service),
):
    """Permanently remove a task."""
    service.purge(current_user.user_id, task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
