"""Sync coordinator: reconciles a client's cached tasks with the server.

One call handles one user's task set. Each client task is decided and
written in its own transaction, so a call that dies half way leaves the
items it already committed in place. The checkpoint-based delta makes a
retry with the same ``lastSyncTime`` safe.
"""
from datetime import datetime
from typing import Any, Callable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from tasksync.errors import InvalidCheckpointError, StaleTaskError, TaskForbiddenError
from tasksync.models.task import Task
from tasksync.schemas.sync import SyncConflict, SyncResponse
from tasksync.schemas.task import ClientTask, TaskResponse
from tasksync.services.conflicts import SyncDecision, decide, matches_server
from tasksync.services.ownership import OwnershipStatus, check_many, check_ownership
from tasksync.services.versioning import apply_mutation, new_task
from tasksync.utils.logger import get_logger
from tasksync.utils.metrics import MetricsCollector, metrics_collector
from tasksync.utils.timestamps import parse_timestamp, utcnow

logger = get_logger("tasksync.sync")


def parse_checkpoint(raw: Any) -> datetime:
    """Validate the client's ``lastSyncTime``.

    Raises:
        InvalidCheckpointError: If it is missing or not an ISO-8601 string
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise InvalidCheckpointError("lastSyncTime is required")
    if not isinstance(raw, str):
        raise InvalidCheckpointError("lastSyncTime must be an ISO-8601 timestamp")
    try:
        return parse_timestamp(raw)
    except ValueError:
        raise InvalidCheckpointError("lastSyncTime must be an ISO-8601 timestamp")


class SyncCoordinator:
    """Runs one synchronization request for one owner."""

    def __init__(
        self,
        session: Session,
        clock: Callable[[], datetime] = utcnow,
        metrics: MetricsCollector = metrics_collector,
    ):
        self.session = session
        self.clock = clock
        self.metrics = metrics

    def sync(self, owner_id: str, last_sync_time: Any, client_tasks: List[ClientTask]) -> SyncResponse:
        """Apply the client's tasks, then return the server delta since the checkpoint."""
        checkpoint = parse_checkpoint(last_sync_time)
        self.metrics.increment_counter("sync_requests_total")
        logger.info(
            "Sync started",
            owner_id=owner_id,
            last_sync_time=checkpoint,
            client_tasks=len(client_tasks),
        )

        conflicts: List[SyncConflict] = []
        updates: List[TaskResponse] = []
        with self.metrics.time_operation("sync_duration_seconds"):
            self._check_client_ownership(owner_id, client_tasks)

            for client_task in client_tasks:
                try:
                    decision = self._reconcile(owner_id, client_task, conflicts, updates)
                except SQLAlchemyError:
                    self.session.rollback()
                    self.metrics.increment_counter("sync_errors_total")
                    logger.exception(
                        "Sync aborted by storage error",
                        owner_id=owner_id,
                        task_id=client_task.id,
                        applied=len(updates),
                    )
                    raise
                self.metrics.sync_outcome(decision.value)
                logger.debug(
                    "Client task reconciled",
                    owner_id=owner_id,
                    task_id=client_task.id,
                    decision=decision.value,
                )

            # Taken before the delta query: a write racing the query then shows
            # up in this delta or the next one.
            sync_time = self.clock()
            server_tasks = self.delta(owner_id, checkpoint)

        logger.info(
            "Sync completed",
            owner_id=owner_id,
            server_tasks=len(server_tasks),
            updates=len(updates),
            conflicts=len(conflicts),
        )
        return SyncResponse(
            server_tasks=server_tasks,
            conflicts=conflicts,
            updates=updates,
            sync_time=sync_time,
        )

    def delta(self, owner_id: str, checkpoint: datetime) -> List[TaskResponse]:
        """All of the owner's tasks, tombstones included, modified after ``checkpoint``."""
        statement = (
            select(Task)
            .where(Task.owner_id == owner_id)
            .where(Task.last_modified > checkpoint)
            .order_by(Task.last_modified.desc(), Task.id)
        )
        return [TaskResponse.model_validate(task) for task in self.session.exec(statement).all()]

    def _check_client_ownership(self, owner_id: str, client_tasks: List[ClientTask]) -> None:
        ids = [task.id for task in client_tasks if task.id]
        for result in check_many(self.session, ids, owner_id):
            if result.status is OwnershipStatus.FORBIDDEN:
                logger.warning("Sync rejected: foreign task id", owner_id=owner_id, task_id=result.task_id)
                raise TaskForbiddenError(result.task_id)

    def _reconcile(
        self,
        owner_id: str,
        client_task: ClientTask,
        conflicts: List[SyncConflict],
        updates: List[TaskResponse],
    ) -> SyncDecision:
        server_task: Optional[Task] = None
        if client_task.id:
            result = check_ownership(self.session, client_task.id, owner_id)
            if result.status is OwnershipStatus.FORBIDDEN:
                raise TaskForbiddenError(client_task.id)
            server_task = result.task
        elif client_task.client_id:
            server_task = self._find_by_client_id(owner_id, client_task.client_id)

        decision = decide(server_task, client_task)
        if decision in (SyncDecision.CONFLICT, SyncDecision.OVERWRITE) and matches_server(
            server_task, client_task
        ):
            # Nothing to write: typically an earlier attempt of this request already landed.
            decision = SyncDecision.NOOP

        if decision is SyncDecision.CREATE:
            return self._create(owner_id, client_task, conflicts, updates)
        if decision is SyncDecision.OVERWRITE:
            return self._overwrite(owner_id, server_task, client_task, conflicts, updates)
        if decision is SyncDecision.CONFLICT:
            conflicts.append(self._conflict(server_task, client_task))
        return decision

    def _find_by_client_id(self, owner_id: str, client_id: str) -> Optional[Task]:
        """The owner's row created from an id-less copy carrying ``client_id``."""
        statement = (
            select(Task)
            .where(Task.owner_id == owner_id)
            .where(Task.client_id == client_id)
            .order_by(Task.created_at, Task.id)
        )
        return self.session.exec(statement).first()

    def _create(
        self,
        owner_id: str,
        client_task: ClientTask,
        conflicts: List[SyncConflict],
        updates: List[TaskResponse],
    ) -> SyncDecision:
        now = self.clock()
        fields = client_task.to_changes(now, only_sent=False)
        fields["id"] = client_task.id
        task = new_task(owner_id, fields, now)
        self.session.add(task)
        try:
            self.session.commit()
        except IntegrityError:
            # Another device inserted the same id first.
            self.session.rollback()
            result = check_ownership(self.session, client_task.id, owner_id) if client_task.id else None
            if result is None or result.status is OwnershipStatus.NOT_FOUND:
                raise
            if result.status is OwnershipStatus.FORBIDDEN:
                raise TaskForbiddenError(client_task.id)
            conflicts.append(self._conflict(result.task, client_task))
            return SyncDecision.CONFLICT

        self.session.refresh(task)
        updates.append(TaskResponse.model_validate(task))
        return SyncDecision.CREATE

    def _overwrite(
        self,
        owner_id: str,
        server_task: Task,
        client_task: ClientTask,
        conflicts: List[SyncConflict],
        updates: List[TaskResponse],
    ) -> SyncDecision:
        now = self.clock()
        expected = server_task.sync_version
        try:
            apply_mutation(
                self.session,
                server_task,
                client_task.to_changes(now, only_sent=True),
                now=now,
                expected_version=expected,
            )
            self.session.commit()
        except StaleTaskError:
            self.session.rollback()
            logger.info(
                "Overwrite lost a version race",
                owner_id=owner_id,
                task_id=server_task.id,
                expected_version=expected,
            )
            current = self.session.get(Task, server_task.id, populate_existing=True)
            if current is None:
                # Purged underneath us: nothing left to conflict with.
                self.session.expunge(server_task)
                return self._create(owner_id, client_task, conflicts, updates)
            conflicts.append(self._conflict(current, client_task))
            return SyncDecision.CONFLICT

        updates.append(TaskResponse.model_validate(server_task))
        return SyncDecision.OVERWRITE

    @staticmethod
    def _conflict(server_task: Task, client_task: ClientTask) -> SyncConflict:
        return SyncConflict(
            task_id=server_task.id,
            server_version=TaskResponse.model_validate(server_task),
            client_version=client_task,
        )
