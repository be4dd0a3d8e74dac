"""Tests for the sync coordinator.

Covers:
- Create / overwrite / conflict / no-op reconciliation
- Delta completeness and owner scoping
- Retry idempotence
- Tombstone propagation and purge
- Ownership rejection and checkpoint validation
- Version races and storage failures
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from conftest import FakeClock, make_task
from tasksync.errors import InvalidCheckpointError, TaskForbiddenError
from tasksync.models.task import Task
from tasksync.schemas.task import ClientTask
from tasksync.services import sync_service
from tasksync.services.sync_service import SyncCoordinator, parse_checkpoint
from tasksync.services.task_service import TaskService
from tasksync.services.versioning import apply_mutation
from tasksync.utils.metrics import MetricsCollector


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


JAN_1 = utc(2024, 1, 1)
JAN_1_NOON = utc(2024, 1, 1, 12)
JAN_2 = utc(2024, 1, 2)
JAN_3 = utc(2024, 1, 3)


@pytest.fixture
def sync_clock() -> FakeClock:
    return FakeClock(JAN_3)


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def coordinator(session: Session, sync_clock: FakeClock, metrics: MetricsCollector) -> SyncCoordinator:
    return SyncCoordinator(session, clock=sync_clock, metrics=metrics)


def stored(session: Session, task_id: str) -> Task:
    return session.get(Task, task_id, populate_existing=True)


class TestReconcile:
    """The worked example from both directions, plus creates."""

    def test_newer_client_overwrites_server(self, session, user, coordinator, sync_clock):
        make_task(session, user, now=JAN_1_NOON, id="t1", title="Buy milk and eggs")

        response = coordinator.sync(
            user.id,
            "2024-01-01T00:00:00Z",
            [ClientTask(id="t1", title="Buy milk", last_modified=JAN_2)],
        )

        assert response.conflicts == []
        assert [t.id for t in response.updates] == ["t1"]
        row = stored(session, "t1")
        assert row.title == "Buy milk"
        assert row.sync_version == 2
        assert row.last_modified == sync_clock.now
        assert response.updates[0].sync_version == 2

    def test_newer_server_reports_conflict_and_keeps_row(self, session, user, coordinator):
        make_task(session, user, now=JAN_1_NOON, id="t1", title="Buy milk and eggs")

        response = coordinator.sync(
            user.id,
            "2024-01-01T00:00:00Z",
            [ClientTask(id="t1", title="Buy milk", last_modified=utc(2024, 1, 1, 6))],
        )

        assert response.updates == []
        assert len(response.conflicts) == 1
        conflict = response.conflicts[0]
        assert conflict.task_id == "t1"
        assert conflict.server_version.title == "Buy milk and eggs"
        assert conflict.client_version.title == "Buy milk"
        row = stored(session, "t1")
        assert row.title == "Buy milk and eggs"
        assert row.sync_version == 1

    def test_equal_timestamps_are_left_alone(self, session, user, coordinator):
        make_task(session, user, now=JAN_1_NOON, id="t1", title="Server")

        response = coordinator.sync(
            user.id, "2024-01-02T00:00:00Z", [ClientTask(id="t1", title="Client", last_modified=JAN_1_NOON)]
        )

        assert response.updates == [] and response.conflicts == []
        assert stored(session, "t1").title == "Server"

    def test_unknown_id_is_created_at_version_one(self, session, user, coordinator, sync_clock):
        response = coordinator.sync(
            user.id,
            "2024-01-01T00:00:00Z",
            [ClientTask(id="offline-1", title="Made on the train", tags=["travel"])],
        )

        assert [t.id for t in response.updates] == ["offline-1"]
        row = stored(session, "offline-1")
        assert row.owner_id == user.id
        assert row.sync_version == 1
        assert row.tags == ["travel"]
        assert row.last_modified == sync_clock.now

    def test_task_without_id_gets_a_server_id(self, session, user, coordinator):
        response = coordinator.sync(user.id, "2024-01-01T00:00:00Z", [ClientTask(title="No id yet")])

        assert len(response.updates) == 1
        assert stored(session, response.updates[0].id).title == "No id yet"

    def test_overwrite_only_touches_sent_fields(self, session, user, coordinator):
        make_task(
            session, user, now=JAN_1_NOON, id="t1", title="Old", description="keep me", tags=["a"]
        )

        coordinator.sync(
            user.id,
            "2024-01-01T00:00:00Z",
            [ClientTask.model_validate({"id": "t1", "title": "New", "lastModified": "2024-01-02T00:00:00Z"})],
        )

        row = stored(session, "t1")
        assert row.title == "New"
        assert row.description == "keep me"
        assert row.tags == ["a"]


class TestDelta:
    def test_returns_every_change_after_checkpoint(self, session, user, coordinator):
        make_task(session, user, now=utc(2023, 12, 31), id="old", title="old")
        make_task(session, user, now=JAN_1_NOON, id="mid", title="mid")
        make_task(session, user, now=JAN_2, id="new", title="new")

        response = coordinator.sync(user.id, "2024-01-01T00:00:00Z", [])

        assert [t.id for t in response.server_tasks] == ["new", "mid"]
        assert response.sync_time == JAN_3

    def test_is_scoped_to_the_owner(self, session, user, other_user, coordinator):
        make_task(session, other_user, now=JAN_2, id="theirs")
        make_task(session, user, now=JAN_2, id="mine")

        response = coordinator.sync(user.id, "2024-01-01T00:00:00Z", [])

        assert [t.id for t in response.server_tasks] == ["mine"]

    def test_checkpoint_equal_to_last_modified_is_excluded(self, session, user, coordinator):
        make_task(session, user, now=JAN_2, id="edge")
        response = coordinator.sync(user.id, "2024-01-02T00:00:00Z", [])
        assert response.server_tasks == []

    def test_includes_tasks_written_by_this_call(self, session, user, coordinator):
        response = coordinator.sync(
            user.id, "2024-01-01T00:00:00Z", [ClientTask(id="fresh", title="fresh")]
        )
        assert [t.id for t in response.server_tasks] == ["fresh"]

    def test_write_racing_the_delta_query_reaches_the_next_sync(
        self, engine, session, user, coordinator, sync_clock, monkeypatch
    ):
        make_task(session, user, now=JAN_1_NOON, id="t1", title="Before")
        real_delta = coordinator.delta

        def delta_then_other_device_writes(owner_id, checkpoint):
            tasks = real_delta(owner_id, checkpoint)
            with Session(engine) as other_device:
                row = other_device.get(Task, "t1")
                apply_mutation(
                    other_device, row, {"title": "Written by device B"}, now=sync_clock.advance(seconds=1)
                )
                other_device.commit()
            return tasks

        monkeypatch.setattr(coordinator, "delta", delta_then_other_device_writes)
        first = coordinator.sync(user.id, "2024-01-02T00:00:00Z", [])
        monkeypatch.undo()

        second = coordinator.sync(user.id, first.sync_time.isoformat(), [])

        assert first.server_tasks == []
        assert first.sync_time == JAN_3
        assert [t.id for t in second.server_tasks] == ["t1"]


class TestIdempotence:
    def test_identical_retry_changes_nothing(self, session, user, coordinator, sync_clock):
        make_task(session, user, now=JAN_1_NOON, id="t1", title="Buy milk and eggs")
        make_task(session, user, now=JAN_1_NOON, id="t2", title="Untouched")
        request = [
            ClientTask(id="t1", title="Buy milk", last_modified=JAN_2),
            ClientTask(id="t3", title="Created offline"),
        ]

        first = coordinator.sync(user.id, "2024-01-01T00:00:00Z", request)
        sync_clock.advance(minutes=1)
        second = coordinator.sync(user.id, "2024-01-01T00:00:00Z", request)

        assert len(first.updates) == 2
        assert second.updates == []
        assert second.conflicts == []
        assert [t.model_dump() for t in second.server_tasks] == [
            t.model_dump() for t in first.server_tasks
        ]
        assert stored(session, "t1").sync_version == 2

    def test_retry_with_client_timestamp_ahead_of_server_clock(self, session, user, coordinator, sync_clock):
        make_task(session, user, now=JAN_1_NOON, id="t1", title="Original")
        request = [
            ClientTask(id="t1", title="From a fast clock", last_modified=sync_clock.now + timedelta(hours=1))
        ]

        first = coordinator.sync(user.id, "2024-01-01T00:00:00Z", request)
        sync_clock.advance(minutes=1)
        second = coordinator.sync(user.id, "2024-01-01T00:00:00Z", request)

        assert [t.id for t in first.updates] == ["t1"]
        assert second.updates == []
        assert second.conflicts == []
        assert stored(session, "t1").sync_version == 2

    def test_retry_of_task_without_id_matches_on_client_id(self, session, user, coordinator, sync_clock):
        request = [ClientTask.model_validate({"title": "offline", "clientId": "c-1"})]

        first = coordinator.sync(user.id, "2024-01-01T00:00:00Z", request)
        sync_clock.advance(minutes=1)
        second = coordinator.sync(user.id, "2024-01-01T00:00:00Z", request)

        assert len(first.updates) == 1
        assert second.updates == []
        assert second.conflicts == []
        ids = session.exec(select(Task.id).where(Task.owner_id == user.id)).all()
        assert ids == [first.updates[0].id]


class TestTombstones:
    def test_client_delete_is_stored_as_tombstone(self, session, user, coordinator, sync_clock):
        make_task(session, user, now=JAN_1_NOON, id="t1", title="Done with this")

        coordinator.sync(
            user.id,
            "2024-01-01T00:00:00Z",
            [ClientTask(id="t1", title="Done with this", is_deleted=True, last_modified=JAN_2)],
        )

        row = stored(session, "t1")
        assert row.is_deleted
        assert row.deleted_at == sync_clock.now

    def test_archived_task_reaches_other_devices(self, session, user, coordinator, sync_clock):
        make_task(session, user, now=JAN_1_NOON, id="t1")
        TaskService(session, clock=sync_clock).archive(user.id, "t1")

        response = coordinator.sync(user.id, "2024-01-02T00:00:00Z", [])

        assert [t.id for t in response.server_tasks] == ["t1"]
        assert response.server_tasks[0].is_deleted
        assert response.server_tasks[0].deleted_at == sync_clock.now

    def test_purged_task_never_appears_again(self, session, user, coordinator, sync_clock):
        make_task(session, user, now=JAN_2, id="t1")
        TaskService(session, clock=sync_clock).purge(user.id, "t1")

        response = coordinator.sync(user.id, "2023-01-01T00:00:00Z", [])

        assert response.server_tasks == []


class TestRejections:
    def test_foreign_id_is_forbidden_and_nothing_is_written(self, session, user, other_user, coordinator):
        theirs = make_task(session, other_user, now=JAN_1_NOON, id="theirs", title="Private")

        with pytest.raises(TaskForbiddenError):
            coordinator.sync(
                user.id,
                "2024-01-01T00:00:00Z",
                [
                    ClientTask(id="would-be-new", title="x"),
                    ClientTask(id=theirs.id, title="Hijacked", last_modified=JAN_2),
                ],
            )

        assert stored(session, "would-be-new") is None
        row = stored(session, "theirs")
        assert row.title == "Private"
        assert row.owner_id == other_user.id

    @pytest.mark.parametrize("raw", [None, "", "   ", "yesterday", 1704067200, "2024-13-01T00:00:00Z"])
    def test_bad_checkpoint_is_rejected_before_any_write(self, session, user, coordinator, raw):
        with pytest.raises(InvalidCheckpointError):
            coordinator.sync(user.id, raw, [ClientTask(id="x", title="x")])
        assert stored(session, "x") is None

    def test_checkpoint_accepts_offsets(self):
        assert parse_checkpoint("2024-01-01T02:00:00+02:00") == JAN_1


class TestVersionRaces:
    def test_write_race_turns_overwrite_into_conflict(self, engine, session, user, coordinator, monkeypatch):
        make_task(session, user, now=JAN_1_NOON, id="t1", title="Original")
        real_apply = sync_service.apply_mutation

        def racing_apply(db_session, task, changes=None, now=None, expected_version=None):
            with Session(engine) as other_device:
                row = other_device.get(Task, task.id)
                real_apply(other_device, row, {"title": "Other device"}, now=now)
                other_device.commit()
            return real_apply(db_session, task, changes, now=now, expected_version=expected_version)

        monkeypatch.setattr(sync_service, "apply_mutation", racing_apply)

        response = coordinator.sync(
            user.id, "2024-01-01T00:00:00Z", [ClientTask(id="t1", title="Mine", last_modified=JAN_2)]
        )

        assert response.updates == []
        assert len(response.conflicts) == 1
        assert response.conflicts[0].server_version.title == "Other device"
        assert response.conflicts[0].server_version.sync_version == 2
        assert stored(session, "t1").title == "Other device"

    def test_row_purged_during_overwrite_is_recreated(self, engine, session, user, coordinator, monkeypatch):
        make_task(session, user, now=JAN_1_NOON, id="t1", title="Original")
        real_apply = sync_service.apply_mutation

        def purging_apply(db_session, task, changes=None, now=None, expected_version=None):
            with Session(engine) as other_device:
                other_device.delete(other_device.get(Task, task.id))
                other_device.commit()
            return real_apply(db_session, task, changes, now=now, expected_version=expected_version)

        monkeypatch.setattr(sync_service, "apply_mutation", purging_apply)

        response = coordinator.sync(
            user.id, "2024-01-01T00:00:00Z", [ClientTask(id="t1", title="Mine", last_modified=JAN_2)]
        )

        assert [t.id for t in response.updates] == ["t1"]
        row = stored(session, "t1")
        assert row.title == "Mine"
        assert row.sync_version == 1


class TestStorageFailures:
    def test_error_aborts_remaining_batch_and_keeps_committed_items(
        self, session, user, coordinator, metrics, monkeypatch
    ):
        real_new_task = sync_service.new_task

        def flaky_new_task(owner_id, fields, now=None):
            if fields.get("id") == "second":
                raise OperationalError("INSERT INTO task", {}, Exception("disk I/O error"))
            return real_new_task(owner_id, fields, now)

        monkeypatch.setattr(sync_service, "new_task", flaky_new_task)

        with pytest.raises(OperationalError):
            coordinator.sync(
                user.id,
                "2024-01-01T00:00:00Z",
                [
                    ClientTask(id="first", title="1"),
                    ClientTask(id="second", title="2"),
                    ClientTask(id="third", title="3"),
                ],
            )

        ids = session.exec(select(Task.id).where(Task.owner_id == user.id)).all()
        assert ids == ["first"]
        assert metrics.get_metrics()["counters"]["sync_errors_total"] == 1


class TestMetrics:
    def test_outcomes_are_counted(self, session, user, coordinator, metrics):
        make_task(session, user, now=JAN_1_NOON, id="older-on-server", title="a")
        make_task(session, user, now=JAN_2, id="newer-on-server", title="b")
        make_task(session, user, now=JAN_1_NOON, id="same", title="c")

        coordinator.sync(
            user.id,
            "2024-01-01T00:00:00Z",
            [
                ClientTask(id="brand-new", title="new"),
                ClientTask(id="older-on-server", title="a2", last_modified=JAN_2),
                ClientTask(id="newer-on-server", title="b2", last_modified=JAN_1_NOON),
                ClientTask(id="same", title="c", last_modified=JAN_1_NOON),
            ],
        )

        counters = metrics.get_metrics()["counters"]
        assert counters["sync_requests_total"] == 1
        assert counters["sync_creates_total"] == 1
        assert counters["sync_overwrites_total"] == 1
        assert counters["sync_conflicts_total"] == 1
        assert counters["sync_noops_total"] == 1
        assert metrics.get_metrics()["timers"]["sync_duration_seconds"] >= 0
