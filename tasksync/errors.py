"""Domain errors raised by the task services.

The HTTP layer maps these onto status codes in ``tasksync.main``.
"""


class TaskSyncError(Exception):
    """Base class for errors the API reports to clients."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TaskNotFoundError(TaskSyncError):
    status_code = 404

    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class TaskForbiddenError(TaskSyncError):
    status_code = 403

    def __init__(self, task_id: str):
        super().__init__(f"Not authorized to access task {task_id}")
        self.task_id = task_id


class StaleTaskError(TaskSyncError):
    """The row's syncVersion moved between read and write."""

    status_code = 409

    def __init__(self, task_id: str, expected_version: int):
        super().__init__(
            f"Task {task_id} was modified concurrently (expected version {expected_version})"
        )
        self.task_id = task_id
        self.expected_version = expected_version


class InvalidCheckpointError(TaskSyncError):
    status_code = 400


class TaskStateError(TaskSyncError):
    """The requested transition does not apply to the task's current state."""

    status_code = 400
