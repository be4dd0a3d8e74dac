"""SQLModel tables."""
from tasksync.models.task import Task, TaskPriority
from tasksync.models.user import User

__all__ = ["Task", "TaskPriority", "User"]
