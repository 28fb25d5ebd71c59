"""Recurring background tasks."""

from .scheduler import Scheduler, Task
from .tasks import DocumentSyncTask, OAuthRefreshTask

__all__ = ["Scheduler", "Task", "DocumentSyncTask", "OAuthRefreshTask"]
