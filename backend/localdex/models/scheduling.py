"""Scheduler value objects."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta

TASK_OAUTH_REFRESH = "oauth-refresh"
TASK_DOCUMENT_SYNC = "document-sync"


@dataclass(slots=True)
class TaskConfig:
    enabled: bool = False
    interval: timedelta = timedelta(0)


@dataclass(slots=True)
class SchedulerConfig:
    """Master switch plus per-task configuration."""

    enabled: bool = False
    task_configs: dict[str, TaskConfig] | None = None

    def get_task_config(self, task_id: str) -> TaskConfig:
        """Return the task's config, or a disabled zero config for unknown tasks."""
        if not self.task_configs:
            return TaskConfig()
        return self.task_configs.get(task_id) or TaskConfig()


def default_scheduler_config() -> SchedulerConfig:
    return SchedulerConfig(
        enabled=True,
        task_configs={
            TASK_OAUTH_REFRESH: TaskConfig(enabled=True, interval=timedelta(minutes=45)),
            TASK_DOCUMENT_SYNC: TaskConfig(enabled=True, interval=timedelta(hours=1)),
        },
    )


@dataclass(slots=True)
class ScheduledTask:
    """Live state of a recurring task."""

    id: str
    name: str
    interval: timedelta
    enabled: bool = True
    last_run: datetime | None = None
    next_run: datetime | None = None
    last_error: str = ""
    last_success: datetime | None = None
    running: bool = False

    def is_due(self, now: datetime) -> bool:
        if not self.enabled or self.running:
            return False
        if self.last_run is None or self.next_run is None:
            return True
        return now >= self.next_run

    def snapshot(self) -> "ScheduledTask":
        return replace(self)


@dataclass(slots=True)
class TaskResult:
    task_id: str
    started_at: datetime
    ended_at: datetime
    success: bool
    error: str = ""
    items_processed: int = 0


__all__ = [
    "TASK_OAUTH_REFRESH",
    "TASK_DOCUMENT_SYNC",
    "TaskConfig",
    "SchedulerConfig",
    "default_scheduler_config",
    "ScheduledTask",
    "TaskResult",
]
