"""Interval scheduler for recurring background tasks.

A tick loop on its own thread checks every registered task; each due task is
submitted to a thread pool so a slow or failing task never delays another.
Every execution yields exactly one :class:`TaskResult`, and failures leave the
task enabled for its next interval.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Protocol

from localdex.core.errors import NotFoundError, TaskFailedError
from localdex.core.logging import get_logger
from localdex.core.metrics import TASK_RUNS
from localdex.models.scheduling import ScheduledTask, SchedulerConfig, TaskResult
from localdex.stores.base import SchedulerStore
from localdex.utils.time import utc_now

logger = get_logger(__name__)

HISTORY_KEEP = 100


class Task(Protocol):
    id: str
    name: str

    def run(self, cancel: threading.Event) -> int:
        """Do one unit of work and return the number of items processed."""
        ...


class Scheduler:
    """Owns task state, the tick loop and the worker pool."""

    def __init__(
        self,
        config: SchedulerConfig,
        store: SchedulerStore,
        tick_seconds: float = 60.0,
        max_workers: int = 4,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self.store = store
        self.tick_seconds = tick_seconds
        self.max_workers = max_workers
        self.clock = clock
        self._lock = threading.Lock()
        self._tasks: dict[str, Task] = {}
        self._states: dict[str, ScheduledTask] = {}
        self._executor: ThreadPoolExecutor | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._cancel = threading.Event()

    # Registry -----------------------------------------------------------

    def register(self, task: Task) -> ScheduledTask:
        """Add a task, resuming its persisted bookkeeping when present."""
        task_config = self.config.get_task_config(task.id)
        state = self.store.get_task(task.id)
        if state is None:
            state = ScheduledTask(id=task.id, name=task.name, interval=task_config.interval)
        elif state.interval != task_config.interval and state.last_run is not None:
            state.next_run = state.last_run + task_config.interval
        state.name = task.name
        state.interval = task_config.interval
        state.enabled = task_config.enabled
        state.running = False
        with self._lock:
            self._tasks[task.id] = task
            self._states[task.id] = state
        self.store.save_task(state)
        return state.snapshot()

    def get_task(self, task_id: str) -> ScheduledTask:
        with self._lock:
            state = self._states.get(task_id)
            if state is None:
                raise NotFoundError(f"task {task_id} is not registered")
            return state.snapshot()

    def list_tasks(self) -> list[ScheduledTask]:
        with self._lock:
            return [self._states[task_id].snapshot() for task_id in sorted(self._states)]

    def history(self, task_id: str, limit: int = 20) -> list[TaskResult]:
        self.get_task(task_id)
        return self.store.history(task_id, limit)

    # Lifecycle ----------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop.clear()
            self._cancel.clear()
            self._thread = threading.Thread(target=self._loop, name="localdex-scheduler", daemon=True)
            self._thread.start()
        logger.info("Scheduler started", extra={"ctx_tasks": sorted(self._tasks)})

    def stop(self, wait: bool = True, cancel_running: bool = False) -> None:
        """Stop dispatching; optionally wait for in-flight runs and ask them to stop early."""
        self._stop.set()
        if cancel_running:
            self._cancel.set()
        with self._lock:
            thread, self._thread = self._thread, None
            executor, self._executor = self._executor, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(self.tick_seconds, 1.0))
        if executor is not None:
            executor.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(self.tick_seconds)

    # Dispatch -----------------------------------------------------------

    def tick(self, now: datetime | None = None) -> list[Future]:
        """Submit every due task; returns the futures of the submitted runs."""
        if not self.config.enabled or self._stop.is_set():
            return []
        now = now or self.clock()
        futures: list[Future] = []
        with self._lock:
            due = [
                task_id
                for task_id, state in sorted(self._states.items())
                if self.config.get_task_config(task_id).enabled and state.is_due(now)
            ]
            for task_id in due:
                future = self._submit_locked(task_id)
                if future is not None:
                    futures.append(future)
        return futures

    def run_now(self, task_id: str) -> Future | None:
        """Run a task out of band; ``None`` when it is already running or the scheduler is stopped."""
        with self._lock:
            state = self._states.get(task_id)
            if state is None:
                raise NotFoundError(f"task {task_id} is not registered")
            if state.running:
                return None
            return self._submit_locked(task_id)

    def _submit_locked(self, task_id: str) -> Future | None:
        if self._stop.is_set():
            logger.info("Scheduler is stopped; %s not submitted", task_id)
            return None
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="localdex-task")
        self._states[task_id].running = True
        try:
            return self._executor.submit(self._execute, task_id)
        except RuntimeError:
            self._states[task_id].running = False
            logger.warning("Scheduler is shutting down; %s not submitted", task_id)
            return None

    def _execute(self, task_id: str) -> TaskResult:
        task = self._tasks[task_id]
        started_at = self.clock()
        items = 0
        error = ""
        try:
            items = task.run(self._cancel)
        except TaskFailedError as exc:
            items = exc.items_processed
            error = str(exc)
        except Exception as exc:
            logger.exception("Task %s raised", task_id)
            error = str(exc) or exc.__class__.__name__
        if not error and self._cancel.is_set():
            # a run that returned after a stop request may have skipped work
            error = "cancelled"
        ended_at = self.clock()
        result = TaskResult(
            task_id=task_id,
            started_at=started_at,
            ended_at=ended_at,
            success=not error,
            error=error,
            items_processed=items,
        )

        with self._lock:
            state = self._states[task_id]
            state.running = False
            state.last_run = started_at
            state.next_run = started_at + state.interval
            state.last_error = error
            if result.success:
                state.last_success = ended_at
            snapshot = state.snapshot()
        TASK_RUNS.labels(task=task_id, outcome="success" if result.success else "failure").inc()
        if error:
            logger.warning("Task %s failed: %s", task_id, error)
        self._persist(snapshot, result)
        return result

    def _persist(self, snapshot: ScheduledTask, result: TaskResult) -> None:
        try:
            self.store.save_task(snapshot)
            self.store.record_result(result)
            self.store.prune_history(HISTORY_KEEP)
        except Exception:
            logger.exception("Could not persist scheduler state for %s", snapshot.id)


__all__ = ["Scheduler", "Task", "HISTORY_KEEP"]
