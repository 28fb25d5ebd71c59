"""Tests for the scheduler."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from localdex.core.errors import NotFoundError, TaskFailedError
from localdex.models.scheduling import (
    ScheduledTask,
    SchedulerConfig,
    TaskConfig,
    default_scheduler_config,
)
from localdex.scheduler import Scheduler
from localdex.stores.memory import MemorySchedulerStore
from localdex.utils.time import utc_now


class FakeTask:
    def __init__(self, task_id: str, error: Exception | None = None, items: int = 1) -> None:
        self.id = task_id
        self.name = task_id.title()
        self.error = error
        self.items = items
        self.calls = 0

    def run(self, cancel: threading.Event) -> int:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.items


class BlockingTask(FakeTask):
    def __init__(self, task_id: str) -> None:
        super().__init__(task_id)
        self.started = threading.Event()
        self.release = threading.Event()

    def run(self, cancel: threading.Event) -> int:
        self.calls += 1
        self.started.set()
        self.release.wait(timeout=10)
        return 0


class CancellableTask(FakeTask):
    def __init__(self, task_id: str) -> None:
        super().__init__(task_id)
        self.started = threading.Event()

    def run(self, cancel: threading.Event) -> int:
        self.calls += 1
        self.started.set()
        cancel.wait(timeout=10)
        return 1


def _config(**intervals: float) -> SchedulerConfig:
    return SchedulerConfig(
        enabled=True,
        task_configs={
            task_id: TaskConfig(enabled=True, interval=timedelta(minutes=minutes))
            for task_id, minutes in intervals.items()
        },
    )


def _wait(futures) -> list:
    return [future.result(timeout=10) for future in futures]


def test_failing_task_does_not_delay_other_task() -> None:
    store = MemorySchedulerStore()
    scheduler = Scheduler(_config(a=1, b=2), store)
    task_a = FakeTask("a", error=TaskFailedError("2 of 3 refreshes failed", items_processed=1))
    task_b = FakeTask("b", items=5)
    scheduler.register(task_a)
    scheduler.register(task_b)

    first = _wait(scheduler.tick())
    assert {result.task_id: result.success for result in first} == {"a": False, "b": True}

    state_a = scheduler.get_task("a")
    state_b = scheduler.get_task("b")
    assert state_a.enabled
    assert state_a.last_error == "2 of 3 refreshes failed"
    assert state_a.next_run == state_a.last_run + timedelta(minutes=1)
    assert state_b.last_success is not None
    assert state_b.next_run == state_b.last_run + timedelta(minutes=2)

    assert scheduler.tick(now=utc_now()) == []
    _wait(scheduler.tick(now=state_b.next_run))
    assert (task_a.calls, task_b.calls) == (2, 2)

    history = scheduler.history("a")
    assert len(history) == 2
    assert all(not item.success and item.items_processed == 1 for item in history)
    assert store.get_task("a").last_error == "2 of 3 refreshes failed"
    scheduler.stop()


def test_unexpected_exception_is_recorded() -> None:
    scheduler = Scheduler(_config(a=1), MemorySchedulerStore())
    scheduler.register(FakeTask("a", error=RuntimeError("kaboom")))

    (result,) = _wait(scheduler.tick())

    assert not result.success
    assert result.error == "kaboom"
    assert not scheduler.get_task("a").running
    scheduler.stop()


def test_running_task_is_not_resubmitted_and_does_not_block_others() -> None:
    scheduler = Scheduler(_config(slow=1, fast=1), MemorySchedulerStore(), max_workers=2)
    slow = BlockingTask("slow")
    fast = FakeTask("fast")
    scheduler.register(slow)
    scheduler.register(fast)

    fast_future, slow_future = scheduler.tick()
    assert slow.started.wait(timeout=10)
    _wait([fast_future])

    resubmitted = scheduler.tick(now=utc_now() + timedelta(minutes=5))
    assert scheduler.get_task("slow").running
    assert scheduler.run_now("slow") is None
    slow.release.set()
    _wait([slow_future, *resubmitted])

    assert len(resubmitted) == 1
    assert slow.calls == 1
    assert fast.calls == 2
    scheduler.stop()


def test_disabled_tasks_and_master_switch() -> None:
    store = MemorySchedulerStore()
    scheduler = Scheduler(_config(a=1), store)
    unknown = FakeTask("unconfigured")
    scheduler.register(unknown)

    assert scheduler.tick() == []
    assert scheduler.get_task("unconfigured").enabled is False

    off = Scheduler(SchedulerConfig(enabled=False, task_configs=_config(a=1).task_configs), store)
    off.register(FakeTask("a"))
    assert off.tick() == []


def test_register_resumes_persisted_state() -> None:
    store = MemorySchedulerStore()
    last_run = utc_now() - timedelta(minutes=30)
    store.save_task(
        ScheduledTask(id="a", name="A", interval=timedelta(hours=1), last_run=last_run, next_run=last_run)
    )
    scheduler = Scheduler(_config(a=10), store)

    state = scheduler.register(FakeTask("a"))

    assert state.last_run == last_run
    assert state.next_run == last_run + timedelta(minutes=10)
    assert state.interval == timedelta(minutes=10)


def test_run_now_and_lookup_errors() -> None:
    scheduler = Scheduler(_config(a=60), MemorySchedulerStore())
    task = FakeTask("a")
    scheduler.register(task)

    _wait([scheduler.run_now("a")])

    assert task.calls == 1
    with pytest.raises(NotFoundError):
        scheduler.run_now("missing")
    with pytest.raises(NotFoundError):
        scheduler.get_task("missing")
    assert [item.id for item in scheduler.list_tasks()] == ["a"]
    scheduler.stop()


def test_start_runs_due_tasks_on_background_thread() -> None:
    scheduler = Scheduler(_config(a=60), MemorySchedulerStore(), tick_seconds=0.05)
    ran = threading.Event()

    class SignalTask(FakeTask):
        def run(self, cancel: threading.Event) -> int:
            ran.set()
            return 1

    scheduler.register(SignalTask("a"))
    scheduler.start()
    try:
        assert ran.wait(timeout=10)
    finally:
        scheduler.stop()
    assert not scheduler.running


def test_default_config_and_unknown_task_config() -> None:
    config = default_scheduler_config()
    assert config.get_task_config("oauth-refresh").interval == timedelta(minutes=45)
    assert config.get_task_config("document-sync").interval == timedelta(hours=1)
    assert config.get_task_config("nope") == TaskConfig()
    assert SchedulerConfig(enabled=True, task_configs=None).get_task_config("oauth-refresh") == TaskConfig()


def test_stop_lets_running_task_finish_and_dispatches_nothing_new() -> None:
    store = MemorySchedulerStore()
    scheduler = Scheduler(_config(slow=1, fast=1), store, max_workers=2)
    slow = BlockingTask("slow")
    fast = FakeTask("fast")
    scheduler.register(slow)
    scheduler.register(fast)

    futures = scheduler.tick()
    assert slow.started.wait(timeout=10)
    stopper = threading.Thread(target=scheduler.stop)
    stopper.start()
    slow.release.set()
    stopper.join(timeout=10)

    assert [result.success for result in _wait(futures)] == [True, True]
    assert scheduler.tick(now=utc_now() + timedelta(hours=1)) == []
    assert scheduler.run_now("fast") is None
    assert (slow.calls, fast.calls) == (1, 1)
    assert [result.task_id for result in store.history("slow")] == ["slow"]


def test_cancelled_run_is_recorded_as_incomplete() -> None:
    store = MemorySchedulerStore()
    scheduler = Scheduler(_config(a=1), store)
    task = CancellableTask("a")
    scheduler.register(task)

    (future,) = scheduler.tick()
    assert task.started.wait(timeout=10)
    scheduler.stop(wait=True, cancel_running=True)
    result = future.result(timeout=10)

    assert not result.success
    assert result.error == "cancelled"
    assert result.items_processed == 1
    state = scheduler.get_task("a")
    assert state.last_error == "cancelled"
    assert state.last_success is None
    assert not store.history("a")[0].success
