"""Filesystem watcher that triggers debounced on-demand syncs."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict

from watchdog.events import FileSystemEvent, PatternMatchingEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch

from localdex.core.logging import get_logger

logger = get_logger(__name__)

SyncCallback = Callable[[str], None]


@dataclass
class WatchedSource:
    id: str
    path: Path
    include: list[str]
    exclude: list[str]
    watch: ObservedWatch | None = None


class Debouncer:
    """Coalesces bursts of events into one callback per source."""

    def __init__(self, callback: SyncCallback, delay: float) -> None:
        self.callback = callback
        self.delay = delay
        self._lock = threading.Lock()
        self._timers: Dict[str, threading.Timer] = {}

    def touch(self, source_id: str) -> None:
        with self._lock:
            timer = self._timers.pop(source_id, None)
            if timer is not None:
                timer.cancel()
            timer = threading.Timer(self.delay, self._fire, args=(source_id,))
            timer.daemon = True
            self._timers[source_id] = timer
            timer.start()

    def cancel(self, source_id: str | None = None) -> None:
        with self._lock:
            ids = [source_id] if source_id is not None else list(self._timers)
            for key in ids:
                timer = self._timers.pop(key, None)
                if timer is not None:
                    timer.cancel()

    def _fire(self, source_id: str) -> None:
        with self._lock:
            self._timers.pop(source_id, None)
        logger.info("Filesystem change detected", extra={"ctx_source_id": source_id})
        self.callback(source_id)


class SourceEventHandler(PatternMatchingEventHandler):
    """Forward filesystem events for one source to the debouncer."""

    def __init__(self, source: WatchedSource, debouncer: Debouncer) -> None:
        super().__init__(
            patterns=source.include or ["*"],
            ignore_patterns=source.exclude,
            ignore_directories=True,
            case_sensitive=False,
        )
        self.source = source
        self.debouncer = debouncer

    def on_any_event(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        if event.event_type in {"created", "modified", "moved", "deleted"}:
            self.debouncer.touch(self.source.id)


class Watcher:
    """High-level wrapper around watchdog observers."""

    def __init__(self, on_change: SyncCallback, debounce_seconds: float = 2.0) -> None:
        self._observer: BaseObserver = Observer()
        self._debouncer = Debouncer(on_change, debounce_seconds)
        self._lock = threading.Lock()
        self._sources: Dict[str, WatchedSource] = {}
        self._started = False

    @property
    def source_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._sources)

    def add_source(
        self,
        source_id: str,
        path: Path,
        include: list[str] | None = None,
        exclude: list[str] | None = None,
        recursive: bool = True,
    ) -> None:
        normalized_path = path.expanduser().resolve()
        watched = WatchedSource(
            id=source_id,
            path=normalized_path,
            include=include or ["*"],
            exclude=exclude or [],
        )
        handler = SourceEventHandler(watched, self._debouncer)
        with self._lock:
            previous = self._sources.pop(source_id, None)
            if previous is not None and previous.watch is not None:
                self._observer.unschedule(previous.watch)
            watched.watch = self._observer.schedule(handler, str(normalized_path), recursive=recursive)
            self._sources[source_id] = watched

    def remove_source(self, source_id: str) -> None:
        with self._lock:
            watched = self._sources.pop(source_id, None)
            if watched is not None and watched.watch is not None:
                self._observer.unschedule(watched.watch)
        self._debouncer.cancel(source_id)

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._observer.start()
            self._started = True

    def stop(self) -> None:
        self._debouncer.cancel()
        with self._lock:
            if not self._started:
                return
            self._observer.stop()
            self._observer.join(timeout=5)
            self._started = False

    def close(self) -> None:
        self.stop()
        with self._lock:
            self._observer.unschedule_all()
            self._sources.clear()


__all__ = ["Watcher", "Debouncer", "SyncCallback"]
