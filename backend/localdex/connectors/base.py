"""Connector contract.

A connector turns one configured :class:`Source` into a lazy stream of document
changes. The cursor it is handed is whatever it last attached to a change or
checkpoint; the orchestrator stores and replays it verbatim, so each connector
owns its own encoding. ``cursor=None`` means "start from the beginning".

Raising from the iterator aborts the run: the orchestrator keeps whatever was
committed up to the last persisted cursor.
"""

from __future__ import annotations

import threading
from typing import Iterator, Protocol, Union

from localdex.models.entities import Credentials, RawDocumentChange, Source, SyncCheckpoint

ChangeEvent = Union[RawDocumentChange, SyncCheckpoint]


class Connector(Protocol):
    def open(
        self,
        source: Source,
        cursor: str | None,
        credentials: Credentials | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[ChangeEvent]: ...


__all__ = ["ChangeEvent", "Connector"]
