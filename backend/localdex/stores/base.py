"""Persistence contracts shared by the memory and SQLite backends.

Lookups by id raise :class:`~localdex.core.errors.NotFoundError` when the row is
absent; list operations return an empty list. Implementations must be safe to
call from several threads at once.
"""

from __future__ import annotations

from typing import Iterator, Protocol, Sequence

from localdex.models.entities import Chunk, Credentials, Document, Exclusion, Source, SyncState
from localdex.models.scheduling import ScheduledTask, TaskResult


class SourceStore(Protocol):
    def save(self, source: Source) -> None: ...

    def get(self, source_id: str) -> Source: ...

    def list(self) -> list[Source]: ...

    def delete(self, source_id: str) -> None: ...


class DocumentStore(Protocol):
    def save_document(self, document: Document) -> None: ...

    def save_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> None:
        """Replace every chunk of ``document_id`` with ``chunks``."""
        ...

    def replace_document(self, document: Document, chunks: Sequence[Chunk]) -> None:
        """Upsert the document and replace its chunks in one atomic write."""
        ...

    def get_document(self, document_id: str) -> Document: ...

    def get_document_by_uri(self, source_id: str, uri: str) -> Document: ...

    def get_chunk(self, chunk_id: str) -> Chunk: ...

    def get_chunks(self, document_id: str) -> list[Chunk]: ...

    def list_documents(self, source_id: str | None = None) -> list[Document]: ...

    def iter_chunks(self, source_ids: Sequence[str] | None = None) -> Iterator[tuple[Chunk, str]]:
        """Yield ``(chunk, source_id)`` pairs, optionally restricted to sources."""
        ...

    def delete_document(self, document_id: str) -> None: ...

    def delete_by_source(self, source_id: str) -> int: ...


class SyncStateStore(Protocol):
    def save(self, state: SyncState) -> None: ...

    def get(self, source_id: str) -> SyncState: ...

    def delete(self, source_id: str) -> None: ...


class ExclusionStore(Protocol):
    def add(self, exclusion: Exclusion) -> None: ...

    def remove(self, exclusion_id: str) -> None: ...

    def get(self, exclusion_id: str) -> Exclusion: ...

    def get_by_source(self, source_id: str) -> list[Exclusion]: ...

    def is_excluded(self, source_id: str, uri: str) -> bool: ...

    def list(self) -> list[Exclusion]: ...

    def delete_by_source(self, source_id: str) -> int: ...


class CredentialStore(Protocol):
    def save(self, credentials: Credentials) -> None:
        """Insert or update; a second row for the same source is rejected."""
        ...

    def get(self, credentials_id: str) -> Credentials: ...

    def get_by_source(self, source_id: str) -> Credentials: ...

    def list(self) -> list[Credentials]: ...

    def delete(self, credentials_id: str) -> None: ...

    def delete_by_source(self, source_id: str) -> int: ...


class SchedulerStore(Protocol):
    def get_task(self, task_id: str) -> ScheduledTask | None: ...

    def list_tasks(self) -> list[ScheduledTask]: ...

    def save_task(self, task: ScheduledTask) -> None: ...

    def delete_task(self, task_id: str) -> None: ...

    def record_result(self, result: TaskResult) -> None: ...

    def history(self, task_id: str, limit: int = 20) -> list[TaskResult]:
        """Most recent results first."""
        ...

    def prune_history(self, keep: int) -> None: ...


__all__ = [
    "SourceStore",
    "DocumentStore",
    "SyncStateStore",
    "ExclusionStore",
    "CredentialStore",
    "SchedulerStore",
]
