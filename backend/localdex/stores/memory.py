"""In-memory store implementations, used by tests and ``storage_backend=memory``."""

from __future__ import annotations

import copy
import threading
from collections import defaultdict, deque
from typing import Iterator, Sequence

from localdex.core.errors import AlreadyExistsError, NotFoundError
from localdex.models.entities import Chunk, Credentials, Document, Exclusion, Source, SyncState
from localdex.models.scheduling import ScheduledTask, TaskResult


class MemorySourceStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sources: dict[str, Source] = {}

    def save(self, source: Source) -> None:
        with self._lock:
            self._sources[source.id] = copy.deepcopy(source)

    def get(self, source_id: str) -> Source:
        with self._lock:
            source = self._sources.get(source_id)
            if source is None:
                raise NotFoundError(f"source {source_id} not found")
            return copy.deepcopy(source)

    def list(self) -> list[Source]:
        with self._lock:
            sources = [copy.deepcopy(source) for source in self._sources.values()]
        return sorted(sources, key=lambda source: (source.created_at, source.id))

    def delete(self, source_id: str) -> None:
        with self._lock:
            if self._sources.pop(source_id, None) is None:
                raise NotFoundError(f"source {source_id} not found")


class MemoryDocumentStore:
    """Documents keyed by id with a ``(source_id, uri)`` secondary index."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._documents: dict[str, Document] = {}
        self._by_uri: dict[tuple[str, str], str] = {}
        self._chunks: dict[str, list[Chunk]] = {}

    def save_document(self, document: Document) -> None:
        with self._lock:
            key = (document.source_id, document.uri)
            existing_id = self._by_uri.get(key)
            if existing_id is not None and existing_id != document.id:
                raise AlreadyExistsError(
                    f"document {document.uri} already stored as {existing_id}"
                )
            previous = self._documents.get(document.id)
            if previous is not None:
                self._by_uri.pop((previous.source_id, previous.uri), None)
            self._documents[document.id] = copy.deepcopy(document)
            self._by_uri[key] = document.id

    def save_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> None:
        with self._lock:
            if document_id not in self._documents:
                raise NotFoundError(f"document {document_id} not found")
            self._chunks[document_id] = sorted(
                (copy.deepcopy(chunk) for chunk in chunks), key=lambda chunk: chunk.position
            )

    def replace_document(self, document: Document, chunks: Sequence[Chunk]) -> None:
        with self._lock:
            self.save_document(document)
            self.save_chunks(document.id, chunks)

    def get_document(self, document_id: str) -> Document:
        with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                raise NotFoundError(f"document {document_id} not found")
            return copy.deepcopy(document)

    def get_document_by_uri(self, source_id: str, uri: str) -> Document:
        with self._lock:
            document_id = self._by_uri.get((source_id, uri))
            if document_id is None:
                raise NotFoundError(f"document {uri} not found in source {source_id}")
            return copy.deepcopy(self._documents[document_id])

    def get_chunk(self, chunk_id: str) -> Chunk:
        with self._lock:
            for chunks in self._chunks.values():
                for chunk in chunks:
                    if chunk.id == chunk_id:
                        return copy.deepcopy(chunk)
        raise NotFoundError(f"chunk {chunk_id} not found")

    def get_chunks(self, document_id: str) -> list[Chunk]:
        with self._lock:
            return copy.deepcopy(self._chunks.get(document_id, []))

    def list_documents(self, source_id: str | None = None) -> list[Document]:
        with self._lock:
            documents = [
                copy.deepcopy(document)
                for document in self._documents.values()
                if source_id is None or document.source_id == source_id
            ]
        return sorted(documents, key=lambda document: document.id)

    def iter_chunks(self, source_ids: Sequence[str] | None = None) -> Iterator[tuple[Chunk, str]]:
        wanted = set(source_ids) if source_ids else None
        pairs: list[tuple[Chunk, str]] = []
        with self._lock:
            for document_id, chunks in self._chunks.items():
                document = self._documents.get(document_id)
                if document is None or (wanted is not None and document.source_id not in wanted):
                    continue
                pairs.extend((copy.deepcopy(chunk), document.source_id) for chunk in chunks)
        yield from pairs

    def delete_document(self, document_id: str) -> None:
        with self._lock:
            document = self._documents.pop(document_id, None)
            if document is None:
                raise NotFoundError(f"document {document_id} not found")
            self._by_uri.pop((document.source_id, document.uri), None)
            self._chunks.pop(document_id, None)

    def delete_by_source(self, source_id: str) -> int:
        with self._lock:
            doomed = [doc.id for doc in self._documents.values() if doc.source_id == source_id]
            for document_id in doomed:
                self.delete_document(document_id)
        return len(doomed)


class MemorySyncStateStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, SyncState] = {}

    def save(self, state: SyncState) -> None:
        with self._lock:
            self._states[state.source_id] = copy.deepcopy(state)

    def get(self, source_id: str) -> SyncState:
        with self._lock:
            state = self._states.get(source_id)
            if state is None:
                raise NotFoundError(f"no sync state for source {source_id}")
            return copy.deepcopy(state)

    def delete(self, source_id: str) -> None:
        with self._lock:
            self._states.pop(source_id, None)


class MemoryExclusionStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._exclusions: dict[str, Exclusion] = {}

    def add(self, exclusion: Exclusion) -> None:
        with self._lock:
            if exclusion.id in self._exclusions:
                raise AlreadyExistsError(f"exclusion {exclusion.id} already exists")
            self._exclusions[exclusion.id] = copy.deepcopy(exclusion)

    def remove(self, exclusion_id: str) -> None:
        with self._lock:
            if self._exclusions.pop(exclusion_id, None) is None:
                raise NotFoundError(f"exclusion {exclusion_id} not found")

    def get(self, exclusion_id: str) -> Exclusion:
        with self._lock:
            exclusion = self._exclusions.get(exclusion_id)
            if exclusion is None:
                raise NotFoundError(f"exclusion {exclusion_id} not found")
            return copy.deepcopy(exclusion)

    def get_by_source(self, source_id: str) -> list[Exclusion]:
        with self._lock:
            matches = [copy.deepcopy(e) for e in self._exclusions.values() if e.source_id == source_id]
        return sorted(matches, key=lambda exclusion: (exclusion.excluded_at, exclusion.id))

    def is_excluded(self, source_id: str, uri: str) -> bool:
        with self._lock:
            return any(
                e.source_id == source_id and e.uri == uri for e in self._exclusions.values()
            )

    def list(self) -> list[Exclusion]:
        with self._lock:
            exclusions = [copy.deepcopy(e) for e in self._exclusions.values()]
        return sorted(exclusions, key=lambda exclusion: (exclusion.excluded_at, exclusion.id))

    def delete_by_source(self, source_id: str) -> int:
        with self._lock:
            doomed = [e.id for e in self._exclusions.values() if e.source_id == source_id]
            for exclusion_id in doomed:
                del self._exclusions[exclusion_id]
        return len(doomed)


class MemoryCredentialStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._credentials: dict[str, Credentials] = {}

    def save(self, credentials: Credentials) -> None:
        with self._lock:
            for other in self._credentials.values():
                if other.source_id == credentials.source_id and other.id != credentials.id:
                    raise AlreadyExistsError(
                        f"source {credentials.source_id} already has credentials {other.id}"
                    )
            self._credentials[credentials.id] = copy.deepcopy(credentials)

    def get(self, credentials_id: str) -> Credentials:
        with self._lock:
            credentials = self._credentials.get(credentials_id)
            if credentials is None:
                raise NotFoundError(f"credentials {credentials_id} not found")
            return copy.deepcopy(credentials)

    def get_by_source(self, source_id: str) -> Credentials:
        with self._lock:
            for credentials in self._credentials.values():
                if credentials.source_id == source_id:
                    return copy.deepcopy(credentials)
        raise NotFoundError(f"no credentials for source {source_id}")

    def list(self) -> list[Credentials]:
        with self._lock:
            items = [copy.deepcopy(c) for c in self._credentials.values()]
        return sorted(items, key=lambda credentials: credentials.id)

    def delete(self, credentials_id: str) -> None:
        with self._lock:
            if self._credentials.pop(credentials_id, None) is None:
                raise NotFoundError(f"credentials {credentials_id} not found")

    def delete_by_source(self, source_id: str) -> int:
        with self._lock:
            doomed = [c.id for c in self._credentials.values() if c.source_id == source_id]
            for credentials_id in doomed:
                del self._credentials[credentials_id]
        return len(doomed)


class MemorySchedulerStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, ScheduledTask] = {}
        self._results: dict[str, deque[TaskResult]] = defaultdict(deque)

    def get_task(self, task_id: str) -> ScheduledTask | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return copy.deepcopy(task) if task is not None else None

    def list_tasks(self) -> list[ScheduledTask]:
        with self._lock:
            return [copy.deepcopy(task) for _, task in sorted(self._tasks.items())]

    def save_task(self, task: ScheduledTask) -> None:
        with self._lock:
            self._tasks[task.id] = copy.deepcopy(task)

    def delete_task(self, task_id: str) -> None:
        with self._lock:
            self._tasks.pop(task_id, None)
            self._results.pop(task_id, None)

    def record_result(self, result: TaskResult) -> None:
        with self._lock:
            self._results[result.task_id].append(copy.deepcopy(result))

    def history(self, task_id: str, limit: int = 20) -> list[TaskResult]:
        with self._lock:
            results = list(self._results.get(task_id, ()))
        results.reverse()
        return copy.deepcopy(results[:limit])

    def prune_history(self, keep: int) -> None:
        with self._lock:
            for results in self._results.values():
                while len(results) > keep:
                    results.popleft()


__all__ = [
    "MemorySourceStore",
    "MemoryDocumentStore",
    "MemorySyncStateStore",
    "MemoryExclusionStore",
    "MemoryCredentialStore",
    "MemorySchedulerStore",
]
