"""Vector index abstraction."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import Sequence

from localdex.models.entities import Chunk
from localdex.stores.base import DocumentStore


@dataclass(slots=True)
class VectorHit:
    chunk_id: str
    document_id: str
    source_id: str
    score: float


@dataclass(slots=True)
class _Vector:
    document_id: str
    source_id: str
    values: list[float]


class VectorIndex:
    """Simple in-memory vector index using cosine similarity."""

    def __init__(self, dim: int | None = None) -> None:
        self.dim = dim
        self._lock = threading.Lock()
        self._vectors: dict[str, _Vector] = {}
        self._by_document: dict[str, list[str]] = {}

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._vectors)

    def load(self, documents: DocumentStore) -> None:
        with self._lock:
            self._vectors.clear()
            self._by_document.clear()
            for chunk, source_id in documents.iter_chunks():
                if chunk.embedding:
                    self._add(chunk, source_id)

    def upsert(self, source_id: str, document_id: str, chunks: Sequence[Chunk]) -> None:
        dims = {len(chunk.embedding) for chunk in chunks if chunk.embedding}
        with self._lock:
            expected = self.dim if self.dim is not None else next(iter(dims), None)
            if dims and dims != {expected}:
                raise ValueError("Vector dimension mismatch")
            self._drop(document_id)
            for chunk in chunks:
                if chunk.embedding:
                    self._add(chunk, source_id)

    def remove_document(self, document_id: str) -> None:
        with self._lock:
            self._drop(document_id)

    def remove_source(self, source_id: str) -> None:
        with self._lock:
            doomed = {item.document_id for item in self._vectors.values() if item.source_id == source_id}
            for document_id in doomed:
                self._drop(document_id)

    def search(
        self,
        vector: Sequence[float],
        top_k: int = 8,
        source_ids: Sequence[str] | None = None,
    ) -> list[VectorHit]:
        query = _unit(vector)
        allowed = set(source_ids) if source_ids else None
        with self._lock:
            if not self._vectors:
                return []
            if self.dim is not None and len(query) != self.dim:
                raise ValueError("Query vector dimension mismatch")
            scores = [
                (chunk_id, item, _dot(item.values, query))
                for chunk_id, item in self._vectors.items()
                if allowed is None or item.source_id in allowed
            ]
        scores.sort(key=lambda entry: (-entry[2], entry[0]))
        return [
            VectorHit(chunk_id=chunk_id, document_id=item.document_id, source_id=item.source_id, score=score)
            for chunk_id, item, score in scores[:top_k]
        ]

    # ------------------------------------------------------------------

    def _add(self, chunk: Chunk, source_id: str) -> None:
        values = _unit(chunk.embedding or [])
        if self.dim is None:
            self.dim = len(values)
        elif len(values) != self.dim:
            raise ValueError("Vector dimension mismatch")
        self._vectors[chunk.id] = _Vector(document_id=chunk.document_id, source_id=source_id, values=values)
        self._by_document.setdefault(chunk.document_id, []).append(chunk.id)

    def _drop(self, document_id: str) -> None:
        for chunk_id in self._by_document.pop(document_id, []):
            self._vectors.pop(chunk_id, None)


def _unit(vector: Sequence[float]) -> list[float]:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return list(vector)
    return [value / norm for value in vector]


def _dot(a: Sequence[float], b: Sequence[float]) -> float:
    return sum(x * y for x, y in zip(a, b))


__all__ = ["VectorIndex", "VectorHit"]
