"""BM25 keyword index over chunk content."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Sequence

from rank_bm25 import BM25Plus

from localdex.core.metrics import INDEX_SIZE
from localdex.models.entities import Chunk
from localdex.stores.base import DocumentStore
from localdex.utils.text import tokenize


@dataclass(slots=True)
class _Entry:
    chunk_id: str
    document_id: str
    source_id: str
    tokens: list[str]


@dataclass(slots=True)
class KeywordHit:
    chunk_id: str
    document_id: str
    source_id: str
    score: float
    matched_terms: set[str]


class KeywordIndex:
    """In-memory BM25Plus index, rebuilt lazily after writes.

    Only chunks sharing at least one term with a query variant are returned; a
    chunk's score is its best score over all variants.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._by_document: dict[str, list[str]] = {}
        self._order: list[str] = []
        self._model: BM25Plus | None = None
        self._dirty = False

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def load(self, documents: DocumentStore) -> None:
        """Replace the index contents with every chunk in ``documents``."""
        with self._lock:
            self._entries.clear()
            self._by_document.clear()
            for chunk, source_id in documents.iter_chunks():
                self._add(chunk, source_id)
            self._dirty = True
            INDEX_SIZE.set(len(self._entries))

    def upsert(self, source_id: str, document_id: str, chunks: Sequence[Chunk]) -> None:
        with self._lock:
            self._drop(document_id)
            for chunk in chunks:
                self._add(chunk, source_id)
            self._dirty = True
            INDEX_SIZE.set(len(self._entries))

    def remove_document(self, document_id: str) -> None:
        with self._lock:
            if self._drop(document_id):
                self._dirty = True
            INDEX_SIZE.set(len(self._entries))

    def remove_source(self, source_id: str) -> None:
        with self._lock:
            doomed = {entry.document_id for entry in self._entries.values() if entry.source_id == source_id}
            for document_id in doomed:
                self._drop(document_id)
            self._dirty = self._dirty or bool(doomed)
            INDEX_SIZE.set(len(self._entries))

    def search(self, queries: Sequence[str], source_ids: Sequence[str] | None = None) -> list[KeywordHit]:
        variants = [tokenize(query) for query in queries]
        variants = [tokens for tokens in variants if tokens]
        if not variants:
            return []
        allowed = set(source_ids) if source_ids else None
        with self._lock:
            model = self._ensure_model()
            if model is None:
                return []
            order = list(self._order)
            entries = self._entries
            hits: dict[str, KeywordHit] = {}
            for tokens in variants:
                wanted = set(tokens)
                scores = model.get_scores(tokens)
                for idx, score in enumerate(scores):
                    entry = entries[order[idx]]
                    if allowed is not None and entry.source_id not in allowed:
                        continue
                    matched = wanted.intersection(entry.tokens)
                    if not matched:
                        continue
                    hit = hits.get(entry.chunk_id)
                    if hit is None:
                        hits[entry.chunk_id] = KeywordHit(
                            chunk_id=entry.chunk_id,
                            document_id=entry.document_id,
                            source_id=entry.source_id,
                            score=float(score),
                            matched_terms=set(matched),
                        )
                    else:
                        hit.score = max(hit.score, float(score))
                        hit.matched_terms.update(matched)
        return sorted(hits.values(), key=lambda item: (-item.score, item.chunk_id))

    # ------------------------------------------------------------------

    def _add(self, chunk: Chunk, source_id: str) -> None:
        self._entries[chunk.id] = _Entry(
            chunk_id=chunk.id,
            document_id=chunk.document_id,
            source_id=source_id,
            tokens=tokenize(chunk.content),
        )
        self._by_document.setdefault(chunk.document_id, []).append(chunk.id)

    def _drop(self, document_id: str) -> bool:
        chunk_ids = self._by_document.pop(document_id, [])
        for chunk_id in chunk_ids:
            self._entries.pop(chunk_id, None)
        return bool(chunk_ids)

    def _ensure_model(self) -> BM25Plus | None:
        if self._dirty or (self._model is None and self._entries):
            self._order = sorted(self._entries)
            corpus = [self._entries[chunk_id].tokens or [""] for chunk_id in self._order]
            self._model = BM25Plus(corpus) if corpus else None
            self._dirty = False
        return self._model


__all__ = ["KeywordIndex", "KeywordHit"]
