"""Search orchestration."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from localdex.core.errors import (
    EmbeddingUnavailableError,
    InvalidInputError,
    NotFoundError,
    SearchUnavailableError,
    VectorIndexUnavailableError,
)
from localdex.core.logging import get_logger
from localdex.core.metrics import SEARCH_LATENCY
from localdex.ingest.embeddings import EmbeddingProvider
from localdex.models.entities import Chunk, Document
from localdex.models.search import SearchMode, SearchOptions, SearchResult
from localdex.retrieval.hybrid import MIN_WEIGHT, FusedScore, dedupe_by_document, fuse, paginate, rank_key
from localdex.retrieval.keyword_index import KeywordIndex
from localdex.retrieval.llm import LLMProvider, expand_query
from localdex.retrieval.vector_index import VectorHit, VectorIndex
from localdex.stores.base import CredentialStore, DocumentStore, SourceStore
from localdex.utils.text import split_sentences, tokenize

logger = get_logger(__name__)

MAX_HIGHLIGHTS = 3
MAX_HIGHLIGHT_CHARS = 200


@dataclass(slots=True)
class Candidate:
    fused: FusedScore
    chunk: Chunk
    document: Document


class SearchEngine:
    """Coordinates keyword, semantic and LLM-assisted retrieval flows."""

    def __init__(
        self,
        documents: DocumentStore,
        sources: SourceStore,
        credentials: CredentialStore | None = None,
        keyword_index: KeywordIndex | None = None,
        vector_index: VectorIndex | None = None,
        embedder: EmbeddingProvider | None = None,
        llm: LLMProvider | None = None,
        keyword_weight: float = 1.0,
        semantic_weight: float = 1.0,
        semantic_top_k: int = 100,
        max_query_variants: int = 3,
        llm_fallback: bool = True,
    ) -> None:
        if keyword_weight < MIN_WEIGHT or semantic_weight < MIN_WEIGHT:
            raise InvalidInputError(f"fusion weights must be at least {MIN_WEIGHT}")
        self.documents = documents
        self.sources = sources
        self.credentials = credentials
        self.keyword_index = keyword_index
        self.vector_index = vector_index
        self.embedder = embedder
        self.llm = llm
        self.keyword_weight = keyword_weight
        self.semantic_weight = semantic_weight
        self.semantic_top_k = semantic_top_k
        self.max_query_variants = max_query_variants
        self.llm_fallback = llm_fallback

    def search(
        self,
        query: str,
        options: SearchOptions | None = None,
        cancel: threading.Event | None = None,
    ) -> list[SearchResult]:
        options = options or SearchOptions()
        mode = _validate(options)
        if not query or not query.strip():
            return []
        start_time = time.perf_counter()
        try:
            return self._search(query.strip(), mode, options, cancel)
        finally:
            SEARCH_LATENCY.labels(mode=mode.value).observe(time.perf_counter() - start_time)

    # ------------------------------------------------------------------

    def _search(
        self,
        query: str,
        mode: SearchMode,
        options: SearchOptions,
        cancel: threading.Event | None,
    ) -> list[SearchResult]:
        if self.keyword_index is None:
            raise SearchUnavailableError("keyword index is not configured")
        if mode.requires_embedding():
            if self.embedder is None:
                raise EmbeddingUnavailableError("no embedding provider configured")
            if self.vector_index is None:
                raise VectorIndexUnavailableError("vector index is not configured")

        variants = [query]
        if mode.requires_llm():
            variants = expand_query(query, self.llm, self.max_query_variants, self.llm_fallback)
        if _cancelled(cancel):
            return []

        source_ids = list(options.source_ids) or None
        try:
            keyword_hits = self.keyword_index.search(variants, source_ids=source_ids)
        except Exception as exc:
            raise SearchUnavailableError(f"keyword search failed: {exc}") from exc
        keyword_scores = {hit.chunk_id: hit.score for hit in keyword_hits}
        matched_terms = {hit.chunk_id: hit.matched_terms for hit in keyword_hits}
        document_of = {hit.chunk_id: hit.document_id for hit in keyword_hits}

        semantic_scores: dict[str, float] = {}
        if mode.requires_embedding():
            if _cancelled(cancel):
                return []
            for hit in self._semantic_hits(query, options, source_ids):
                semantic_scores[hit.chunk_id] = hit.score
                document_of.setdefault(hit.chunk_id, hit.document_id)

        fused = fuse(keyword_scores, semantic_scores, self.keyword_weight, self.semantic_weight)
        if _cancelled(cancel):
            return []
        candidates = self._hydrate(fused, document_of, matched_terms)
        candidates.sort(
            key=lambda item: rank_key(
                item.fused.score, item.document.updated_at, item.document.id, item.chunk.position
            )
        )
        winners = dedupe_by_document(candidates, lambda item: item.document.id)
        page = paginate(winners, options.offset, options.limit)
        logger.debug(
            "Search finished",
            extra={
                "ctx_mode": mode.value,
                "ctx_variants": len(variants),
                "ctx_keyword_hits": len(keyword_scores),
                "ctx_semantic_hits": len(semantic_scores),
                "ctx_documents": len(winners),
            },
        )

        query_terms = {term for variant in variants for term in tokenize(variant)}
        names: dict[str, str] = {}
        return [
            SearchResult(
                document=item.document,
                chunk=item.chunk,
                score=item.fused.score,
                highlights=build_highlights(item.chunk.content, item.fused.matched_terms or query_terms),
                source_name=self._source_name(item.document.source_id, names),
            )
            for item in page
        ]

    def _semantic_hits(
        self, query: str, options: SearchOptions, source_ids: list[str] | None
    ) -> list[VectorHit]:
        try:
            vector = self.embedder.embed(query)
        except EmbeddingUnavailableError:
            raise
        except Exception as exc:
            raise EmbeddingUnavailableError(f"query embedding failed: {exc}") from exc
        depth = max(self.semantic_top_k, 3 * (options.offset + options.limit))
        try:
            return self.vector_index.search(vector, top_k=depth, source_ids=source_ids)
        except VectorIndexUnavailableError:
            raise
        except Exception as exc:
            # typically a query vector from a different embedding model than the indexed one
            raise VectorIndexUnavailableError(f"vector search failed: {exc}") from exc

    def _hydrate(
        self,
        fused: dict[str, FusedScore],
        document_of: dict[str, str],
        matched_terms: dict[str, set[str]],
    ) -> list[Candidate]:
        """Attach stored chunks and documents; rows deleted since indexing are skipped."""
        documents: dict[str, Document | None] = {}
        chunks: dict[str, dict[str, Chunk]] = {}
        candidates: list[Candidate] = []
        for chunk_id, score in fused.items():
            document_id = document_of[chunk_id]
            if document_id not in documents:
                try:
                    documents[document_id] = self.documents.get_document(document_id)
                except NotFoundError:
                    documents[document_id] = None
                chunks[document_id] = {chunk.id: chunk for chunk in self.documents.get_chunks(document_id)}
            document = documents[document_id]
            chunk = chunks[document_id].get(chunk_id)
            if document is None or chunk is None:
                continue
            score.matched_terms = set(matched_terms.get(chunk_id, ()))
            candidates.append(Candidate(fused=score, chunk=chunk, document=document))
        return candidates

    def _source_name(self, source_id: str, cache: dict[str, str]) -> str:
        if source_id in cache:
            return cache[source_id]
        try:
            source = self.sources.get(source_id)
        except NotFoundError:
            cache[source_id] = source_id
            return source_id
        account = None
        if self.credentials is not None:
            try:
                account = self.credentials.get_by_source(source_id).account_identifier
            except NotFoundError:
                account = None
        cache[source_id] = source.display_name(account)
        return cache[source_id]


def build_highlights(content: str, terms: set[str]) -> list[str]:
    """Up to three sentences containing a matched term, each trimmed to 200 chars."""
    if not terms:
        return []
    highlights: list[str] = []
    for sentence in split_sentences(content):
        if terms.intersection(tokenize(sentence)):
            if len(sentence) > MAX_HIGHLIGHT_CHARS:
                sentence = sentence[: MAX_HIGHLIGHT_CHARS - 3].rstrip() + "..."
            highlights.append(sentence)
            if len(highlights) == MAX_HIGHLIGHTS:
                break
    return highlights


def _validate(options: SearchOptions) -> SearchMode:
    try:
        mode = SearchMode(options.mode)
    except ValueError as exc:
        raise InvalidInputError(f"invalid search mode: {options.mode}") from exc
    if options.limit <= 0:
        raise InvalidInputError("limit must be positive")
    if options.offset < 0:
        raise InvalidInputError("offset must be non-negative")
    return mode


def _cancelled(cancel: threading.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


__all__ = ["SearchEngine", "build_highlights"]
