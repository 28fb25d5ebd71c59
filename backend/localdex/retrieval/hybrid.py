"""Score normalisation, fusion and ranking for hybrid search."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Mapping, Sequence, TypeVar

T = TypeVar("T")

# lowest fusion weight that keeps a two-signal score at or above either signal alone
MIN_WEIGHT = 1.0


@dataclass(slots=True)
class FusedScore:
    chunk_id: str
    keyword: float = 0.0
    semantic: float = 0.0
    score: float = 0.0
    matched_terms: set[str] = field(default_factory=set)


def normalize_scores(scores: Mapping[str, float]) -> dict[str, float]:
    """Scale scores into [0, 1] by the set's maximum; negatives clamp to 0."""
    if not scores:
        return {}
    top = max(scores.values())
    if top <= 0:
        return {key: 0.0 for key in scores}
    return {key: min(1.0, max(0.0, value / top)) for key, value in scores.items()}


def fuse(
    keyword: Mapping[str, float],
    semantic: Mapping[str, float],
    keyword_weight: float = 1.0,
    semantic_weight: float = 1.0,
) -> dict[str, FusedScore]:
    """Weighted sum of per-signal normalised scores; a missing signal contributes 0.

    Weights below 1 are rejected: with them a chunk found by both signals could
    score below its own single-signal normalised score.
    """
    if keyword_weight < MIN_WEIGHT or semantic_weight < MIN_WEIGHT:
        raise ValueError(f"fusion weights must be at least {MIN_WEIGHT}")
    keyword_norm = normalize_scores(keyword)
    semantic_norm = normalize_scores(semantic)
    fused: dict[str, FusedScore] = {}
    for chunk_id in keyword_norm.keys() | semantic_norm.keys():
        k = keyword_norm.get(chunk_id, 0.0)
        s = semantic_norm.get(chunk_id, 0.0)
        fused[chunk_id] = FusedScore(
            chunk_id=chunk_id,
            keyword=k,
            semantic=s,
            score=keyword_weight * k + semantic_weight * s,
        )
    return fused


def rank_key(score: float, updated_at: datetime, document_id: str, position: int) -> tuple:
    """Sort key: score desc, recency desc, document id asc, chunk position asc."""
    return (-score, -updated_at.timestamp(), document_id, position)


def dedupe_by_document(ranked: Iterable[T], document_of) -> list[T]:
    """Keep the first (best ranked) item per document, preserving order."""
    seen: set[str] = set()
    unique: list[T] = []
    for item in ranked:
        document_id = document_of(item)
        if document_id in seen:
            continue
        seen.add(document_id)
        unique.append(item)
    return unique


def paginate(items: Sequence[T], offset: int, limit: int) -> list[T]:
    return list(items[offset : offset + limit])


__all__ = [
    "FusedScore",
    "normalize_scores",
    "fuse",
    "MIN_WEIGHT",
    "rank_key",
    "dedupe_by_document",
    "paginate",
]
