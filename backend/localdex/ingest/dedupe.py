"""Deduplication helpers."""

from __future__ import annotations

from typing import Iterable

from localdex.ingest.types import ChunkSpan
from localdex.utils.hashing import sha256_text
from localdex.utils.text import normalize


def chunk_hash(text: str) -> str:
    """Stable hash of chunk text, insensitive to whitespace and case."""
    return sha256_text(normalize(text).lower())


def dedupe_spans(spans: Iterable[ChunkSpan]) -> list[ChunkSpan]:
    """Drop repeated chunk texts, keep first occurrences and renumber positions."""
    seen: set[str] = set()
    unique: list[ChunkSpan] = []
    for span in spans:
        digest = chunk_hash(span.text)
        if digest in seen:
            continue
        seen.add(digest)
        span.position = len(unique)
        unique.append(span)
    return unique


__all__ = ["chunk_hash", "dedupe_spans"]
