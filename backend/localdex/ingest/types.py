"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from localdex.models.entities import Chunk, Document


@dataclass(slots=True)
class NormalisedContent:
    """Text extracted from a raw document, before chunking."""

    title: str
    text: str
    mime_type: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ChunkSpan:
    """Chunk boundaries produced by the chunker prior to persistence."""

    position: int
    start_char: int
    end_char: int
    text: str
    token_count: int


@dataclass(slots=True)
class ProcessedDocument:
    """Pipeline output: the document row and its full chunk set."""

    document: Document
    chunks: list[Chunk]


__all__ = ["NormalisedContent", "ChunkSpan", "ProcessedDocument"]
