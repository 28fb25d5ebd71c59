"""Search value objects."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from localdex.models.entities import Chunk, Document


class SearchMode(str, enum.Enum):
    """Which retrieval signals a query combines."""

    TEXT_ONLY = "text_only"
    HYBRID = "hybrid"
    LLM_ASSISTED = "llm_assisted"
    FULL = "full"

    def requires_embedding(self) -> bool:
        return self in (SearchMode.HYBRID, SearchMode.FULL)

    def requires_llm(self) -> bool:
        return self in (SearchMode.LLM_ASSISTED, SearchMode.FULL)

    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    SearchMode.TEXT_ONLY: "Text Only (keyword search)",
    SearchMode.HYBRID: "Hybrid (text + semantic search)",
    SearchMode.LLM_ASSISTED: "LLM Assisted (text + query expansion)",
    SearchMode.FULL: "Full (text + semantic + LLM)",
}


@dataclass(slots=True)
class SearchOptions:
    mode: SearchMode = SearchMode.TEXT_ONLY
    limit: int = 20
    offset: int = 0
    source_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class SearchResult:
    document: Document
    chunk: Chunk
    score: float
    highlights: list[str] = field(default_factory=list)
    source_name: str = ""


__all__ = ["SearchMode", "SearchOptions", "SearchResult"]
