"""LLM query expansion."""

from __future__ import annotations

from typing import Protocol

import requests
from rapidfuzz import fuzz

from localdex.core.config import Settings
from localdex.core.errors import LLMUnavailableError
from localdex.core.logging import get_logger

logger = get_logger(__name__)

REWRITE_PROMPT = """Rewrite this search query to improve recall. Add synonyms and fix typos.
Return up to {count} alternative queries, one per line, nothing else.

Original: {query}
Rewritten:"""

# rapidfuzz ratio at or above which two variants count as the same query
DUPLICATE_RATIO = 90.0


class LLMProvider(Protocol):
    def expand(self, query: str) -> list[str]: ...


class OllamaLLMProvider:
    """Query rewriting through a local Ollama server (``POST /api/generate``)."""

    def __init__(self, base_url: str, model: str, max_variants: int = 3, timeout: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_variants = max_variants
        self.timeout = timeout
        self._session = requests.Session()

    def expand(self, query: str) -> list[str]:
        body = {
            "model": self.model,
            "prompt": REWRITE_PROMPT.format(count=self.max_variants, query=query),
            "stream": False,
            "options": {"num_predict": 100, "temperature": 0.3},
        }
        try:
            response = self._session.post(f"{self.base_url}/api/generate", json=body, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise LLMUnavailableError(f"ollama generate request failed: {exc}") from exc
        if not isinstance(payload, dict):
            raise LLMUnavailableError("ollama generate returned a non-object body")
        lines = [line.strip(" -*\t") for line in str(payload.get("response", "")).splitlines()]
        return [line for line in lines if line]


def create_llm_provider(settings: Settings) -> LLMProvider | None:
    if settings.llm_provider == "none":
        return None
    return OllamaLLMProvider(settings.ollama_url, settings.llm_model, max_variants=settings.max_query_variants)


def expand_query(
    query: str,
    provider: LLMProvider | None,
    max_variants: int = 3,
    fallback: bool = True,
) -> list[str]:
    """Return the original query followed by distinct LLM variants.

    Near-duplicates are dropped and the list, original included, holds at most
    ``max_variants`` queries. Without a working provider the original query alone is
    returned when ``fallback`` is set, otherwise ``LLMUnavailableError`` is raised.
    """
    if provider is None:
        if not fallback:
            raise LLMUnavailableError("no LLM provider configured")
        logger.info("No LLM provider configured; searching with the original query")
        return [query]
    try:
        candidates = list(provider.expand(query))
    except Exception as exc:
        if not fallback:
            if isinstance(exc, LLMUnavailableError):
                raise
            raise LLMUnavailableError(f"query expansion failed: {exc}") from exc
        logger.warning("LLM expansion failed (%s); searching with the original query", exc)
        return [query]

    variants = [query]
    for candidate in candidates:
        if len(variants) >= max_variants:
            break
        candidate = str(candidate).strip()
        if not candidate:
            continue
        if any(fuzz.ratio(candidate.lower(), seen.lower()) >= DUPLICATE_RATIO for seen in variants):
            continue
        variants.append(candidate)
    return variants


__all__ = ["LLMProvider", "OllamaLLMProvider", "create_llm_provider", "expand_query"]
