"""Embedding providers."""

from __future__ import annotations

import hashlib
import math
from typing import Protocol, Sequence

import requests

from localdex.core.config import Settings
from localdex.core.errors import EmbeddingUnavailableError
from localdex.core.logging import get_logger
from localdex.utils.text import tokenize

logger = get_logger(__name__)


class EmbeddingProvider(Protocol):
    model: str

    @property
    def dim(self) -> int: ...

    def embed(self, text: str) -> list[float]: ...

    def embed_many(self, texts: Sequence[str]) -> list[list[float]]: ...


class HashedEmbeddingProvider:
    """Lightweight hashed bag-of-words embeddings with deterministic output."""

    def __init__(self, model: str = "hashed-384", dim: int = 384) -> None:
        self.model = model
        self._dim = dim

    @property
    def dim(self) -> int:
        return self._dim

    def embed(self, text: str) -> list[float]:
        vector = [0.0] * self._dim
        for token in tokenize(text):
            vector[_hash_token(token, self._dim)] += 1.0
        _normalize(vector)
        return vector

    def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        return [self.embed(text) for text in texts]


class OllamaEmbeddingProvider:
    """Embeddings from a local Ollama server (``POST /api/embeddings``)."""

    def __init__(self, base_url: str, model: str, timeout: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._dim = 0
        self._session = requests.Session()

    @property
    def dim(self) -> int:
        return self._dim

    def embed(self, text: str) -> list[float]:
        try:
            response = self._session.post(
                f"{self.base_url}/api/embeddings",
                json={"model": self.model, "prompt": text},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise EmbeddingUnavailableError(f"ollama embedding request failed: {exc}") from exc
        embedding = payload.get("embedding")
        if not embedding:
            raise EmbeddingUnavailableError("ollama returned an empty embedding")
        vector = [float(value) for value in embedding]
        _normalize(vector)
        self._dim = len(vector)
        return vector

    def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        return [self.embed(text) for text in texts]


def create_embedding_provider(settings: Settings) -> EmbeddingProvider | None:
    if settings.embedding_provider == "none":
        return None
    if settings.embedding_provider == "ollama":
        logger.info("Using Ollama embeddings", extra={"ctx_model": settings.embedding_model})
        return OllamaEmbeddingProvider(settings.ollama_url, settings.embedding_model)
    return HashedEmbeddingProvider(model=settings.embedding_model, dim=settings.embedding_dim)


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingProvider",
    "HashedEmbeddingProvider",
    "OllamaEmbeddingProvider",
    "create_embedding_provider",
]
