"""Ingest pipeline: normalise raw bytes, run the post-processor chain, embed chunks."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Protocol, Sequence

import orjson

from localdex.core.config import ProcessorSettings, Settings
from localdex.core.errors import InvalidInputError, UnsupportedTypeError
from localdex.core.logging import get_logger
from localdex.ingest.chunker import chunk_text
from localdex.ingest.dedupe import dedupe_spans
from localdex.ingest.embeddings import EmbeddingProvider
from localdex.ingest.loaders import NormaliserRegistry
from localdex.ingest.types import ChunkSpan, ProcessedDocument
from localdex.models.entities import Chunk, Document, RawDocument
from localdex.utils.hashing import sha256_bytes, sha256_text
from localdex.utils.ids import chunk_id, document_id
from localdex.utils.time import utc_now

logger = get_logger(__name__)

FINGERPRINT_KEY = "fingerprint"


class ProcessorConfig:
    """Options for one post-processor, read through typed lookups with defaults."""

    def __init__(self, name: str, options: Mapping[str, Any] | None = None) -> None:
        self.name = name
        self.options: dict[str, Any] = dict(options or {})

    def get_int(self, key: str, default: int, minimum: int | None = None) -> int:
        value = self.options.get(key, default)
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise InvalidInputError(f"{self.name}.{key} must be an integer")
        try:
            result = int(value)
        except ValueError as exc:
            raise InvalidInputError(f"{self.name}.{key} must be an integer") from exc
        if minimum is not None and result < minimum:
            raise InvalidInputError(f"{self.name}.{key} must be >= {minimum}")
        return result

    def get_float(self, key: str, default: float) -> float:
        value = self.options.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"{self.name}.{key} must be a number") from exc

    def get_bool(self, key: str, default: bool) -> bool:
        value = self.options.get(key, default)
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)

    def get_str(self, key: str, default: str) -> str:
        value = self.options.get(key, default)
        return str(value)

    def fingerprint(self) -> str:
        return orjson.dumps({"name": self.name, "options": self.options}, option=orjson.OPT_SORT_KEYS).decode(
            "utf-8"
        )


class PostProcessor(Protocol):
    name: str

    def process(self, document: Document, spans: list[ChunkSpan]) -> list[ChunkSpan]: ...


class ChunkerProcessor:
    """Splits document content into token-budgeted chunks.

    Options: ``target_tokens`` (200), ``max_tokens`` (320), ``min_tokens`` (80),
    ``overlap_tokens`` (40). Incoming spans are ignored.
    """

    name = "chunker"

    def __init__(self, config: ProcessorConfig) -> None:
        self.target_tokens = config.get_int("target_tokens", 200, minimum=1)
        self.max_tokens = config.get_int("max_tokens", 320, minimum=1)
        self.min_tokens = config.get_int("min_tokens", 80, minimum=0)
        self.overlap_tokens = config.get_int("overlap_tokens", 40, minimum=0)
        if self.overlap_tokens >= self.max_tokens:
            self.overlap_tokens = self.max_tokens // 4

    def process(self, document: Document, spans: list[ChunkSpan]) -> list[ChunkSpan]:
        return chunk_text(
            document.content,
            target_tokens=self.target_tokens,
            max_tokens=self.max_tokens,
            min_tokens=self.min_tokens,
            overlap_tokens=self.overlap_tokens,
        )


class DedupeProcessor:
    """Drops chunks whose text repeats an earlier chunk of the same document."""

    name = "dedupe"

    def __init__(self, config: ProcessorConfig) -> None:
        self.config = config

    def process(self, document: Document, spans: list[ChunkSpan]) -> list[ChunkSpan]:
        return dedupe_spans(spans)


ProcessorBuilder = Callable[[ProcessorConfig], PostProcessor]


class ProcessorRegistry:
    """Maps processor names to builders so the chain can be assembled from config."""

    def __init__(self) -> None:
        self._builders: dict[str, ProcessorBuilder] = {}

    def register(self, name: str, builder: ProcessorBuilder) -> None:
        self._builders[name] = builder

    def build(self, config: ProcessorConfig) -> PostProcessor:
        builder = self._builders.get(config.name)
        if builder is None:
            raise UnsupportedTypeError(f"unknown processor: {config.name}")
        return builder(config)

    def has(self, name: str) -> bool:
        return name in self._builders

    def names(self) -> list[str]:
        return sorted(self._builders)


def default_processor_registry() -> ProcessorRegistry:
    registry = ProcessorRegistry()
    registry.register("chunker", ChunkerProcessor)
    registry.register("dedupe", DedupeProcessor)
    return registry


class Pipeline(Protocol):
    def fingerprint(self, raw: RawDocument) -> str:
        """Digest of the raw input and the pipeline configuration."""
        ...

    def process(self, raw: RawDocument, existing: Document | None = None) -> ProcessedDocument: ...


class IngestPipeline:
    """Coordinate normalisers, post-processors and embeddings for one raw document."""

    def __init__(
        self,
        configs: Sequence[ProcessorConfig] | None = None,
        registry: ProcessorRegistry | None = None,
        embedder: EmbeddingProvider | None = None,
        normalisers: NormaliserRegistry | None = None,
    ) -> None:
        self.registry = registry or default_processor_registry()
        self.configs = list(configs) if configs is not None else [ProcessorConfig("chunker")]
        self.processors = [self.registry.build(config) for config in self.configs]
        self.embedder = embedder
        self.normalisers = normalisers or NormaliserRegistry()
        parts = [config.fingerprint() for config in self.configs]
        if embedder is not None:
            parts.append(f"embedder:{embedder.model}")
        self._config_digest = sha256_text("\n".join(parts))

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        embedder: EmbeddingProvider | None = None,
        registry: ProcessorRegistry | None = None,
    ) -> "IngestPipeline":
        return cls(
            configs=[_to_config(item) for item in settings.processors],
            registry=registry,
            embedder=embedder,
        )

    def fingerprint(self, raw: RawDocument) -> str:
        header = orjson.dumps(
            {
                "uri": raw.uri,
                "mime": raw.mime_type,
                "parent": raw.parent_uri,
                "meta": raw.metadata,
            },
            option=orjson.OPT_SORT_KEYS,
            default=str,
        )
        return sha256_bytes(header + b"\0" + raw.content + b"\0" + self._config_digest.encode("ascii"))

    def process(self, raw: RawDocument, existing: Document | None = None) -> ProcessedDocument:
        content = self.normalisers.normalise(raw)
        now = utc_now()
        doc_id = existing.id if existing is not None else document_id(raw.source_id, raw.uri)
        parent_id = document_id(raw.source_id, raw.parent_uri) if raw.parent_uri else None
        metadata: dict[str, Any] = dict(raw.metadata)
        metadata.update(content.metadata)
        metadata["mime_type"] = content.mime_type
        metadata[FINGERPRINT_KEY] = self.fingerprint(raw)
        document = Document(
            id=doc_id,
            source_id=raw.source_id,
            uri=raw.uri,
            title=content.title,
            content=content.text,
            parent_id=parent_id,
            metadata=metadata,
            created_at=existing.created_at if existing is not None else now,
            updated_at=now,
        )

        spans: list[ChunkSpan] = []
        for processor in self.processors:
            spans = processor.process(document, spans)
        if not spans and document.content:
            logger.warning("Document %s produced no chunks", raw.uri)

        vectors: list[list[float] | None] = [None] * len(spans)
        if self.embedder is not None and spans:
            vectors = list(self.embedder.embed_many([span.text for span in spans]))

        chunks = [
            Chunk(
                id=chunk_id(doc_id, position),
                document_id=doc_id,
                content=span.text,
                position=position,
                embedding=vectors[position],
                metadata={
                    "start_char": span.start_char,
                    "end_char": span.end_char,
                    "token_count": span.token_count,
                },
            )
            for position, span in enumerate(spans)
        ]
        return ProcessedDocument(document=document, chunks=chunks)


def _to_config(item: ProcessorSettings) -> ProcessorConfig:
    return ProcessorConfig(item.name, item.options)


__all__ = [
    "FINGERPRINT_KEY",
    "ProcessorConfig",
    "PostProcessor",
    "ChunkerProcessor",
    "DedupeProcessor",
    "ProcessorRegistry",
    "default_processor_registry",
    "Pipeline",
    "IngestPipeline",
]
