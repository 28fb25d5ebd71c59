"""Shared test doubles."""

from __future__ import annotations

from localdex.connectors.registry import ConnectorRegistry
from localdex.ingest.pipeline import IngestPipeline, ProcessorConfig
from localdex.models.entities import (
    AuthCapability,
    ChangeType,
    ConnectorType,
    Credentials,
    PATCredentials,
    RawDocument,
    RawDocumentChange,
    Source,
)
from localdex.retrieval import KeywordIndex, VectorIndex
from localdex.stores import Stores
from localdex.sync import SyncOrchestrator

SCRIPTED_TYPE = ConnectorType(id="scripted", name="Scripted")
AUTH_TYPE = ConnectorType(id="needs-auth", name="Needs auth", auth_capability=AuthCapability.PAT)

SMALL_CHUNKS = {"target_tokens": 5, "max_tokens": 5, "min_tokens": 1, "overlap_tokens": 0}


class ScriptedConnector:
    """Replays a list of events; exceptions are raised and callables run mid-stream."""

    def __init__(self, events: list | None = None) -> None:
        self.events = events or []
        self.cursors: list[str | None] = []

    def open(self, source, cursor, credentials=None, cancel=None):
        self.cursors.append(cursor)
        return self._iter()

    def _iter(self):
        for event in self.events:
            if isinstance(event, Exception):
                raise event
            if callable(event):
                event()
                continue
            yield event


class Harness:
    """Stores, indexes and an orchestrator wired to a scripted connector."""

    def __init__(self, stores: Stores, chunk_options: dict | None = None) -> None:
        self.stores = stores
        self.connector = ScriptedConnector()
        self.registry = ConnectorRegistry()
        self.registry.register(SCRIPTED_TYPE, lambda: self.connector)
        self.registry.register(AUTH_TYPE, lambda: self.connector)
        self.pipeline = IngestPipeline(configs=[ProcessorConfig("chunker", chunk_options or SMALL_CHUNKS)])
        self.keyword_index = KeywordIndex()
        self.vector_index = VectorIndex()
        self.orchestrator = SyncOrchestrator(
            sources=stores.sources,
            documents=stores.documents,
            sync_states=stores.sync_states,
            exclusions=stores.exclusions,
            credentials=stores.credentials,
            connectors=self.registry,
            pipeline=self.pipeline,
            keyword_index=self.keyword_index,
            vector_index=self.vector_index,
        )

    def add_source(self, source_id: str = "fs-1", type_id: str = "scripted") -> Source:
        source = Source(id=source_id, type=type_id, name=source_id)
        self.stores.sources.save(source)
        return source

    def script(self, *events) -> None:
        self.connector.events = list(events)


def change(
    uri: str,
    text: str = "",
    change_type: ChangeType = ChangeType.CREATED,
    cursor: str | None = None,
    source_id: str = "fs-1",
) -> RawDocumentChange:
    return RawDocumentChange(
        type=change_type,
        document=RawDocument(source_id=source_id, uri=uri, content=text.encode("utf-8")),
        cursor=cursor,
    )


def pat_credentials(source_id: str, token: str = "secret") -> Credentials:
    return Credentials(id=f"cred-{source_id}", source_id=source_id, pat=PATCredentials(token=token))
