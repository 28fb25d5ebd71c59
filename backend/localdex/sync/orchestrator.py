"""Per-source incremental sync.

One run opens the source's connector at the stored cursor and applies each
change in order: exclusions are honoured, created/updated documents go through
the pipeline and are written together with their chunks, deletions remove the
document. The cursor is committed after each applied change that carries one;
after the first failed item no later cursor is committed in that run, so the
next run replays from just before the failure.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator

from localdex.connectors.base import ChangeEvent
from localdex.connectors.registry import ConnectorRegistry
from localdex.core.errors import (
    AuthRequiredError,
    LocaldexError,
    NotFoundError,
    SyncFailedError,
    SyncInProgressError,
)
from localdex.core.logging import get_logger
from localdex.core.metrics import SYNC_DURATION, SYNC_ITEMS
from localdex.ingest.pipeline import FINGERPRINT_KEY, Pipeline
from localdex.ingest.types import ProcessedDocument
from localdex.models.entities import (
    ChangeType,
    Credentials,
    RawDocumentChange,
    Source,
    SyncCheckpoint,
    SyncState,
)
from localdex.retrieval.keyword_index import KeywordIndex
from localdex.retrieval.vector_index import VectorIndex
from localdex.stores.base import (
    CredentialStore,
    DocumentStore,
    ExclusionStore,
    SourceStore,
    SyncStateStore,
)
from localdex.utils.time import utc_now

logger = get_logger(__name__)

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_CANCELLED = "cancelled"


@dataclass(slots=True)
class SyncResult:
    source_id: str
    status: str = STATUS_SUCCESS
    processed: int = 0
    unchanged: int = 0
    excluded: int = 0
    failed: int = 0
    deleted: int = 0
    cursor: str | None = None
    errors: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    ended_at: datetime | None = None


@dataclass(slots=True)
class SyncStatus:
    source_id: str
    running: bool
    processed: int = 0
    failed: int = 0
    last_sync: datetime | None = None
    last_status: str | None = None


class SyncOrchestrator:
    """Runs connector syncs; at most one in-flight run per source."""

    def __init__(
        self,
        sources: SourceStore,
        documents: DocumentStore,
        sync_states: SyncStateStore,
        exclusions: ExclusionStore,
        credentials: CredentialStore,
        connectors: ConnectorRegistry,
        pipeline: Pipeline,
        keyword_index: KeywordIndex | None = None,
        vector_index: VectorIndex | None = None,
    ) -> None:
        self.sources = sources
        self.documents = documents
        self.sync_states = sync_states
        self.exclusions = exclusions
        self.credentials = credentials
        self.connectors = connectors
        self.pipeline = pipeline
        self.keyword_index = keyword_index
        self.vector_index = vector_index
        self._lock = threading.Lock()
        self._running: dict[str, SyncResult] = {}
        self._last: dict[str, SyncResult] = {}

    def sync_source(self, source_id: str, cancel: threading.Event | None = None) -> SyncResult:
        source = self.sources.get(source_id)
        connector_type = self.connectors.get_type(source.type)
        credentials = self._credentials_for(source)
        if credentials is None and connector_type.requires_auth():
            raise AuthRequiredError(f"source {source_id} ({source.type}) needs credentials")

        result = SyncResult(source_id=source_id)
        with self._lock:
            if source_id in self._running:
                raise SyncInProgressError(source_id)
            self._running[source_id] = result
        start = time.perf_counter()
        try:
            self._run(source, credentials, result, cancel)
        finally:
            result.ended_at = utc_now()
            with self._lock:
                self._running.pop(source_id, None)
                self._last[source_id] = result
            SYNC_DURATION.labels(source_type=source.type, status=result.status).observe(
                time.perf_counter() - start
            )
        logger.info(
            "Sync finished",
            extra={
                "ctx_source_id": source_id,
                "ctx_status": result.status,
                "ctx_processed": result.processed,
                "ctx_unchanged": result.unchanged,
                "ctx_excluded": result.excluded,
                "ctx_deleted": result.deleted,
                "ctx_failed": result.failed,
            },
        )
        return result

    def sync_all(self, cancel: threading.Event | None = None) -> dict[str, SyncResult | LocaldexError]:
        """Sync every source in turn; one source's failure does not stop the others."""
        outcomes: dict[str, SyncResult | LocaldexError] = {}
        for source in self.sources.list():
            if cancel is not None and cancel.is_set():
                break
            try:
                outcomes[source.id] = self.sync_source(source.id, cancel)
            except LocaldexError as exc:
                logger.warning("Sync of %s failed: %s", source.id, exc)
                outcomes[source.id] = exc
        return outcomes

    def is_running(self, source_id: str) -> bool:
        with self._lock:
            return source_id in self._running

    def status(self, source_id: str) -> SyncStatus:
        self.sources.get(source_id)
        with self._lock:
            live = self._running.get(source_id)
            last = self._last.get(source_id)
        try:
            last_sync = self.sync_states.get(source_id).last_sync
        except NotFoundError:
            last_sync = None
        if live is not None:
            return SyncStatus(
                source_id=source_id,
                running=True,
                processed=live.processed,
                failed=live.failed,
                last_sync=last_sync,
                last_status=last.status if last is not None else None,
            )
        return SyncStatus(
            source_id=source_id,
            running=False,
            processed=last.processed if last is not None else 0,
            failed=last.failed if last is not None else 0,
            last_sync=last_sync,
            last_status=last.status if last is not None else None,
        )

    # ------------------------------------------------------------------

    def _credentials_for(self, source: Source) -> Credentials | None:
        try:
            return self.credentials.get_by_source(source.id)
        except NotFoundError:
            return None

    def _run(
        self,
        source: Source,
        credentials: Credentials | None,
        result: SyncResult,
        cancel: threading.Event | None,
    ) -> None:
        try:
            previous_cursor: str | None = self.sync_states.get(source.id).cursor
        except NotFoundError:
            previous_cursor = None

        failed_seen = False
        produced_cursor = False
        stream: Iterator[ChangeEvent] | None = None
        try:
            connector = self.connectors.create(source.type)
            stream = connector.open(source, previous_cursor, credentials, cancel)
            for event in stream:
                if cancel is not None and cancel.is_set():
                    result.status = STATUS_CANCELLED
                    break
                if isinstance(event, SyncCheckpoint):
                    produced_cursor = True
                    if not failed_seen:
                        self._commit(source.id, event.cursor, result)
                    continue
                applied = self._apply(source, event, result)
                if not applied:
                    failed_seen = True
                elif event.cursor is not None:
                    produced_cursor = True
                    if not failed_seen:
                        self._commit(source.id, event.cursor, result)
            else:
                if cancel is not None and cancel.is_set():
                    result.status = STATUS_CANCELLED
        except Exception as exc:
            result.status = STATUS_PARTIAL
            result.errors.append(str(exc))
            logger.error("Sync of %s aborted: %s", source.id, exc)
            raise SyncFailedError(f"sync of source {source.id} failed: {exc}", result) from exc
        finally:
            self._close_stream(source.id, stream)

        if result.status == STATUS_CANCELLED:
            return
        result.status = STATUS_PARTIAL if result.failed else STATUS_SUCCESS
        if failed_seen:
            return
        final_cursor = result.cursor or previous_cursor
        if final_cursor is None and not produced_cursor:
            final_cursor = str(time.time_ns())
        if final_cursor is not None:
            try:
                self._commit(source.id, final_cursor, result)
            except Exception as exc:
                result.status = STATUS_PARTIAL
                result.errors.append(str(exc))
                raise SyncFailedError(f"could not save sync state for {source.id}: {exc}", result) from exc

    def _close_stream(self, source_id: str, stream: Iterator[ChangeEvent] | None) -> None:
        close = getattr(stream, "close", None)
        if close is None:
            return
        try:
            close()
        except Exception:
            logger.exception("Closing the change stream of %s failed", source_id)

    def _commit(self, source_id: str, cursor: str, result: SyncResult) -> None:
        self.sync_states.save(SyncState(source_id=source_id, cursor=cursor, last_sync=utc_now()))
        result.cursor = cursor

    def _apply(self, source: Source, change: RawDocumentChange, result: SyncResult) -> bool:
        """Apply one change; return False when the item failed and was skipped."""
        raw = change.document
        outcome = "processed"
        try:
            if self.exclusions.is_excluded(source.id, raw.uri):
                result.excluded += 1
                outcome = "excluded"
            elif change.type is ChangeType.DELETED:
                outcome = "deleted" if self._delete(source.id, raw.uri) else "unchanged"
                if outcome == "deleted":
                    result.deleted += 1
            else:
                try:
                    existing = self.documents.get_document_by_uri(source.id, raw.uri)
                except NotFoundError:
                    existing = None
                if existing is not None and existing.metadata.get(FINGERPRINT_KEY) == self.pipeline.fingerprint(raw):
                    result.unchanged += 1
                    outcome = "unchanged"
                else:
                    processed = self.pipeline.process(raw, existing)
                    self._store(source.id, processed)
                    result.processed += 1
        except Exception as exc:
            logger.exception("Failed to apply %s change for %s", change.type.value, raw.uri)
            result.failed += 1
            result.errors.append(f"{raw.uri}: {exc}")
            SYNC_ITEMS.labels(source_type=source.type, outcome="failed").inc()
            return False
        SYNC_ITEMS.labels(source_type=source.type, outcome=outcome).inc()
        return True

    def _store(self, source_id: str, processed: ProcessedDocument) -> None:
        """Index first, then write the row that carries the fingerprint.

        A failed write drops the document from the indexes; the stored fingerprint is
        still the old one, so the next sync reprocesses the item.
        """
        document = processed.document
        try:
            if self.keyword_index is not None:
                self.keyword_index.upsert(source_id, document.id, processed.chunks)
            if self.vector_index is not None:
                self.vector_index.upsert(source_id, document.id, processed.chunks)
            self.documents.replace_document(document, processed.chunks)
        except Exception:
            self._unindex(document.id)
            raise

    def _unindex(self, document_id: str) -> None:
        if self.keyword_index is not None:
            self.keyword_index.remove_document(document_id)
        if self.vector_index is not None:
            self.vector_index.remove_document(document_id)

    def _delete(self, source_id: str, uri: str) -> bool:
        try:
            existing = self.documents.get_document_by_uri(source_id, uri)
        except NotFoundError:
            return False
        self.documents.delete_document(existing.id)
        self._unindex(existing.id)
        return True


__all__ = ["SyncOrchestrator", "SyncResult", "SyncStatus"]
