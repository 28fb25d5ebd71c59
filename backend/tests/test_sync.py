"""Tests for the sync orchestrator."""

from __future__ import annotations

import threading

import pytest

from helpers import Harness, change, pat_credentials
from localdex.core.errors import (
    AuthRequiredError,
    NotFoundError,
    SyncFailedError,
    SyncInProgressError,
    UnsupportedTypeError,
)
from localdex.models.entities import ChangeType, RawDocument, RawDocumentChange, Source, SyncCheckpoint
from localdex.retrieval import VectorIndex
from localdex.services.sources import SourceService

THREE_SENTENCES = "one two three four five. six seven eight nine ten. eleven twelve thirteen fourteen fifteen."
TWO_SENTENCES = "one two three four five. six seven eight nine ten."


def test_first_sync_creates_document_and_cursor(harness: Harness) -> None:
    harness.add_source("fs-1")
    harness.script(change("/a.txt", "hello world"))

    result = harness.orchestrator.sync_source("fs-1")

    documents = harness.stores.documents.list_documents()
    assert len(documents) == 1
    assert documents[0].uri == "/a.txt"
    assert documents[0].source_id == "fs-1"
    assert harness.stores.sync_states.get("fs-1").cursor
    assert result.status == "success"
    assert result.processed == 1
    assert harness.connector.cursors == [None]


def test_resync_without_changes_is_idempotent(harness: Harness) -> None:
    harness.add_source("fs-1")
    harness.script(change("/a.txt", THREE_SENTENCES, cursor="c1"), change("/b.txt", "alpha beta", cursor="c2"))

    harness.orchestrator.sync_source("fs-1")
    documents_before = harness.stores.documents.list_documents()
    chunks_before = {doc.id: harness.stores.documents.get_chunks(doc.id) for doc in documents_before}

    second = harness.orchestrator.sync_source("fs-1")

    assert second.processed == 0
    assert second.unchanged == 2
    assert harness.stores.documents.list_documents() == documents_before
    assert {doc.id: harness.stores.documents.get_chunks(doc.id) for doc in documents_before} == chunks_before
    assert harness.stores.sync_states.get("fs-1").cursor == "c2"
    assert harness.connector.cursors == [None, "c2"]


def test_chunk_set_is_replaced_wholesale(harness: Harness) -> None:
    harness.add_source("fs-1")
    harness.script(change("/doc.txt", THREE_SENTENCES))
    harness.orchestrator.sync_source("fs-1")
    document = harness.stores.documents.get_document_by_uri("fs-1", "/doc.txt")
    assert len(harness.stores.documents.get_chunks(document.id)) == 3

    harness.script(change("/doc.txt", TWO_SENTENCES, change_type=ChangeType.UPDATED))
    harness.orchestrator.sync_source("fs-1")

    chunks = harness.stores.documents.get_chunks(document.id)
    assert [chunk.position for chunk in chunks] == [0, 1]
    assert harness.stores.documents.get_document_by_uri("fs-1", "/doc.txt").id == document.id
    assert harness.keyword_index.size == 2


def test_exclusion_blocks_reindex_until_removed(harness: Harness) -> None:
    harness.add_source("fs-1")
    service = SourceService(harness.stores, harness.registry, harness.keyword_index, harness.vector_index)
    harness.script(change("/secret.txt", "payroll numbers"))
    harness.orchestrator.sync_source("fs-1")

    exclusion = service.exclude("fs-1", uri="/secret.txt", reason="private")
    assert harness.stores.documents.list_documents("fs-1") == []

    harness.script(change("/secret.txt", "payroll numbers updated", change_type=ChangeType.UPDATED))
    result = harness.orchestrator.sync_source("fs-1")
    assert result.excluded == 1
    with pytest.raises(NotFoundError):
        harness.stores.documents.get_document_by_uri("fs-1", "/secret.txt")

    service.remove_exclusion(exclusion.id)
    harness.orchestrator.sync_source("fs-1")
    restored = harness.stores.documents.get_document_by_uri("fs-1", "/secret.txt")
    assert "updated" in restored.content


def test_deleted_change_removes_document(harness: Harness) -> None:
    harness.add_source("fs-1")
    harness.script(change("/a.txt", "short note"))
    harness.orchestrator.sync_source("fs-1")

    harness.script(
        change("/a.txt", change_type=ChangeType.DELETED),
        change("/never-seen.txt", change_type=ChangeType.DELETED),
    )
    result = harness.orchestrator.sync_source("fs-1")

    assert result.deleted == 1
    assert harness.stores.documents.list_documents() == []
    assert harness.keyword_index.size == 0


def test_failed_item_holds_cursor_but_later_items_apply(harness: Harness) -> None:
    harness.add_source("fs-1")
    broken = RawDocumentChange(
        type=ChangeType.CREATED,
        document=RawDocument(source_id="fs-1", uri="/blob.bin", mime_type="application/x-unknown", content=b"\x00"),
        cursor="c2",
    )
    harness.script(change("/a.txt", "first", cursor="c1"), broken, change("/c.txt", "third", cursor="c3"))

    result = harness.orchestrator.sync_source("fs-1")

    assert result.status == "partial"
    assert result.failed == 1
    assert result.processed == 2
    assert harness.stores.sync_states.get("fs-1").cursor == "c1"
    assert harness.stores.documents.get_document_by_uri("fs-1", "/c.txt")


def test_stream_error_raises_with_partial_result(harness: Harness) -> None:
    harness.add_source("fs-1")
    harness.script(change("/a.txt", "first", cursor="c1"), RuntimeError("connection reset"))

    with pytest.raises(SyncFailedError) as info:
        harness.orchestrator.sync_source("fs-1")

    assert info.value.result.processed == 1
    assert info.value.result.status == "partial"
    assert harness.stores.sync_states.get("fs-1").cursor == "c1"
    assert not harness.orchestrator.is_running("fs-1")


def test_checkpoint_event_advances_cursor(harness: Harness) -> None:
    harness.add_source("fs-1")
    harness.script(SyncCheckpoint(cursor="page-2"))

    result = harness.orchestrator.sync_source("fs-1")

    assert result.cursor == "page-2"
    assert harness.stores.sync_states.get("fs-1").cursor == "page-2"


def test_concurrent_sync_of_same_source_is_rejected(harness: Harness) -> None:
    harness.add_source("fs-1")
    attempts: list[bool] = []

    def reenter() -> None:
        assert harness.orchestrator.is_running("fs-1")
        assert harness.orchestrator.status("fs-1").running
        with pytest.raises(SyncInProgressError):
            harness.orchestrator.sync_source("fs-1")
        attempts.append(True)

    harness.script(change("/a.txt", "first"), reenter, change("/b.txt", "second"))
    result = harness.orchestrator.sync_source("fs-1")

    assert attempts == [True]
    assert result.processed == 2
    assert not harness.orchestrator.status("fs-1").running


def test_cancellation_stops_between_items(harness: Harness) -> None:
    harness.add_source("fs-1")
    cancel = threading.Event()
    harness.script(change("/a.txt", "first"), cancel.set, change("/b.txt", "second"))

    result = harness.orchestrator.sync_source("fs-1", cancel)

    assert result.status == "cancelled"
    assert result.processed == 1
    with pytest.raises(NotFoundError):
        harness.stores.sync_states.get("fs-1")


def test_preconditions(harness: Harness) -> None:
    with pytest.raises(NotFoundError):
        harness.orchestrator.sync_source("missing")

    harness.stores.sources.save(Source(id="odd", type="carrier-pigeon", name="odd"))
    with pytest.raises(UnsupportedTypeError):
        harness.orchestrator.sync_source("odd")

    harness.add_source("gated", type_id="needs-auth")
    with pytest.raises(AuthRequiredError):
        harness.orchestrator.sync_source("gated")

    harness.stores.credentials.save(pat_credentials("gated"))
    harness.script(change("/a.txt", "hello", source_id="gated"))
    assert harness.orchestrator.sync_source("gated").processed == 1


def test_sync_all_isolates_failures(harness: Harness) -> None:
    harness.add_source("fs-1")
    harness.stores.sources.save(Source(id="odd", type="carrier-pigeon", name="odd"))
    harness.script(change("/a.txt", "hello"))

    outcomes = harness.orchestrator.sync_all()

    assert outcomes["fs-1"].processed == 1
    assert isinstance(outcomes["odd"], UnsupportedTypeError)
    assert harness.orchestrator.status("fs-1").last_status == "success"


class _FlakyVectorIndex(VectorIndex):
    def __init__(self) -> None:
        super().__init__()
        self.broken = True

    def upsert(self, source_id, document_id, chunks) -> None:
        if self.broken:
            raise RuntimeError("vector index unavailable")
        super().upsert(source_id, document_id, chunks)


def test_failed_index_write_leaves_item_for_next_sync(harness: Harness) -> None:
    flaky = _FlakyVectorIndex()
    harness.orchestrator.vector_index = flaky
    harness.add_source("fs-1")
    harness.script(change("/a.txt", "hello world"))

    first = harness.orchestrator.sync_source("fs-1")

    assert first.failed == 1
    assert harness.stores.documents.list_documents() == []
    assert harness.keyword_index.search(["hello"]) == []

    flaky.broken = False
    second = harness.orchestrator.sync_source("fs-1")

    assert second.processed == 1
    assert second.status == "success"
    assert len(harness.stores.documents.list_documents()) == 1
    assert harness.keyword_index.search(["hello"])


def test_failed_document_write_is_unindexed(harness: Harness, monkeypatch) -> None:
    def refuse(document, chunks):
        raise RuntimeError("disk full")

    monkeypatch.setattr(harness.stores.documents, "replace_document", refuse)
    harness.add_source("fs-1")
    harness.script(change("/a.txt", "hello world"))

    result = harness.orchestrator.sync_source("fs-1")

    assert result.failed == 1
    assert "disk full" in result.errors[0]
    assert harness.keyword_index.search(["hello"]) == []


class _BrokenCloseStream:
    def __init__(self, events) -> None:
        self._events = iter(events)

    def __iter__(self):
        return self

    def __next__(self):
        event = next(self._events)
        if isinstance(event, Exception):
            raise event
        return event

    def close(self) -> None:
        raise OSError("connection reset")


def test_stream_close_failure_does_not_change_outcome(harness: Harness) -> None:
    harness.add_source("fs-1")
    harness.connector.open = lambda *args, **kwargs: _BrokenCloseStream([change("/a.txt", "hello")])

    result = harness.orchestrator.sync_source("fs-1")

    assert result.status == "success"
    assert result.processed == 1


def test_stream_close_failure_does_not_mask_stream_error(harness: Harness) -> None:
    harness.add_source("fs-1")
    harness.connector.open = lambda *args, **kwargs: _BrokenCloseStream(
        [change("/a.txt", "hello"), RuntimeError("listing failed")]
    )

    with pytest.raises(SyncFailedError, match="listing failed") as info:
        harness.orchestrator.sync_source("fs-1")

    assert info.value.result.processed == 1
