"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from localdex.models.entities import Exclusion, Source
from localdex.models.scheduling import ScheduledTask, TaskResult
from localdex.models.search import SearchMode, SearchResult
from localdex.sync.orchestrator import SyncResult, SyncStatus


class SourceCreateRequest(BaseModel):
    type: str = "filesystem"
    name: str
    config: dict[str, str] = Field(default_factory=dict)


class SourceUpdateRequest(BaseModel):
    name: str | None = None
    config: dict[str, str] | None = None


class SourceResponse(BaseModel):
    id: str
    type: str
    name: str
    config: dict[str, str]
    authorization_id: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_source(cls, source: Source) -> "SourceResponse":
        return cls(
            id=source.id,
            type=source.type,
            name=source.name,
            config=source.config,
            authorization_id=source.authorization_id,
            created_at=source.created_at,
            updated_at=source.updated_at,
        )


class DeleteResponse(BaseModel):
    status: str = "ok"
    deleted: int


class SyncResponse(BaseModel):
    source_id: str
    status: str
    processed: int
    unchanged: int
    excluded: int
    failed: int
    deleted: int
    cursor: str | None = None
    errors: list[str] = Field(default_factory=list)
    started_at: datetime
    ended_at: datetime | None = None

    @classmethod
    def from_result(cls, result: SyncResult) -> "SyncResponse":
        return cls(
            source_id=result.source_id,
            status=result.status,
            processed=result.processed,
            unchanged=result.unchanged,
            excluded=result.excluded,
            failed=result.failed,
            deleted=result.deleted,
            cursor=result.cursor,
            errors=result.errors,
            started_at=result.started_at,
            ended_at=result.ended_at,
        )


class SyncStatusResponse(BaseModel):
    source_id: str
    running: bool
    processed: int
    failed: int
    last_sync: datetime | None = None
    last_status: str | None = None

    @classmethod
    def from_status(cls, status: SyncStatus) -> "SyncStatusResponse":
        return cls(
            source_id=status.source_id,
            running=status.running,
            processed=status.processed,
            failed=status.failed,
            last_sync=status.last_sync,
            last_status=status.last_status,
        )


class ExclusionCreateRequest(BaseModel):
    document_id: str | None = None
    uri: str | None = None
    reason: str = ""


class ExclusionResponse(BaseModel):
    id: str
    source_id: str
    document_id: str
    uri: str
    reason: str
    excluded_at: datetime

    @classmethod
    def from_exclusion(cls, exclusion: Exclusion) -> "ExclusionResponse":
        return cls(
            id=exclusion.id,
            source_id=exclusion.source_id,
            document_id=exclusion.document_id,
            uri=exclusion.uri,
            reason=exclusion.reason,
            excluded_at=exclusion.excluded_at,
        )


class SearchRequest(BaseModel):
    query: str
    mode: SearchMode | None = None
    limit: int | None = Field(default=None, ge=1, le=500)
    offset: int = Field(default=0, ge=0)
    source_ids: list[str] = Field(default_factory=list)


class SearchHit(BaseModel):
    document_id: str
    source_id: str
    source_name: str
    uri: str
    title: str
    chunk_id: str
    position: int
    score: float
    content: str
    highlights: list[str]
    metadata: dict[str, Any]
    updated_at: datetime

    @classmethod
    def from_result(cls, result: SearchResult) -> "SearchHit":
        return cls(
            document_id=result.document.id,
            source_id=result.document.source_id,
            source_name=result.source_name,
            uri=result.document.uri,
            title=result.document.title,
            chunk_id=result.chunk.id,
            position=result.chunk.position,
            score=result.score,
            content=result.chunk.content,
            highlights=result.highlights,
            metadata=result.document.metadata,
            updated_at=result.document.updated_at,
        )


class SearchResponse(BaseModel):
    query: str
    mode: SearchMode
    results: list[SearchHit]


class TaskResultResponse(BaseModel):
    task_id: str
    started_at: datetime
    ended_at: datetime
    success: bool
    error: str
    items_processed: int

    @classmethod
    def from_result(cls, result: TaskResult) -> "TaskResultResponse":
        return cls(
            task_id=result.task_id,
            started_at=result.started_at,
            ended_at=result.ended_at,
            success=result.success,
            error=result.error,
            items_processed=result.items_processed,
        )


class TaskResponse(BaseModel):
    id: str
    name: str
    interval_seconds: float
    enabled: bool
    running: bool
    last_run: datetime | None = None
    next_run: datetime | None = None
    last_error: str = ""
    last_success: datetime | None = None
    history: list[TaskResultResponse] = Field(default_factory=list)

    @classmethod
    def from_task(cls, task: ScheduledTask, history: list[TaskResult] | None = None) -> "TaskResponse":
        return cls(
            id=task.id,
            name=task.name,
            interval_seconds=task.interval.total_seconds(),
            enabled=task.enabled,
            running=task.running,
            last_run=task.last_run,
            next_run=task.next_run,
            last_error=task.last_error,
            last_success=task.last_success,
            history=[TaskResultResponse.from_result(item) for item in history or []],
        )


class TaskRunResponse(BaseModel):
    task_id: str
    status: str


class ErrorResponse(BaseModel):
    error: str
    detail: str


__all__ = [
    "SourceCreateRequest",
    "SourceUpdateRequest",
    "SourceResponse",
    "DeleteResponse",
    "SyncResponse",
    "SyncStatusResponse",
    "ExclusionCreateRequest",
    "ExclusionResponse",
    "SearchRequest",
    "SearchHit",
    "SearchResponse",
    "TaskResultResponse",
    "TaskResponse",
    "TaskRunResponse",
    "ErrorResponse",
]
