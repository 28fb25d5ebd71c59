"""Source, sync and exclusion routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from localdex.api.dependencies import get_orchestrator, get_source_service
from localdex.models.dto import (
    DeleteResponse,
    ExclusionCreateRequest,
    ExclusionResponse,
    SourceCreateRequest,
    SourceResponse,
    SourceUpdateRequest,
    SyncResponse,
    SyncStatusResponse,
)
from localdex.services.sources import SourceService
from localdex.sync import SyncOrchestrator

router = APIRouter()


@router.get("/sources", response_model=list[SourceResponse], summary="List registered sources")
def list_sources(service: SourceService = Depends(get_source_service)) -> list[SourceResponse]:
    return [SourceResponse.from_source(source) for source in service.list_sources()]


@router.post("/sources", response_model=SourceResponse, status_code=201, summary="Register a new source")
def create_source(
    request: SourceCreateRequest,
    service: SourceService = Depends(get_source_service),
) -> SourceResponse:
    source = service.create_source(request.type, request.name, request.config)
    return SourceResponse.from_source(source)


@router.get("/sources/{source_id}", response_model=SourceResponse, summary="Fetch one source")
def get_source(source_id: str, service: SourceService = Depends(get_source_service)) -> SourceResponse:
    return SourceResponse.from_source(service.get_source(source_id))


@router.patch("/sources/{source_id}", response_model=SourceResponse, summary="Update an existing source")
def update_source(
    source_id: str,
    request: SourceUpdateRequest,
    service: SourceService = Depends(get_source_service),
) -> SourceResponse:
    source = service.update_source(source_id, name=request.name, config=request.config)
    return SourceResponse.from_source(source)


@router.delete("/sources/{source_id}", response_model=DeleteResponse, summary="Remove a source and its documents")
def delete_source(source_id: str, service: SourceService = Depends(get_source_service)) -> DeleteResponse:
    service.delete_source(source_id)
    return DeleteResponse(status="ok", deleted=1)


@router.post("/sources/{source_id}/sync", response_model=SyncResponse, summary="Sync a source now")
def sync_source(source_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> SyncResponse:
    return SyncResponse.from_result(orchestrator.sync_source(source_id))


@router.get("/sources/{source_id}/sync", response_model=SyncStatusResponse, summary="Live sync status")
def sync_status(source_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> SyncStatusResponse:
    return SyncStatusResponse.from_status(orchestrator.status(source_id))


@router.get(
    "/sources/{source_id}/exclusions",
    response_model=list[ExclusionResponse],
    summary="List excluded documents of a source",
)
def list_exclusions(source_id: str, service: SourceService = Depends(get_source_service)) -> list[ExclusionResponse]:
    return [ExclusionResponse.from_exclusion(item) for item in service.list_exclusions(source_id)]


@router.post(
    "/sources/{source_id}/exclusions",
    response_model=ExclusionResponse,
    status_code=201,
    summary="Exclude a document from indexing",
)
def create_exclusion(
    source_id: str,
    request: ExclusionCreateRequest,
    service: SourceService = Depends(get_source_service),
) -> ExclusionResponse:
    exclusion = service.exclude(source_id, document_id=request.document_id, uri=request.uri, reason=request.reason)
    return ExclusionResponse.from_exclusion(exclusion)


@router.delete("/exclusions/{exclusion_id}", response_model=DeleteResponse, summary="Lift an exclusion")
def delete_exclusion(exclusion_id: str, service: SourceService = Depends(get_source_service)) -> DeleteResponse:
    service.remove_exclusion(exclusion_id)
    return DeleteResponse(status="ok", deleted=1)


__all__ = ["router"]
