"""Search routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from localdex.api.dependencies import get_app_settings, get_search_engine
from localdex.core.config import Settings
from localdex.models.dto import SearchHit, SearchRequest, SearchResponse
from localdex.models.search import SearchOptions
from localdex.retrieval import SearchEngine

router = APIRouter()


@router.post("/search", response_model=SearchResponse, summary="Execute a search query")
def search(
    request: SearchRequest,
    engine: SearchEngine = Depends(get_search_engine),
    settings: Settings = Depends(get_app_settings),
) -> SearchResponse:
    options = SearchOptions(
        mode=request.mode or settings.search_mode,
        limit=request.limit or settings.default_limit,
        offset=request.offset,
        source_ids=list(request.source_ids),
    )
    results = engine.search(request.query, options)
    return SearchResponse(
        query=request.query,
        mode=options.mode,
        results=[SearchHit.from_result(result) for result in results],
    )


__all__ = ["router"]
