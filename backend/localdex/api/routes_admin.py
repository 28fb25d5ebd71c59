"""Administrative routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from localdex.api.dependencies import get_connector_registry, get_keyword_index
from localdex.connectors.registry import ConnectorRegistry
from localdex.core.metrics import metrics_response
from localdex.retrieval import KeywordIndex

router = APIRouter()


@router.get("/health", summary="Liveness check")
def health(index: KeywordIndex = Depends(get_keyword_index)) -> dict[str, object]:
    return {"ok": True, "chunks": index.size}


@router.get("/connectors", summary="Supported connector types")
def list_connectors(registry: ConnectorRegistry = Depends(get_connector_registry)) -> list[dict[str, object]]:
    return [
        {
            "id": item.id,
            "name": item.name,
            "description": item.description,
            "auth": str(item.auth_capability),
            "config_keys": [
                {"key": key.key, "label": key.label, "required": key.required} for key in item.config_keys
            ],
        }
        for item in registry.list_types()
    ]


@router.get("/metrics", summary="Prometheus metrics")
def get_metrics():
    return metrics_response()


__all__ = ["router"]
