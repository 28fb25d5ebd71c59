"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "ldx_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

SYNC_ITEMS = Counter(
    "ldx_sync_items_total",
    "Document changes seen by the sync orchestrator",
    labelnames=("source_type", "outcome"),
    registry=REGISTRY,
)

SYNC_DURATION = Histogram(
    "ldx_sync_duration_seconds",
    "Duration of a single source sync run",
    labelnames=("source_type", "status"),
    registry=REGISTRY,
)

TASK_RUNS = Counter(
    "ldx_task_runs_total",
    "Scheduled task executions",
    labelnames=("task", "outcome"),
    registry=REGISTRY,
)

SEARCH_LATENCY = Histogram(
    "ldx_search_latency_seconds",
    "Latency of search queries",
    labelnames=("mode",),
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "ldx_index_chunks",
    "Number of chunks held by the keyword index",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "SYNC_ITEMS",
    "SYNC_DURATION",
    "TASK_RUNS",
    "SEARCH_LATENCY",
    "INDEX_SIZE",
    "metrics_response",
]
