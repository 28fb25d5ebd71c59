"""FastAPI application setup for localdex."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from localdex.api import dependencies as deps
from localdex.api.routes_admin import router as admin_router
from localdex.api.routes_scheduler import router as scheduler_router
from localdex.api.routes_search import router as search_router
from localdex.api.routes_sources import router as sources_router
from localdex.core.errors import (
    AlreadyExistsError,
    AuthError,
    ConnectorError,
    InvalidInputError,
    LocaldexError,
    NotFoundError,
    NotImplementedFeatureError,
    ServiceUnavailableError,
    SyncFailedError,
    SyncInProgressError,
    UnsupportedTypeError,
)
from localdex.core.logging import configure_logging, get_logger
from localdex.core.metrics import REQUEST_COUNT

configure_logging()
logger = get_logger(__name__)

# Checked in order; subclasses before their bases.
_STATUS_CODES: list[tuple[type[LocaldexError], int]] = [
    (NotFoundError, 404),
    (AlreadyExistsError, 409),
    (SyncInProgressError, 409),
    (InvalidInputError, 400),
    (UnsupportedTypeError, 400),
    (NotImplementedFeatureError, 501),
    (AuthError, 401),
    (ServiceUnavailableError, 503),
    (ConnectorError, 502),
    (SyncFailedError, 502),
]

app = FastAPI(
    title="localdex",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5174",
        "http://localhost:5174",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sources_router, prefix="", tags=["sources"])
app.include_router(search_router, prefix="", tags=["search"])
app.include_router(scheduler_router, prefix="", tags=["scheduler"])
app.include_router(admin_router, prefix="", tags=["admin"])


def status_for(exc: LocaldexError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


@app.exception_handler(LocaldexError)
async def handle_localdex_error(request: Request, exc: LocaldexError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.__class__.__name__, "detail": str(exc)},
    )


@app.middleware("http")
async def count_requests(request: Request, call_next):
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    REQUEST_COUNT.labels(endpoint=endpoint, method=request.method, status=str(response.status_code)).inc()
    return response


@app.on_event("startup")
async def startup() -> None:
    """Load indexes and start background work."""
    settings = deps.get_app_settings()
    deps.get_stores()
    deps.get_keyword_index()
    deps.get_vector_index()
    service = deps.get_source_service()
    if settings.scheduler_enabled:
        deps.get_scheduler().start()
    watcher = deps.get_watcher()
    if watcher is not None:
        for source in service.list_sources():
            service.watch(source)
        watcher.start()


@app.on_event("shutdown")
async def shutdown() -> None:
    deps.shutdown()
