"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from localdex.auth.refresh import OAuthTokenRefresher
from localdex.connectors.filesystem import FILESYSTEM_TYPE, filesystem_builder
from localdex.connectors.registry import ConnectorRegistry
from localdex.core.config import Settings, get_settings
from localdex.core.logging import get_logger
from localdex.ingest.embeddings import EmbeddingProvider, create_embedding_provider
from localdex.ingest.pipeline import IngestPipeline
from localdex.ingest.watcher import Watcher
from localdex.retrieval import KeywordIndex, SearchEngine, VectorIndex
from localdex.retrieval.llm import create_llm_provider
from localdex.scheduler import DocumentSyncTask, OAuthRefreshTask, Scheduler
from localdex.services.sources import SourceService
from localdex.stores import Stores, create_stores
from localdex.sync import SyncOrchestrator

logger = get_logger(__name__)

_STORES: Stores | None = None
_CONNECTORS: ConnectorRegistry | None = None
_EMBEDDER: EmbeddingProvider | None = None
_EMBEDDER_READY = False
_KEYWORD_INDEX: KeywordIndex | None = None
_VECTOR_INDEX: VectorIndex | None = None
_ORCHESTRATOR: SyncOrchestrator | None = None
_SEARCH_ENGINE: SearchEngine | None = None
_SCHEDULER: Scheduler | None = None
_WATCHER: Watcher | None = None
_SOURCE_SERVICE: SourceService | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_stores() -> Stores:
    global _STORES
    if _STORES is None:
        _STORES = create_stores(get_app_settings())
    return _STORES


def get_connector_registry() -> ConnectorRegistry:
    global _CONNECTORS
    if _CONNECTORS is None:
        settings = get_app_settings()
        registry = ConnectorRegistry()
        registry.register(
            FILESYSTEM_TYPE,
            filesystem_builder(settings.fs_include, settings.fs_exclude, settings.fs_checkpoint_every),
        )
        _CONNECTORS = registry
    return _CONNECTORS


def get_embedder() -> EmbeddingProvider | None:
    global _EMBEDDER, _EMBEDDER_READY
    if not _EMBEDDER_READY:
        _EMBEDDER = create_embedding_provider(get_app_settings())
        _EMBEDDER_READY = True
    return _EMBEDDER


def get_keyword_index() -> KeywordIndex:
    global _KEYWORD_INDEX
    if _KEYWORD_INDEX is None:
        index = KeywordIndex()
        index.load(get_stores().documents)
        _KEYWORD_INDEX = index
    return _KEYWORD_INDEX


def get_vector_index() -> VectorIndex | None:
    global _VECTOR_INDEX
    if _VECTOR_INDEX is None and get_embedder() is not None:
        index = VectorIndex()
        index.load(get_stores().documents)
        _VECTOR_INDEX = index
    return _VECTOR_INDEX


def get_orchestrator() -> SyncOrchestrator:
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        stores = get_stores()
        _ORCHESTRATOR = SyncOrchestrator(
            sources=stores.sources,
            documents=stores.documents,
            sync_states=stores.sync_states,
            exclusions=stores.exclusions,
            credentials=stores.credentials,
            connectors=get_connector_registry(),
            pipeline=IngestPipeline.from_settings(get_app_settings(), embedder=get_embedder()),
            keyword_index=get_keyword_index(),
            vector_index=get_vector_index(),
        )
    return _ORCHESTRATOR


def get_search_engine() -> SearchEngine:
    global _SEARCH_ENGINE
    if _SEARCH_ENGINE is None:
        settings = get_app_settings()
        stores = get_stores()
        _SEARCH_ENGINE = SearchEngine(
            documents=stores.documents,
            sources=stores.sources,
            credentials=stores.credentials,
            keyword_index=get_keyword_index(),
            vector_index=get_vector_index(),
            embedder=get_embedder(),
            llm=create_llm_provider(settings),
            keyword_weight=settings.keyword_weight,
            semantic_weight=settings.semantic_weight,
            semantic_top_k=settings.semantic_top_k,
            max_query_variants=settings.max_query_variants,
            llm_fallback=settings.llm_fallback,
        )
    return _SEARCH_ENGINE


def get_scheduler() -> Scheduler:
    global _SCHEDULER
    if _SCHEDULER is None:
        settings = get_app_settings()
        stores = get_stores()
        scheduler = Scheduler(
            settings.scheduler_config(),
            stores.scheduler,
            tick_seconds=settings.scheduler_tick_seconds,
            max_workers=settings.scheduler_workers,
        )
        scheduler.register(
            OAuthRefreshTask(stores.credentials, OAuthTokenRefresher(settings.oauth_clients), stores.sources)
        )
        scheduler.register(DocumentSyncTask(get_orchestrator(), stores.sources, settings.sync_concurrency))
        _SCHEDULER = scheduler
    return _SCHEDULER


def get_watcher() -> Watcher | None:
    global _WATCHER
    settings = get_app_settings()
    if _WATCHER is None and settings.watch_enabled:
        _WATCHER = Watcher(_sync_on_change, settings.watch_debounce_seconds)
    return _WATCHER


def get_source_service() -> SourceService:
    global _SOURCE_SERVICE
    if _SOURCE_SERVICE is None:
        _SOURCE_SERVICE = SourceService(
            get_stores(),
            get_connector_registry(),
            keyword_index=get_keyword_index(),
            vector_index=get_vector_index(),
            orchestrator=get_orchestrator(),
            watcher=get_watcher(),
        )
    return _SOURCE_SERVICE


def _sync_on_change(source_id: str) -> None:
    orchestrator = get_orchestrator()
    if orchestrator.is_running(source_id):
        logger.info("Sync already running for %s; change will be picked up next run", source_id)
        return
    try:
        orchestrator.sync_source(source_id)
    except Exception:
        logger.exception("Watch-triggered sync of %s failed", source_id)


def shutdown() -> None:
    """Stop background work and close storage."""
    if _WATCHER is not None:
        _WATCHER.close()
    if _SCHEDULER is not None:
        _SCHEDULER.stop(wait=True, cancel_running=True)
    if _STORES is not None:
        _STORES.close()


def reset_dependencies() -> None:
    """Drop every cached singleton; used by tests."""
    global _STORES, _CONNECTORS, _EMBEDDER, _EMBEDDER_READY, _KEYWORD_INDEX, _VECTOR_INDEX
    global _ORCHESTRATOR, _SEARCH_ENGINE, _SCHEDULER, _WATCHER, _SOURCE_SERVICE
    shutdown()
    get_app_settings.cache_clear()
    get_settings.cache_clear()
    _STORES = None
    _CONNECTORS = None
    _EMBEDDER = None
    _EMBEDDER_READY = False
    _KEYWORD_INDEX = None
    _VECTOR_INDEX = None
    _ORCHESTRATOR = None
    _SEARCH_ENGINE = None
    _SCHEDULER = None
    _WATCHER = None
    _SOURCE_SERVICE = None


__all__ = [
    "get_app_settings",
    "get_stores",
    "get_connector_registry",
    "get_embedder",
    "get_keyword_index",
    "get_vector_index",
    "get_orchestrator",
    "get_search_engine",
    "get_scheduler",
    "get_watcher",
    "get_source_service",
    "shutdown",
    "reset_dependencies",
]
