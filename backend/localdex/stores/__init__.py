"""Store bundles for the configured storage backend."""

from __future__ import annotations

from dataclasses import dataclass

from localdex.core.config import Settings
from localdex.db.sqlite import SQLiteDatabase
from localdex.stores.base import (
    CredentialStore,
    DocumentStore,
    ExclusionStore,
    SchedulerStore,
    SourceStore,
    SyncStateStore,
)
from localdex.stores.memory import (
    MemoryCredentialStore,
    MemoryDocumentStore,
    MemoryExclusionStore,
    MemorySchedulerStore,
    MemorySourceStore,
    MemorySyncStateStore,
)
from localdex.stores.sqlite import (
    SQLiteCredentialStore,
    SQLiteDocumentStore,
    SQLiteExclusionStore,
    SQLiteSchedulerStore,
    SQLiteSourceStore,
    SQLiteSyncStateStore,
)


@dataclass(slots=True)
class Stores:
    sources: SourceStore
    documents: DocumentStore
    sync_states: SyncStateStore
    exclusions: ExclusionStore
    credentials: CredentialStore
    scheduler: SchedulerStore
    db: SQLiteDatabase | None = None

    def close(self) -> None:
        if self.db is not None:
            self.db.close()


def memory_stores() -> Stores:
    return Stores(
        sources=MemorySourceStore(),
        documents=MemoryDocumentStore(),
        sync_states=MemorySyncStateStore(),
        exclusions=MemoryExclusionStore(),
        credentials=MemoryCredentialStore(),
        scheduler=MemorySchedulerStore(),
    )


def sqlite_stores(db: SQLiteDatabase) -> Stores:
    db.ensure_schema()
    return Stores(
        sources=SQLiteSourceStore(db),
        documents=SQLiteDocumentStore(db),
        sync_states=SQLiteSyncStateStore(db),
        exclusions=SQLiteExclusionStore(db),
        credentials=SQLiteCredentialStore(db),
        scheduler=SQLiteSchedulerStore(db),
        db=db,
    )


def create_stores(settings: Settings) -> Stores:
    if settings.storage_backend == "memory":
        return memory_stores()
    return sqlite_stores(SQLiteDatabase(settings.db_path))


__all__ = ["Stores", "create_stores", "memory_stores", "sqlite_stores"]
