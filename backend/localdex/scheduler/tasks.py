"""Built-in scheduled tasks."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed

from localdex.auth.refresh import TokenRefresher
from localdex.core.errors import LocaldexError, SyncInProgressError, TaskFailedError
from localdex.core.logging import get_logger
from localdex.models.scheduling import TASK_DOCUMENT_SYNC, TASK_OAUTH_REFRESH
from localdex.stores.base import CredentialStore, SourceStore
from localdex.sync.orchestrator import STATUS_CANCELLED, STATUS_PARTIAL, SyncOrchestrator
from localdex.utils.time import utc_now

logger = get_logger(__name__)


class OAuthRefreshTask:
    """Refresh every expired OAuth token that carries a refresh token."""

    id = TASK_OAUTH_REFRESH
    name = "OAuth Token Refresh"

    def __init__(
        self,
        credential_store: CredentialStore,
        refresher: TokenRefresher,
        source_store: SourceStore,
    ) -> None:
        self.credential_store = credential_store
        self.refresher = refresher
        self.source_store = source_store

    def run(self, cancel: threading.Event) -> int:
        now = utc_now()
        pending = [item for item in self.credential_store.list() if item.needs_refresh(now)]
        refreshed = 0
        failures: list[str] = []
        attempted = 0
        for credentials in pending:
            if cancel.is_set():
                break
            attempted += 1
            try:
                source = self.source_store.get(credentials.source_id)
                credentials.oauth = self.refresher.refresh(credentials, source)
                credentials.updated_at = utc_now()
                self.credential_store.save(credentials)
            except LocaldexError as exc:
                logger.warning("Token refresh failed for source %s: %s", credentials.source_id, exc)
                failures.append(f"{credentials.source_id}: {exc}")
                continue
            except Exception as exc:
                logger.exception("Token refresh for source %s raised", credentials.source_id)
                failures.append(f"{credentials.source_id}: {exc.__class__.__name__}: {exc}")
                continue
            refreshed += 1

        if attempted < len(pending):
            raise TaskFailedError(
                f"cancelled after {attempted} of {len(pending)} token refreshes", items_processed=refreshed
            )

        if failures:
            raise TaskFailedError(
                f"{len(failures)} of {len(pending)} token refreshes failed: " + "; ".join(failures),
                items_processed=refreshed,
            )
        return refreshed


class DocumentSyncTask:
    """Sync every source on a bounded pool."""

    id = TASK_DOCUMENT_SYNC
    name = "Document Sync"

    def __init__(self, orchestrator: SyncOrchestrator, source_store: SourceStore, concurrency: int = 2) -> None:
        self.orchestrator = orchestrator
        self.source_store = source_store
        self.concurrency = max(1, concurrency)

    def run(self, cancel: threading.Event) -> int:
        sources = self.source_store.list()
        items = 0
        skipped = 0
        failures: list[str] = []
        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="localdex-sync") as pool:
            futures = {pool.submit(self.orchestrator.sync_source, source.id, cancel): source.id for source in sources}
            for future in as_completed(futures):
                source_id = futures[future]
                try:
                    result = future.result()
                except SyncInProgressError:
                    skipped += 1
                    continue
                except LocaldexError as exc:
                    failures.append(f"{source_id}: {exc}")
                    continue
                items += result.processed + result.deleted
                if result.status == STATUS_PARTIAL:
                    failures.append(f"{source_id}: {result.failed} items failed")
                elif result.status == STATUS_CANCELLED:
                    failures.append(f"{source_id}: cancelled")

        if skipped:
            logger.info("Skipped %d sources with a sync already running", skipped)
        if failures:
            raise TaskFailedError(
                f"{len(failures)} of {len(sources)} sources failed: " + "; ".join(sorted(failures)),
                items_processed=items,
            )
        return items


__all__ = ["OAuthRefreshTask", "DocumentSyncTask"]
