"""Incremental source synchronisation."""

from .orchestrator import SyncOrchestrator, SyncResult, SyncStatus

__all__ = ["SyncOrchestrator", "SyncResult", "SyncStatus"]
