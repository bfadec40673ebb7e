"""Synchronization components for watermark-driven incremental updates."""

from table_sync.sync.change_extractor import ChangeExtractor
from table_sync.sync.merge_executor import MergeExecutor
from table_sync.sync.models import CycleReport, FetchResult, MergeResult, TableSyncResult
from table_sync.sync.orchestrator import SyncOrchestrator
from table_sync.sync.run_log_store import RunLogStore

__all__ = [
    "ChangeExtractor",
    "CycleReport",
    "FetchResult",
    "MergeExecutor",
    "MergeResult",
    "RunLogStore",
    "SyncOrchestrator",
    "TableSyncResult",
]
