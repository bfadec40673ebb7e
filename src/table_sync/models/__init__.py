"""Data models for the table synchronization job."""

from table_sync.models.config import (
    AppConfig,
    DatabaseConfig,
    LoggingConfig,
    RetrySettings,
    SyncSettings,
    TableSyncConfig,
)
from table_sync.models.rows import ChangeRow, Scalar, ScalarKind
from table_sync.models.run_log import RunLogEntry, RunStatus, Watermark

__all__ = [
    "AppConfig",
    "ChangeRow",
    "DatabaseConfig",
    "LoggingConfig",
    "RetrySettings",
    "RunLogEntry",
    "RunStatus",
    "Scalar",
    "ScalarKind",
    "SyncSettings",
    "TableSyncConfig",
    "Watermark",
]
