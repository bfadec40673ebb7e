"""Database plumbing: engines, reflection and the run log schema."""

from table_sync.storage.database import check_connection, create_engine_for, reflect_table
from table_sync.storage.schema import build_run_log_table, ensure_run_log_schema

__all__ = [
    "build_run_log_table",
    "check_connection",
    "create_engine_for",
    "ensure_run_log_schema",
    "reflect_table",
]
