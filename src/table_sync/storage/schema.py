"""Persisted schema of the run log."""

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.dialects import mssql
from sqlalchemy.engine import Engine

DEFAULT_RUN_LOG_TABLE = "sync_run_log"

# SQL Server DATETIME rounds to about 3ms, which can move a stored watermark past a real change
Timestamp = DateTime().with_variant(mssql.DATETIME2(), "mssql")


def build_run_log_table(metadata: MetaData, name: str = DEFAULT_RUN_LOG_TABLE) -> Table:
    """Define the run log table on `metadata`."""
    return Table(
        name,
        metadata,
        Column("run_id", Integer, primary_key=True, autoincrement=True),
        Column("table_name", String(256), nullable=False),
        Column("started_at", Timestamp, nullable=False),
        Column("completed_at", Timestamp, nullable=True),
        Column("last_run_at", Timestamp, nullable=True),
        Column("last_processed_id", BigInteger, nullable=True),
        Column("resume_after_id", BigInteger, nullable=True),
        Column("records_inserted", Integer, nullable=False, default=0),
        Column("records_updated", Integer, nullable=False, default=0),
        Column("records_scanned", Integer, nullable=False, default=0),
        Column("status", String(16), nullable=False),
        Column("error_message", Text, nullable=True),
        Index(f"ix_{name}_table_status", "table_name", "status"),
    )


def ensure_run_log_schema(engine: Engine, name: str = DEFAULT_RUN_LOG_TABLE) -> Table:
    """Create the run log table if it does not exist and return its definition."""
    metadata = MetaData()
    table = build_run_log_table(metadata, name)
    metadata.create_all(engine, checkfirst=True)
    return table
