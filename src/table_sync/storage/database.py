"""SQLAlchemy engine construction and per-operation helpers."""

from typing import Any

import structlog
from sqlalchemy import MetaData, Table, create_engine, event, text
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import ArgumentError, NoSuchModuleError, SQLAlchemyError

from table_sync.errors import ConfigurationError, ConnectivityError

log = structlog.stdlib.get_logger()


def create_engine_for(url: str, command_timeout_seconds: int = 120, **kwargs: Any) -> Engine:
    """
    Create an engine that applies the command timeout for its dialect.

    sqlite uses it as the busy timeout, PostgreSQL as `statement_timeout` and
    SQL Server over pyodbc as the per-query timeout.

    Args:
        url: SQLAlchemy database URL
        command_timeout_seconds: Timeout applied to each database command
        **kwargs: Extra keyword arguments for `sqlalchemy.create_engine`

    Returns:
        Engine with `pool_pre_ping` enabled

    Raises:
        ConfigurationError: If the URL is malformed or its driver is not installed
    """
    try:
        parsed = make_url(url)
        backend = parsed.get_backend_name()
        driver = parsed.get_driver_name()

        connect_args: dict[str, Any] = dict(kwargs.pop("connect_args", {}))
        if backend == "sqlite":
            connect_args.setdefault("timeout", command_timeout_seconds)
        elif backend == "postgresql" and driver in ("psycopg2", "psycopg"):
            connect_args.setdefault(
                "options", f"-c statement_timeout={command_timeout_seconds * 1000}"
            )

        engine = create_engine(parsed, pool_pre_ping=True, connect_args=connect_args, **kwargs)
    except (ArgumentError, NoSuchModuleError) as e:
        raise ConfigurationError(f"Invalid database URL {url!r}: {e}") from e

    if backend == "mssql" and driver == "pyodbc":

        @event.listens_for(engine, "connect")
        def _set_query_timeout(dbapi_connection, connection_record):
            dbapi_connection.timeout = command_timeout_seconds

    log.debug(
        "engine_created",
        backend=backend,
        driver=driver,
        command_timeout_seconds=command_timeout_seconds,
    )
    return engine


def check_connection(engine: Engine, label: str) -> None:
    """
    Verify that a database answers a trivial query.

    Raises:
        ConnectivityError: If the database cannot be reached
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        log.error("database_unreachable", database=label, error=str(e))
        raise ConnectivityError(f"Cannot reach {label} database: {e}") from e

    log.info("database_reachable", database=label)


def reflect_table(conn: Connection, name: str, schema: str | None = None) -> Table:
    """
    Load a table definition from the live database.

    Raises:
        sqlalchemy.exc.NoSuchTableError: If the table does not exist
    """
    return Table(name, MetaData(), schema=schema, autoload_with=conn)
