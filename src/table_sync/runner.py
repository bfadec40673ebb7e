"""Process entry point: load configuration, wire components, run one sync cycle.

Designed to be run on a schedule (e.g., via cron, a Windows task or Airflow).

Usage:
    table-sync [--config CONFIG_PATH] [--dry-run] [--table NAME ...] [--json]

Exit codes:
    0: The cycle completed (individual tables may still have failed)
    1: The run log database could not be reached or prepared
    2: Configuration error, no table was processed
    130: Cancelled by a signal
"""

import argparse
import signal
import sys
from datetime import timedelta
from typing import Sequence

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from table_sync.errors import (
    ConfigurationError,
    ConnectivityError,
    OperationCancelledError,
    PersistenceError,
)
from table_sync.models.config import AppConfig
from table_sync.storage.database import check_connection, create_engine_for
from table_sync.storage.schema import ensure_run_log_schema
from table_sync.sync.change_extractor import ChangeExtractor
from table_sync.sync.merge_executor import MergeExecutor
from table_sync.sync.models import CycleReport
from table_sync.sync.orchestrator import SyncOrchestrator
from table_sync.sync.run_log_store import RunLogStore
from table_sync.utils.cancellation import CancellationToken
from table_sync.utils.config_loader import ConfigLoader
from table_sync.utils.logging_config import configure_logging_from
from table_sync.utils.retry import RetryPolicy

log = structlog.stdlib.get_logger()

EXIT_OK = 0
EXIT_STARTUP_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_CANCELLED = 130


def select_tables(config: AppConfig, table_names: Sequence[str] | None) -> AppConfig:
    """
    Restrict the configured table list to `table_names`, keeping configured order.

    Raises:
        ConfigurationError: If a requested table is not configured
    """
    if not table_names:
        return config

    configured = {table.name for table in config.sync.tables}
    unknown = [name for name in table_names if name not in configured]
    if unknown:
        raise ConfigurationError(f"Tables not found in configuration: {', '.join(unknown)}")

    wanted = set(table_names)
    tables = [table for table in config.sync.tables if table.name in wanted]
    return config.model_copy(update={"sync": config.sync.model_copy(update={"tables": tables})})


class SyncApplication:
    """Owns the engines and components for one process run."""

    def __init__(self, config: AppConfig, cancellation: CancellationToken | None = None):
        self.config = config
        self.cancellation = cancellation or CancellationToken()

        settings = config.sync
        database = config.database
        timeout = settings.command_timeout_seconds

        self.source_engine: Engine = create_engine_for(database.source_url, timeout)
        self.destination_engine: Engine = (
            self.source_engine
            if database.destination_url == database.source_url
            else create_engine_for(database.destination_url, timeout)
        )
        run_log_url = database.effective_run_log_url
        if run_log_url == database.destination_url:
            self.run_log_engine: Engine = self.destination_engine
        else:
            self.run_log_engine = create_engine_for(run_log_url, timeout)

        self.run_log = RunLogStore(
            self.run_log_engine,
            table_name=database.run_log_table,
            stale_run_timeout_seconds=settings.stale_run_timeout_seconds,
            cancellation=self.cancellation,
        )
        self.extractor = ChangeExtractor(
            self.source_engine,
            fallback_window=timedelta(days=settings.fallback_window_days),
            cancellation=self.cancellation,
        )
        self.merge_executor = MergeExecutor(self.destination_engine, cancellation=self.cancellation)
        self.orchestrator = SyncOrchestrator(
            settings,
            run_log=self.run_log,
            extractor=self.extractor,
            merge_executor=self.merge_executor,
            cancellation=self.cancellation,
        )

    def prepare(self) -> None:
        """
        Make sure the run log database is reachable and its table exists.

        Raises:
            ConnectivityError: If the run log database stays unreachable after retries
            PersistenceError: If the run log table cannot be created
        """
        retry = RetryPolicy.from_settings(
            self.config.sync.retry,
            give_up_on=(OperationCancelledError,),
            cancellation=self.cancellation,
        )
        retry.execute(
            lambda: check_connection(self.run_log_engine, "run_log"),
            description="check_run_log_connection",
        )
        try:
            ensure_run_log_schema(self.run_log_engine, self.config.database.run_log_table)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to prepare run log table: {e}") from e

    def run(self) -> CycleReport:
        self.prepare()
        return self.orchestrator.run_cycle()

    def close(self) -> None:
        for engine in {self.source_engine, self.destination_engine, self.run_log_engine}:
            engine.dispose()


def perform_sync(
    config_path: str | None = None,
    dry_run: bool | None = None,
    tables: Sequence[str] | None = None,
    cancellation: CancellationToken | None = None,
) -> CycleReport:
    """
    Load configuration and run one synchronization cycle.

    Args:
        config_path: Optional path to configuration file
        dry_run: Overrides the configured dry-run flag when not None
        tables: Optional subset of configured table names to synchronize
        cancellation: Optional token stopping the cycle early

    Returns:
        CycleReport with one result per table

    Raises:
        ConfigurationError: Before any table is processed, if configuration is invalid
    """
    config_loader = ConfigLoader()
    config = config_loader.load_config(config_path)
    configure_logging_from(config.logging)
    config_loader.validate_config(config)

    config = select_tables(config, tables)
    if dry_run is not None:
        config = config.model_copy(
            update={"sync": config.sync.model_copy(update={"dry_run": dry_run})}
        )

    log.info(
        "table_sync_starting",
        dry_run=config.sync.dry_run,
        batch_size=config.sync.batch_size,
        command_timeout_seconds=config.sync.command_timeout_seconds,
        linked_server=config.database.linked_server_name or None,
        tables=[table.name for table in config.sync.tables],
    )

    app = SyncApplication(config, cancellation)
    try:
        return app.run()
    finally:
        app.close()


def print_summary(report: CycleReport) -> None:
    """Print a human readable summary of a cycle."""
    print("\n" + "=" * 60)
    print("SYNCHRONIZATION SUMMARY" + (" (DRY RUN)" if report.dry_run else ""))
    print("=" * 60)

    for result in report.results:
        marker = "✓" if result.success else "✗"
        print(
            f"{marker} {result.table_name}: {result.status.value} "
            f"scanned={result.records_scanned} inserted={result.records_inserted} "
            f"updated={result.records_updated} attempts={result.attempts}"
        )
        if result.error:
            print(f"    Error: {result.error}")
        if result.has_more:
            print("    More changes are waiting beyond the last batch")

    print(f"Tables succeeded: {len(report.succeeded)}, failed: {len(report.failed)}")
    print(f"Duration: {report.duration_seconds:.2f} seconds")
    print("=" * 60)


def install_signal_handlers(cancellation: CancellationToken) -> None:
    def _handler(signum, frame):
        cancellation.cancel(reason=signal.Signals(signum).name)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the scheduled synchronization job."""
    parser = argparse.ArgumentParser(
        description="Incrementally synchronize configured tables across a database link"
    )
    parser.add_argument("--config", type=str, help="Path to configuration file", default=None)
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Compute changes without writing to the destination",
    )
    parser.add_argument(
        "--table",
        action="append",
        dest="tables",
        default=None,
        help="Synchronize only this table (repeatable)",
    )
    parser.add_argument("--json", action="store_true", help="Print the cycle report as JSON")

    args = parser.parse_args(argv)

    cancellation = CancellationToken()
    install_signal_handlers(cancellation)

    try:
        report = perform_sync(
            config_path=args.config,
            dry_run=args.dry_run,
            tables=args.tables,
            cancellation=cancellation,
        )
    except ConfigurationError as e:
        log.error("configuration_error", error=str(e))
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR
    except OperationCancelledError as e:
        log.warning("sync_cancelled", error=str(e))
        return EXIT_CANCELLED
    except (ConnectivityError, PersistenceError) as e:
        log.error("sync_startup_failed", error=str(e))
        print(f"Startup failed: {e}", file=sys.stderr)
        return EXIT_STARTUP_FAILED

    if args.json:
        print(report.model_dump_json(indent=2))
    else:
        print_summary(report)

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
