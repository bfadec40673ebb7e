"""Synchronization orchestrator driving every configured table through one cycle."""

from dataclasses import dataclass, field
from datetime import datetime

import structlog

from table_sync.errors import (
    ConcurrentRunError,
    OperationCancelledError,
    PersistenceError,
    RunLogStateError,
    classify_error,
)
from table_sync.models.config import SyncSettings, TableSyncConfig
from table_sync.models.run_log import RunStatus, Watermark
from table_sync.sync.change_extractor import ChangeExtractor
from table_sync.sync.merge_executor import MergeExecutor
from table_sync.sync.models import CycleReport, TableSyncResult
from table_sync.sync.run_log_store import RunLogStore
from table_sync.utils.cancellation import CancellationToken
from table_sync.utils.clock import Clock, utcnow
from table_sync.utils.logging_config import bind_sync_context
from table_sync.utils.retry import RetryPolicy

log = structlog.stdlib.get_logger()


@dataclass
class _CycleState:
    """Progress of one table's cycle shared across retried attempts."""

    run_id: int | None = None
    watermark_before: Watermark = field(default_factory=Watermark)
    attempts: int = 0


class SyncOrchestrator:
    """Orchestrates extraction, merge and run log updates per configured table."""

    def __init__(
        self,
        settings: SyncSettings,
        run_log: RunLogStore,
        extractor: ChangeExtractor,
        merge_executor: MergeExecutor,
        retry_policy: RetryPolicy | None = None,
        cancellation: CancellationToken | None = None,
        clock: Clock = utcnow,
    ):
        """
        Initialize the orchestrator.

        Args:
            settings: Synchronization settings, including the ordered table list
            run_log: Store recording one entry per table per cycle
            extractor: Reads changed rows from the source
            merge_executor: Applies rows to the destination
            retry_policy: Policy wrapping each table's attempt (built from settings if None)
            cancellation: Optional token stopping the cycle at the next I/O boundary
            clock: Returns the current naive UTC time
        """
        self._settings = settings
        self._run_log = run_log
        self._extractor = extractor
        self._merge_executor = merge_executor
        self._cancellation = cancellation
        self._clock = clock
        self._retry_policy = retry_policy or RetryPolicy.from_settings(
            settings.retry,
            give_up_on=(ConcurrentRunError, RunLogStateError, OperationCancelledError),
            cancellation=cancellation,
        )

        log.info(
            "sync_orchestrator_initialized",
            table_count=len(settings.tables),
            dry_run=settings.dry_run,
            batch_size=settings.batch_size,
            max_attempts=self._retry_policy.max_attempts,
        )

    def run_cycle(self) -> CycleReport:
        """
        Synchronize every configured table once, in configured order.

        A table that fails, even after exhausting its retries, is recorded as
        Failed and the cycle moves on to the next table.

        Returns:
            CycleReport with one result per table

        Raises:
            OperationCancelledError: If cancellation was requested during the cycle
        """
        start_time = self._clock()
        log.info(
            "sync_cycle_started",
            table_count=len(self._settings.tables),
            dry_run=self._settings.dry_run,
        )

        results: list[TableSyncResult] = []
        for table in self._settings.tables:
            results.append(self.sync_table(table))

        report = CycleReport(
            dry_run=self._settings.dry_run,
            start_time=start_time,
            end_time=self._clock(),
            results=results,
        )

        log.info(
            "sync_cycle_completed",
            tables_succeeded=len(report.succeeded),
            tables_failed=len(report.failed),
            duration_seconds=report.duration_seconds,
        )
        return report

    def sync_table(self, table: TableSyncConfig) -> TableSyncResult:
        """
        Run one table's cycle: start run, read watermark, fetch, merge, complete run.

        Retried attempts reuse the Running entry created by the first attempt,
        so the run log ends with exactly one terminal record for the cycle.
        An entry that is no longer Running when the attempt completes belongs
        to another process by then, so that attempt is not retried.

        Raises:
            OperationCancelledError: If cancellation was requested
        """
        state = _CycleState()
        start_time = self._clock()

        with bind_sync_context(table_name=table.name):
            log.info("sync_table_started", destination_table=table.destination_table)

            def attempt() -> TableSyncResult:
                state.attempts += 1
                return self._attempt(table, state, start_time)

            outcome = self._retry_policy.run(attempt, description=f"sync_table:{table.name}")

            if outcome.error is None and outcome.value is not None:
                return outcome.value

            error = outcome.error
            if isinstance(error, OperationCancelledError):
                self._close_failed(table, state, f"Cancelled: {error}")
                raise error

            message = str(error)
            log.error(
                "sync_table_failed",
                run_id=state.run_id,
                attempts=state.attempts,
                error_kind=classify_error(error).value,
                error=message,
            )
            self._close_failed(table, state, message)

            return TableSyncResult(
                table_name=table.name,
                run_id=state.run_id,
                status=RunStatus.FAILED,
                watermark_before=state.watermark_before,
                watermark_after=state.watermark_before,
                attempts=state.attempts,
                error=message,
                error_kind=classify_error(error),
                start_time=start_time,
                end_time=self._clock(),
            )

    def _attempt(
        self, table: TableSyncConfig, state: _CycleState, start_time: datetime
    ) -> TableSyncResult:
        settings = self._settings
        if self._cancellation is not None:
            self._cancellation.raise_if_cancelled()

        if state.run_id is None:
            state.run_id = self._run_log.start_run(table.name)

        with bind_sync_context(run_id=state.run_id, attempt=state.attempts):
            watermark = self._run_log.get_last_run(table.name)
            state.watermark_before = watermark

            scanned = inserted = updated = 0
            current = watermark
            has_more = False

            for batch_number in range(1, settings.max_batches_per_run + 1):
                fetched = self._extractor.fetch(table, current, settings.batch_size)
                merged = self._merge_executor.apply(
                    table.destination_table,
                    table.primary_key,
                    fetched.rows,
                    dry_run=settings.dry_run,
                    schema=table.destination_schema,
                )

                scanned += fetched.scanned
                inserted += merged.inserted
                updated += merged.updated
                applied_id = current.last_processed_id if batch_number > 1 else None
                current = fetched.next_watermark(current, applied_id=applied_id)
                has_more = fetched.has_more

                log.info(
                    "batch_processed",
                    batch_number=batch_number,
                    records_scanned=fetched.scanned,
                    records_inserted=merged.inserted,
                    records_updated=merged.updated,
                    has_more=has_more,
                )

                # a dry run never writes, so the next batch would read the same rows
                if not has_more or settings.dry_run:
                    break

            status = RunStatus.DRY_RUN if settings.dry_run else RunStatus.SUCCESS
            self._run_log.complete_run(
                state.run_id,
                table.name,
                current,
                inserted=inserted,
                updated=updated,
                scanned=scanned,
                status=status,
            )

            if has_more:
                log.warning("sync_backlog_remaining", batch_size=settings.batch_size)

            log.info(
                "sync_table_completed",
                status=status.value,
                records_scanned=scanned,
                records_inserted=inserted,
                records_updated=updated,
            )

            return TableSyncResult(
                table_name=table.name,
                run_id=state.run_id,
                status=status,
                records_scanned=scanned,
                records_inserted=inserted,
                records_updated=updated,
                watermark_before=watermark,
                watermark_after=current,
                attempts=state.attempts,
                has_more=has_more,
                start_time=start_time,
                end_time=self._clock(),
            )

    def _close_failed(self, table: TableSyncConfig, state: _CycleState, message: str) -> None:
        """Record the Failed terminal status; a run log failure is logged, not raised."""
        if state.run_id is None:
            return

        try:
            self._run_log.complete_run(
                state.run_id,
                table.name,
                state.watermark_before,
                inserted=0,
                updated=0,
                scanned=0,
                status=RunStatus.FAILED,
                error=message,
            )
        except (PersistenceError, RunLogStateError) as e:
            log.error(
                "run_log_unwritable",
                run_id=state.run_id,
                error=str(e),
                original_error=message,
            )
