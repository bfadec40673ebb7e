"""Run log persistence; the source of truth for table watermarks."""

from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy import MetaData, and_, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from table_sync.errors import ConcurrentRunError, PersistenceError, RunLogStateError
from table_sync.models.run_log import RunLogEntry, RunStatus, Watermark
from table_sync.storage.schema import DEFAULT_RUN_LOG_TABLE, build_run_log_table
from table_sync.utils.cancellation import CancellationToken
from table_sync.utils.clock import Clock, utcnow

log = structlog.stdlib.get_logger()

ABANDONED_RUN_MESSAGE = "Run abandoned: still Running after the stale run timeout"


class RunLogStore:
    """Persists one audit record per synchronization attempt per table.

    Every call opens its own connection and commits before returning; nothing
    is cached, so each read reflects the latest committed attempt.
    """

    def __init__(
        self,
        engine: Engine,
        table_name: str = DEFAULT_RUN_LOG_TABLE,
        stale_run_timeout_seconds: int = 6 * 60 * 60,
        clock: Clock = utcnow,
        cancellation: CancellationToken | None = None,
    ):
        """
        Initialize the run log store.

        Args:
            engine: Engine of the database holding the run log table
            table_name: Name of the run log table
            stale_run_timeout_seconds: Age after which a Running entry counts as abandoned
            clock: Returns the current naive UTC time
            cancellation: Optional token checked before every store call
        """
        self._engine = engine
        self._table = build_run_log_table(MetaData(), table_name)
        self._stale_after = timedelta(seconds=stale_run_timeout_seconds)
        self._clock = clock
        self._cancellation = cancellation

    @property
    def table(self):
        return self._table

    def _check_cancelled(self) -> None:
        if self._cancellation is not None:
            self._cancellation.raise_if_cancelled()

    def get_last_run(self, table_name: str) -> Watermark:
        """
        Return the watermark of the most recent successful run for a table.

        DryRun and Failed attempts never advance the watermark.

        Raises:
            PersistenceError: If the run log cannot be read
        """
        self._check_cancelled()
        t = self._table
        query = (
            select(t.c.last_run_at, t.c.last_processed_id, t.c.resume_after_id)
            .where(and_(t.c.table_name == table_name, t.c.status == RunStatus.SUCCESS.value))
            .order_by(t.c.completed_at.desc(), t.c.run_id.desc())
            .limit(1)
        )

        try:
            with self._engine.connect() as conn:
                row = conn.execute(query).first()
        except SQLAlchemyError as e:
            log.error("get_last_run_failed", table_name=table_name, error=str(e))
            raise PersistenceError(f"Failed to read last run for {table_name}: {e}") from e

        if row is None:
            log.info("no_previous_successful_run", table_name=table_name)
            return Watermark.empty()

        watermark = Watermark(
            last_run_at=row.last_run_at,
            last_processed_id=row.last_processed_id,
            resume_after_id=row.resume_after_id,
        )
        log.info(
            "last_run_loaded",
            table_name=table_name,
            last_run_at=watermark.last_run_at,
            last_processed_id=watermark.last_processed_id,
            resume_after_id=watermark.resume_after_id,
        )
        return watermark

    def start_run(self, table_name: str) -> int:
        """
        Create a Running entry for a table and return its run id.

        A Running entry younger than the stale run timeout blocks the new run;
        older ones are closed as Failed first.

        Raises:
            ConcurrentRunError: If another run for the table is in progress
            PersistenceError: If the run log cannot be written
        """
        self._check_cancelled()
        t = self._table
        now = self._clock()

        try:
            with self._engine.begin() as conn:
                running = conn.execute(
                    select(t.c.run_id, t.c.started_at).where(
                        and_(t.c.table_name == table_name, t.c.status == RunStatus.RUNNING.value)
                    )
                ).all()

                for other in running:
                    if now - other.started_at < self._stale_after:
                        raise ConcurrentRunError(
                            f"Run {other.run_id} for {table_name} is still Running "
                            f"(started {other.started_at.isoformat()})"
                        )
                    conn.execute(
                        update(t)
                        .where(t.c.run_id == other.run_id)
                        .values(
                            status=RunStatus.FAILED.value,
                            completed_at=now,
                            error_message=ABANDONED_RUN_MESSAGE,
                        )
                    )
                    log.warning(
                        "abandoned_run_closed",
                        table_name=table_name,
                        abandoned_run_id=other.run_id,
                        started_at=other.started_at,
                    )

                result = conn.execute(
                    insert(t).values(
                        table_name=table_name,
                        started_at=now,
                        status=RunStatus.RUNNING.value,
                        records_inserted=0,
                        records_updated=0,
                        records_scanned=0,
                    )
                )
                run_id = int(result.inserted_primary_key[0])
        except SQLAlchemyError as e:
            log.error("start_run_failed", table_name=table_name, error=str(e))
            raise PersistenceError(f"Failed to start run for {table_name}: {e}") from e

        log.info("run_started", table_name=table_name, run_id=run_id)
        return run_id

    def complete_run(
        self,
        run_id: int,
        table_name: str,
        watermark: Watermark,
        inserted: int,
        updated: int,
        scanned: int,
        status: RunStatus,
        error: str | None = None,
    ) -> None:
        """
        Close a Running entry with a terminal status and its metrics.

        Raises:
            ValueError: If `status` is not terminal
            RunLogStateError: If the run is unknown or was already completed
            PersistenceError: If the run log cannot be written
        """
        if not status.is_terminal:
            raise ValueError(f"complete_run requires a terminal status, got {status.value}")

        # a Failed completion is how a cancelled attempt gets recorded
        if status is not RunStatus.FAILED:
            self._check_cancelled()
        t = self._table
        values: dict[str, Any] = {
            "completed_at": self._clock(),
            "last_run_at": watermark.last_run_at,
            "last_processed_id": watermark.last_processed_id,
            "resume_after_id": watermark.resume_after_id,
            "records_inserted": inserted,
            "records_updated": updated,
            "records_scanned": scanned,
            "status": status.value,
            "error_message": error,
        }

        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    update(t)
                    .where(and_(t.c.run_id == run_id, t.c.status == RunStatus.RUNNING.value))
                    .values(**values)
                )
                if result.rowcount == 0:
                    raise RunLogStateError(
                        f"Run {run_id} for {table_name} is not Running and cannot be completed"
                    )
        except SQLAlchemyError as e:
            log.error("complete_run_failed", table_name=table_name, run_id=run_id, error=str(e))
            raise PersistenceError(f"Failed to complete run {run_id} for {table_name}: {e}") from e

        log.info(
            "run_completed",
            table_name=table_name,
            run_id=run_id,
            status=status.value,
            records_scanned=scanned,
            records_inserted=inserted,
            records_updated=updated,
            last_run_at=watermark.last_run_at,
            last_processed_id=watermark.last_processed_id,
        )

    def get_run(self, run_id: int) -> RunLogEntry | None:
        """Return a single run log entry, or None if it does not exist."""
        t = self._table
        try:
            with self._engine.connect() as conn:
                row = conn.execute(select(t).where(t.c.run_id == run_id)).mappings().first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read run {run_id}: {e}") from e
        return RunLogEntry(**row) if row is not None else None

    def recent_runs(self, table_name: str, limit: int = 10) -> list[RunLogEntry]:
        """Return the most recent run log entries for a table, newest first."""
        t = self._table
        query = (
            select(t)
            .where(t.c.table_name == table_name)
            .order_by(t.c.run_id.desc())
            .limit(limit)
        )
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read run history for {table_name}: {e}") from e
        return [RunLogEntry(**row) for row in rows]

