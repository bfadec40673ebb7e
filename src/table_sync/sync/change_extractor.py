"""Change detection against the remote source table."""

from datetime import datetime, timedelta

import structlog
from sqlalchemy import Table, and_, case, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from table_sync.errors import ExtractionError
from table_sync.models.config import TableSyncConfig
from table_sync.models.rows import ChangeRow
from table_sync.models.run_log import Watermark
from table_sync.storage.database import reflect_table
from table_sync.sync.models import FetchResult, integer_key
from table_sync.utils.cancellation import CancellationToken
from table_sync.utils.clock import Clock, utcnow

log = structlog.stdlib.get_logger()

DEFAULT_FALLBACK_WINDOW = timedelta(days=30)


def change_timestamp_expression(table: Table, config: TableSyncConfig):
    """SQL expression for the greatest non-null of the create and modify columns."""
    created = table.c[config.create_date_column]
    modified = table.c[config.modify_date_column]
    return case(
        (modified.is_(None), created),
        (created.is_(None), modified),
        (created > modified, created),
        else_=modified,
    )


class ChangeExtractor:
    """Reads source rows created or modified after a watermark."""

    def __init__(
        self,
        engine: Engine,
        fallback_window: timedelta = DEFAULT_FALLBACK_WINDOW,
        clock: Clock = utcnow,
        cancellation: CancellationToken | None = None,
    ):
        """
        Initialize the change extractor.

        Args:
            engine: Engine through which the source table is reachable
            fallback_window: Lookback used when the table has no watermark yet
            clock: Returns the current naive UTC time
            cancellation: Optional token checked before querying
        """
        self._engine = engine
        self._fallback_window = fallback_window
        self._clock = clock
        self._cancellation = cancellation

    def since_for(self, watermark: Watermark) -> datetime:
        """Lower bound of the change window for a watermark."""
        if watermark.last_run_at is not None:
            return watermark.last_run_at
        return self._clock() - self._fallback_window

    def fetch(self, table: TableSyncConfig, watermark: Watermark, batch_size: int) -> FetchResult:
        """
        Fetch up to `batch_size` rows changed after the watermark.

        Rows come back ordered by change timestamp, then primary key, both
        ascending, so the last row of a batch carries the watermark to resume
        from. A row whose change timestamp equals the watermark is included
        only when its primary key is greater than `resume_after_id`. The
        result also carries the largest integer key of the batch, which the
        run reports as `last_processed_id`.

        Args:
            table: Table configuration
            watermark: Progress recorded by the last successful run
            batch_size: Maximum number of rows to return

        Returns:
            FetchResult with the changed rows

        Raises:
            ExtractionError: If the source query fails or returns malformed rows
        """
        if self._cancellation is not None:
            self._cancellation.raise_if_cancelled()

        since = self.since_for(watermark)
        log.info(
            "fetching_changes",
            table_name=table.name,
            since=since,
            resume_after_id=watermark.resume_after_id,
            fallback_window=watermark.last_run_at is None,
            batch_size=batch_size,
        )

        try:
            with self._engine.connect() as conn:
                source = reflect_table(conn, table.name, table.source_schema)
                self._check_columns(source, table)
                query = self._build_query(source, table, watermark, since, batch_size)
                records = conn.execute(query).mappings().all()
        except NoSuchTableError as e:
            raise ExtractionError(f"Source table {table.name} does not exist") from e
        except SQLAlchemyError as e:
            log.error("fetch_changes_failed", table_name=table.name, error=str(e))
            raise ExtractionError(f"Failed to query source table {table.name}: {e}") from e

        try:
            rows = [ChangeRow.from_mapping(record) for record in records]
        except TypeError as e:
            raise ExtractionError(f"Unsupported value in source table {table.name}: {e}") from e

        self._validate_rows(rows, table)

        result = FetchResult(rows=rows, since=since, batch_size=batch_size)
        if rows:
            last = rows[-1]
            result.last_change_at = last.change_timestamp(
                table.create_date_column, table.modify_date_column
            )
            result.last_key = last.key(table.primary_key)
            ids = [integer_key(row.key(table.primary_key)) for row in rows]
            result.highest_id = max((key for key in ids if key is not None), default=None)

        log.info(
            "changes_fetched",
            table_name=table.name,
            records_scanned=result.scanned,
            has_more=result.has_more,
        )
        return result

    def _check_columns(self, source: Table, table: TableSyncConfig) -> None:
        missing = [
            column
            for column in (table.primary_key, table.create_date_column, table.modify_date_column)
            if column not in source.c
        ]
        if missing:
            raise ExtractionError(
                f"Source table {table.name} is missing configured columns: {', '.join(missing)}"
            )

    def _build_query(
        self,
        source: Table,
        table: TableSyncConfig,
        watermark: Watermark,
        since: datetime,
        batch_size: int,
    ):
        changed_at = change_timestamp_expression(source, table)
        key = source.c[table.primary_key]

        predicate = changed_at > since
        if watermark.last_run_at is not None and watermark.resume_after_id is not None:
            predicate = or_(
                predicate,
                and_(changed_at == since, key > watermark.resume_after_id),
            )

        return (
            select(source)
            .where(predicate)
            .order_by(changed_at.asc(), key.asc())
            .limit(batch_size)
        )

    def _validate_rows(self, rows: list[ChangeRow], table: TableSyncConfig) -> None:
        if not rows:
            return

        expected = rows[0].columns
        for row in rows:
            if row.columns != expected:
                raise ExtractionError(
                    f"Rows from {table.name} do not share a column set: "
                    f"{list(expected)} != {list(row.columns)}"
                )
            key = row.get(table.primary_key)
            if key is None or key.is_null:
                raise ExtractionError(f"Row from {table.name} has no {table.primary_key} value")
