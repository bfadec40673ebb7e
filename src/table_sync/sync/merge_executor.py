"""Transactional insert-or-update of row batches into the destination."""

from collections import Counter
from typing import Any, Iterable, Sequence

import structlog
from sqlalchemy import Table, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from table_sync.errors import MergeError
from table_sync.models.rows import ChangeRow
from table_sync.storage.database import reflect_table
from table_sync.sync.models import MergeResult
from table_sync.utils.cancellation import CancellationToken

log = structlog.stdlib.get_logger()

# keep IN (...) lists well below driver parameter limits
KEY_LOOKUP_CHUNK_SIZE = 500


def _chunked(values: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def shared_columns(rows: Sequence[ChangeRow]) -> tuple[str, ...]:
    """
    Return the column set shared by every row of a batch.

    Raises:
        MergeError: If the rows have heterogeneous column sets
    """
    columns = rows[0].columns
    for row in rows[1:]:
        if set(row.columns) != set(columns):
            raise MergeError(
                f"All rows in a batch must share a column set: {list(columns)} != {list(row.columns)}"
            )
    return columns


class MergeExecutor:
    """Applies batches with upsert semantics keyed by primary key.

    A batch commits atomically or not at all. Rows whose non-key columns all
    match the destination are neither written nor counted.
    """

    def __init__(self, engine: Engine, cancellation: CancellationToken | None = None):
        """
        Initialize the merge executor.

        Args:
            engine: Engine of the destination database
            cancellation: Optional token checked before touching the destination
        """
        self._engine = engine
        self._cancellation = cancellation

    def apply(
        self,
        destination_table: str,
        primary_key: str,
        rows: Sequence[ChangeRow],
        dry_run: bool = False,
        schema: str | None = None,
    ) -> MergeResult:
        """
        Merge a batch of rows into the destination table.

        Args:
            destination_table: Name of the destination table
            primary_key: Column identifying a row
            rows: Rows sharing one column set
            dry_run: If True, compute the counts without writing anything
            schema: Optional schema of the destination table

        Returns:
            MergeResult with inserted, updated and unchanged counts

        Raises:
            MergeError: If the batch is malformed or the destination rejects it
        """
        if not rows:
            return MergeResult()

        if self._cancellation is not None:
            self._cancellation.raise_if_cancelled()

        columns = shared_columns(rows)
        if primary_key not in columns:
            raise MergeError(f"Rows for {destination_table} have no {primary_key} column")

        # later rows for the same key replace earlier ones
        staged: dict[Any, ChangeRow] = {}
        for row in rows:
            staged[row.key(primary_key)] = row

        log.info(
            "applying_merge",
            destination_table=destination_table,
            staged_rows=len(staged),
            dry_run=dry_run,
        )

        try:
            with self._engine.begin() as conn:
                table = reflect_table(conn, destination_table, schema)
                self._check_columns(table, destination_table, columns)
                existing = self._load_existing(conn, table, primary_key, columns, list(staged))
                result, inserts, updates = self._diff(staged, existing, primary_key)

                if not dry_run:
                    if inserts:
                        conn.execute(table.insert(), inserts)
                    key_column = table.c[primary_key]
                    for key, values in updates:
                        conn.execute(update(table).where(key_column == key).values(values))
        except NoSuchTableError as e:
            raise MergeError(f"Destination table {destination_table} does not exist") from e
        except SQLAlchemyError as e:
            log.error("merge_failed", destination_table=destination_table, error=str(e))
            raise MergeError(f"Failed to merge into {destination_table}: {e}") from e

        log.info(
            "merge_applied" if not dry_run else "merge_simulated",
            destination_table=destination_table,
            inserted=result.inserted,
            updated=result.updated,
            unchanged=result.unchanged,
            changed_columns=result.changed_columns,
        )
        return result

    def _check_columns(self, table: Table, name: str, columns: Sequence[str]) -> None:
        missing = [column for column in columns if column not in table.c]
        if missing:
            raise MergeError(
                f"Destination table {name} is missing columns: {', '.join(missing)}"
            )

    def _load_existing(
        self,
        conn: Connection,
        table: Table,
        primary_key: str,
        columns: Sequence[str],
        keys: list[Any],
    ) -> dict[Any, ChangeRow]:
        """Load destination rows for the staged keys, restricted to the incoming columns."""
        key_column = table.c[primary_key]
        selected = [table.c[column] for column in columns]
        existing: dict[Any, ChangeRow] = {}

        for chunk in _chunked(keys, KEY_LOOKUP_CHUNK_SIZE):
            records = conn.execute(select(*selected).where(key_column.in_(chunk))).mappings()
            for record in records:
                row = ChangeRow.from_mapping(record)
                existing[row.key(primary_key)] = row

        return existing

    def _diff(
        self,
        staged: dict[Any, ChangeRow],
        existing: dict[Any, ChangeRow],
        primary_key: str,
    ) -> tuple[MergeResult, list[dict[str, Any]], list[tuple[Any, dict[str, Any]]]]:
        result = MergeResult()
        changed_columns: Counter[str] = Counter()
        inserts: list[dict[str, Any]] = []
        updates: list[tuple[Any, dict[str, Any]]] = []

        for key, row in staged.items():
            current = existing.get(key)
            if current is None:
                inserts.append(row.to_params())
                result.inserted += 1
                continue

            changed = row.differs_from(current, ignore=[primary_key])
            if not changed:
                result.unchanged += 1
                continue

            params = row.to_params()
            updates.append((key, {column: params[column] for column in changed}))
            changed_columns.update(changed)
            result.updated += 1

        result.changed_columns = dict(changed_columns)
        return result, inserts, updates
