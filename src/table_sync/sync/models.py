"""Data models for synchronization operations."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from table_sync.errors import ErrorKind
from table_sync.models.rows import ChangeRow
from table_sync.models.run_log import RunStatus, Watermark


@dataclass
class FetchResult:
    """Rows changed since a watermark, in extraction order."""

    rows: list[ChangeRow]
    since: datetime
    batch_size: int
    last_change_at: datetime | None = None
    last_key: Any = None
    highest_id: int | None = None

    @property
    def scanned(self) -> int:
        return len(self.rows)

    @property
    def has_more(self) -> bool:
        """True when the batch was filled, so more changes may be waiting."""
        return len(self.rows) >= self.batch_size

    def next_watermark(self, previous: Watermark, applied_id: int | None = None) -> Watermark:
        """
        Watermark after applying these rows; never earlier than `previous`.

        Args:
            previous: Watermark the batch was fetched from
            applied_id: Largest key already applied by earlier batches of the same run
        """
        if not self.rows or self.last_change_at is None:
            return previous

        processed = [key for key in (self.highest_id, applied_id) if key is not None]
        candidate = Watermark(
            last_run_at=self.last_change_at,
            last_processed_id=max(processed) if processed else None,
            resume_after_id=integer_key(self.last_key),
        )
        if candidate.is_earlier_than(previous):
            return previous
        return candidate


def integer_key(value: Any) -> int | None:
    """Return `value` when it is an integer primary key, else None."""
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


@dataclass
class MergeResult:
    """Counts produced by applying one batch to the destination."""

    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    changed_columns: dict[str, int] = field(default_factory=dict)

    @property
    def affected(self) -> int:
        return self.inserted + self.updated


class TableSyncResult(BaseModel):
    """Outcome of one table's synchronization within a cycle."""

    table_name: str = Field(..., description="Configured table name")
    run_id: int | None = Field(default=None, description="Run log entry of this cycle")
    status: RunStatus = Field(..., description="Terminal status recorded in the run log")
    records_scanned: int = Field(default=0, ge=0)
    records_inserted: int = Field(default=0, ge=0)
    records_updated: int = Field(default=0, ge=0)
    watermark_before: Watermark = Field(default_factory=Watermark)
    watermark_after: Watermark = Field(default_factory=Watermark)
    attempts: int = Field(default=0, ge=0, description="Attempts made by the retry policy")
    has_more: bool = Field(default=False, description="Changes may remain beyond the last batch")
    error: str | None = Field(default=None, description="Final error message, verbatim")
    error_kind: ErrorKind | None = Field(default=None)
    start_time: datetime = Field(..., description="Sync start timestamp")
    end_time: datetime = Field(..., description="Sync end timestamp")

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return self.status in (RunStatus.SUCCESS, RunStatus.DRY_RUN)


class CycleReport(BaseModel):
    """Report of one pass over every configured table."""

    dry_run: bool = Field(default=False)
    start_time: datetime = Field(..., description="Cycle start timestamp")
    end_time: datetime = Field(..., description="Cycle end timestamp")
    results: list[TableSyncResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> list[TableSyncResult]:
        return [result for result in self.results if result.success]

    @property
    def failed(self) -> list[TableSyncResult]:
        return [result for result in self.results if not result.success]

    @property
    def success(self) -> bool:
        """Check if every table synchronized without errors."""
        return not self.failed

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()
