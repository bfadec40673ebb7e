"""Pydantic models for watermarks and run log entries."""

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RunStatus(str, Enum):
    """Lifecycle status of one synchronization attempt."""

    RUNNING = "Running"
    SUCCESS = "Success"
    DRY_RUN = "DryRun"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class Watermark(BaseModel):
    """
    Upper bound of the data already synchronized for a table.

    `last_processed_id` reports the largest primary key a run applied.
    Extraction resumes from `(last_run_at, resume_after_id)`, the change
    timestamp and key of the last row in extraction order, and watermarks
    are ordered by that pair.
    """

    model_config = ConfigDict(frozen=True)

    last_run_at: datetime | None = Field(
        default=None, description="Greatest change timestamp already synchronized"
    )
    last_processed_id: int | None = Field(
        default=None, description="Largest integer primary key applied by the run"
    )
    resume_after_id: int | None = Field(
        default=None, description="Primary key of the last row extracted at last_run_at"
    )

    @classmethod
    def empty(cls) -> "Watermark":
        return cls()

    @property
    def is_empty(self) -> bool:
        return (
            self.last_run_at is None
            and self.last_processed_id is None
            and self.resume_after_id is None
        )

    def ordering_key(self) -> tuple[datetime, int]:
        """Key under which watermarks are compared; missing parts sort lowest."""
        return (
            self.last_run_at or datetime.min,
            self.resume_after_id if self.resume_after_id is not None else -(2**63),
        )

    def is_earlier_than(self, other: "Watermark") -> bool:
        return self.ordering_key() < other.ordering_key()


class RunLogEntry(BaseModel):
    """One persisted synchronization attempt for a table."""

    run_id: int = Field(default=..., description="Generated identity of the run")
    table_name: str = Field(default=..., description="Table the run synchronized")
    started_at: datetime = Field(default=..., description="When the attempt started (UTC)")
    completed_at: datetime | None = Field(default=None, description="When the attempt finished")
    status: RunStatus = Field(default=RunStatus.RUNNING)
    records_scanned: int = Field(default=0, ge=0)
    records_inserted: int = Field(default=0, ge=0)
    records_updated: int = Field(default=0, ge=0)
    error_message: str | None = Field(default=None)
    last_run_at: datetime | None = Field(default=None)
    last_processed_id: int | None = Field(default=None)
    resume_after_id: int | None = Field(default=None)

    @property
    def watermark(self) -> Watermark:
        return Watermark(
            last_run_at=self.last_run_at,
            last_processed_id=self.last_processed_id,
            resume_after_id=self.resume_after_id,
        )

    def is_stuck(self, now: datetime, stale_after: timedelta) -> bool:
        """True for a Running entry at least `stale_after` old."""
        return self.status is RunStatus.RUNNING and now - self.started_at >= stale_after
