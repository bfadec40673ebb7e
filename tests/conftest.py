"""Shared fixtures: in-memory source, destination and run log databases."""

from datetime import datetime, timedelta
from typing import Any, Callable, Iterator

import pytest
from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from table_sync.errors import ConcurrentRunError, OperationCancelledError, RunLogStateError
from table_sync.models.config import SyncSettings, TableSyncConfig
from table_sync.storage.database import create_engine_for
from table_sync.storage.schema import ensure_run_log_schema
from table_sync.sync.change_extractor import ChangeExtractor
from table_sync.sync.merge_executor import MergeExecutor
from table_sync.sync.orchestrator import SyncOrchestrator
from table_sync.sync.run_log_store import RunLogStore
from table_sync.utils.cancellation import CancellationToken
from table_sync.utils.retry import RetryPolicy

NOW = datetime(2024, 6, 1, 12, 0, 0)
BASE_TIME = datetime(2024, 5, 20, 8, 0, 0)

SUBJECTS = TableSyncConfig(
    name="EXAM_SUBJECTS",
    primary_key="SUBJECT_ID",
    create_date_column="CREATE_DATE",
    modify_date_column="MODIFY_DATE",
)


class FakeClock:
    """Deterministic clock returning naive UTC datetimes."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def memory_engine() -> Engine:
    # StaticPool keeps a single connection, so the in-memory database survives between calls
    return create_engine_for(
        "sqlite://",
        30,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


def create_subjects_table(engine: Engine, name: str = "EXAM_SUBJECTS") -> Table:
    metadata = MetaData()
    table = Table(
        name,
        metadata,
        Column("SUBJECT_ID", Integer, primary_key=True, autoincrement=False),
        Column("SUBJECT_NAME", String(100), nullable=False),
        Column("CREDITS", Integer, nullable=True),
        Column("CREATE_DATE", DateTime, nullable=True),
        Column("MODIFY_DATE", DateTime, nullable=True),
    )
    metadata.create_all(engine)
    return table


class SyncEnvironment:
    """Source and destination holding EXAM_SUBJECTS, plus a run log on the destination."""

    base_time = BASE_TIME

    def __init__(self, clock: FakeClock | None = None):
        self.clock = clock or FakeClock()
        self.source = memory_engine()
        self.destination = memory_engine()
        self.source_table = create_subjects_table(self.source)
        self.destination_table = create_subjects_table(self.destination)
        ensure_run_log_schema(self.destination)

        self.run_log = RunLogStore(self.destination, clock=self.clock)
        self.extractor = ChangeExtractor(self.source, clock=self.clock)
        self.merge_executor = MergeExecutor(self.destination)
        self.sleeps: list[float] = []

    @staticmethod
    def subject(
        subject_id: int,
        name: str | None = None,
        credits: int | None = 3,
        created: datetime | None = BASE_TIME,
        modified: datetime | None = None,
    ) -> dict[str, Any]:
        return {
            "SUBJECT_ID": subject_id,
            "SUBJECT_NAME": name or f"Subject {subject_id}",
            "CREDITS": credits,
            "CREATE_DATE": created,
            "MODIFY_DATE": modified,
        }

    def insert_source(self, *rows: dict[str, Any]) -> None:
        with self.source.begin() as conn:
            conn.execute(insert(self.source_table), list(rows))

    def insert_destination(self, *rows: dict[str, Any]) -> None:
        with self.destination.begin() as conn:
            conn.execute(insert(self.destination_table), list(rows))

    def update_source(self, subject_id: int, **values: Any) -> None:
        table = self.source_table
        with self.source.begin() as conn:
            conn.execute(update(table).where(table.c.SUBJECT_ID == subject_id).values(**values))

    def source_rows(self) -> list[dict[str, Any]]:
        return self._read(self.source, self.source_table)

    def destination_rows(self) -> list[dict[str, Any]]:
        return self._read(self.destination, self.destination_table)

    @staticmethod
    def _read(engine: Engine, table: Table) -> list[dict[str, Any]]:
        with engine.connect() as conn:
            records = conn.execute(select(table).order_by(table.c.SUBJECT_ID)).mappings().all()
        return [dict(record) for record in records]

    def orchestrator(
        self,
        tables: tuple[TableSyncConfig, ...] = (SUBJECTS,),
        extractor: Any = None,
        cancellation: CancellationToken | None = None,
        **overrides: Any,
    ) -> SyncOrchestrator:
        """Build an orchestrator whose backoff sleeps are recorded instead of slept."""
        settings = SyncSettings(tables=list(tables), **overrides)
        retry_policy = RetryPolicy.from_settings(
            settings.retry,
            give_up_on=(ConcurrentRunError, RunLogStateError, OperationCancelledError),
            sleep=self.sleeps.append,
        )
        return SyncOrchestrator(
            settings,
            run_log=self.run_log,
            extractor=extractor or self.extractor,
            merge_executor=self.merge_executor,
            retry_policy=retry_policy,
            cancellation=cancellation,
            clock=self.clock,
        )

    def dispose(self) -> None:
        self.source.dispose()
        self.destination.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def env() -> Iterator[SyncEnvironment]:
    environment = SyncEnvironment()
    yield environment
    environment.dispose()


@pytest.fixture
def make_env() -> Iterator[Callable[[], SyncEnvironment]]:
    """Factory for property tests that need a fresh environment per example."""
    created: list[SyncEnvironment] = []

    def _make() -> SyncEnvironment:
        environment = SyncEnvironment()
        created.append(environment)
        return environment

    yield _make
    for environment in created:
        environment.dispose()


@pytest.fixture
def subjects_config() -> TableSyncConfig:
    return SUBJECTS
