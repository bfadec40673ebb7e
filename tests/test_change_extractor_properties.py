"""Property-based tests for change extraction.

**Feature: table-sync, Property 8: Keyset paging visits every changed row once**
"""

from datetime import timedelta

import pytest
import structlog
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from table_sync.errors import ExtractionError, OperationCancelledError
from table_sync.models.config import TableSyncConfig
from table_sync.models.run_log import Watermark
from table_sync.sync.change_extractor import ChangeExtractor
from table_sync.utils.cancellation import CancellationToken

log = structlog.stdlib.get_logger()


def keys(fetched) -> list[int]:
    return [row.key("SUBJECT_ID") for row in fetched.rows]


class TestChangeWindow:
    """Rows are selected by the greatest of their create and modify timestamps."""

    def test_first_run_uses_fallback_window(self, env, subjects_config) -> None:
        now = env.clock.now
        env.insert_source(
            env.subject(1, created=now - timedelta(days=40)),
            env.subject(2, created=now - timedelta(days=10)),
            env.subject(3, created=now - timedelta(days=29, hours=23)),
        )

        fetched = env.extractor.fetch(subjects_config, Watermark.empty(), batch_size=100)

        assert keys(fetched) == [3, 2]
        assert fetched.since == now - timedelta(days=30)

    def test_custom_fallback_window(self, env, subjects_config) -> None:
        now = env.clock.now
        env.insert_source(
            env.subject(1, created=now - timedelta(days=5)),
            env.subject(2, created=now - timedelta(hours=12)),
        )
        extractor = ChangeExtractor(env.source, fallback_window=timedelta(days=1), clock=env.clock)

        fetched = extractor.fetch(subjects_config, Watermark.empty(), batch_size=100)

        assert keys(fetched) == [2]

    def test_recent_modification_selects_old_row(self, env, subjects_config) -> None:
        now = env.clock.now
        modified = now - timedelta(hours=1)
        env.insert_source(
            env.subject(1, created=now - timedelta(days=400), modified=modified),
            env.subject(2, created=now - timedelta(days=400)),
        )

        fetched = env.extractor.fetch(subjects_config, Watermark.empty(), batch_size=100)

        assert keys(fetched) == [1]
        assert fetched.last_change_at == modified
        assert fetched.last_key == 1

    def test_watermark_excludes_older_changes(self, env, subjects_config) -> None:
        t0 = env.base_time
        env.insert_source(
            env.subject(1, created=t0 - timedelta(hours=1)),
            env.subject(2, created=t0),
            env.subject(3, created=t0 + timedelta(hours=1)),
        )

        fetched = env.extractor.fetch(
            subjects_config, Watermark(last_run_at=t0), batch_size=100
        )

        assert keys(fetched) == [3]

    def test_rows_are_ordered_by_change_time_then_key(self, env, subjects_config) -> None:
        t0 = env.base_time
        env.insert_source(
            env.subject(30, created=t0 + timedelta(minutes=3)),
            env.subject(10, created=t0 + timedelta(minutes=1)),
            env.subject(22, created=t0 + timedelta(minutes=2)),
            env.subject(21, created=t0 + timedelta(minutes=2)),
        )

        fetched = env.extractor.fetch(subjects_config, Watermark.empty(), batch_size=100)

        assert keys(fetched) == [10, 21, 22, 30]
        assert fetched.next_watermark(Watermark.empty()) == Watermark(
            last_run_at=t0 + timedelta(minutes=3), last_processed_id=30, resume_after_id=30
        )

    def test_highest_key_is_reported_separately_from_last_row(self, env, subjects_config) -> None:
        t0 = env.base_time
        env.insert_source(
            env.subject(103, created=t0),
            env.subject(102, created=t0 + timedelta(minutes=1)),
            env.subject(101, created=t0 + timedelta(minutes=2)),
        )

        fetched = env.extractor.fetch(subjects_config, Watermark.empty(), batch_size=100)

        assert keys(fetched) == [103, 102, 101]
        assert (fetched.last_key, fetched.highest_id) == (101, 103)


class TestBatching:
    """Batches are bounded and resume from the last processed row."""

    def test_batch_size_limits_rows(self, env, subjects_config) -> None:
        env.insert_source(
            *[env.subject(i, created=env.base_time + timedelta(minutes=i)) for i in range(1, 6)]
        )

        fetched = env.extractor.fetch(subjects_config, Watermark.empty(), batch_size=2)

        assert keys(fetched) == [1, 2]
        assert fetched.has_more
        assert fetched.scanned == 2

    def test_partial_batch_has_no_more(self, env, subjects_config) -> None:
        env.insert_source(env.subject(1))

        fetched = env.extractor.fetch(subjects_config, Watermark.empty(), batch_size=2)

        assert not fetched.has_more

    def test_equal_timestamp_resumes_after_last_id(self, env, subjects_config) -> None:
        t0 = env.base_time
        env.insert_source(env.subject(101), env.subject(102), env.subject(103))

        fetched = env.extractor.fetch(
            subjects_config, Watermark(last_run_at=t0, resume_after_id=102), batch_size=100
        )

        assert keys(fetched) == [103]

    def test_reported_id_alone_does_not_resume_within_timestamp(self, env, subjects_config) -> None:
        env.insert_source(env.subject(101), env.subject(102), env.subject(103))

        fetched = env.extractor.fetch(
            subjects_config,
            Watermark(last_run_at=env.base_time, last_processed_id=101),
            batch_size=100,
        )

        assert fetched.rows == []

    def test_timestamp_only_watermark_is_strict(self, env, subjects_config) -> None:
        env.insert_source(env.subject(101), env.subject(102))

        fetched = env.extractor.fetch(
            subjects_config, Watermark(last_run_at=env.base_time), batch_size=100
        )

        assert fetched.rows == []
        assert fetched.next_watermark(Watermark(last_run_at=env.base_time)) == Watermark(
            last_run_at=env.base_time
        )

    @given(
        offsets=st.lists(st.integers(min_value=0, max_value=3), min_size=0, max_size=12),
        batch_size=st.integers(min_value=1, max_value=5),
    )
    @settings(
        max_examples=25,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
        deadline=None,
    )
    def test_paging_visits_every_row_once(
        self, make_env, subjects_config, offsets: list[int], batch_size: int
    ) -> None:
        """Property 8: Keyset paging visits every changed row once.

        For any rows sharing few distinct change timestamps and any batch size,
        following next_watermark batch after batch yields each row exactly once.

        **Feature: table-sync, Property 8: Keyset paging visits every changed row once**
        """
        log.info("test_paging_visits_every_row_once", rows=len(offsets), batch_size=batch_size)
        env = make_env()
        if offsets:
            env.insert_source(
                *[
                    env.subject(index + 1, created=env.base_time + timedelta(minutes=offset))
                    for index, offset in enumerate(offsets)
                ]
            )

        seen: list[int] = []
        watermark = Watermark.empty()
        for _ in range(len(offsets) + 2):
            fetched = env.extractor.fetch(subjects_config, watermark, batch_size)
            seen.extend(keys(fetched))
            following = fetched.next_watermark(watermark)
            assert not following.is_earlier_than(watermark)
            watermark = following
            if not fetched.has_more:
                break

        assert sorted(seen) == list(range(1, len(offsets) + 1))
        assert len(seen) == len(set(seen))


class TestExtractionErrors:
    """Source problems surface as ExtractionError."""

    def test_missing_source_table(self, env) -> None:
        config = TableSyncConfig(
            name="EXAM_ROOMS",
            primary_key="ROOM_ID",
            create_date_column="CREATE_DATE",
            modify_date_column="MODIFY_DATE",
        )
        with pytest.raises(ExtractionError, match="EXAM_ROOMS"):
            env.extractor.fetch(config, Watermark.empty(), batch_size=10)

    def test_missing_configured_column(self, env, subjects_config) -> None:
        config = subjects_config.model_copy(update={"modify_date_column": "UPDATED_AT"})
        with pytest.raises(ExtractionError, match="UPDATED_AT"):
            env.extractor.fetch(config, Watermark.empty(), batch_size=10)

    def test_cancelled_extractor_does_not_query(self, env, subjects_config) -> None:
        token = CancellationToken()
        token.cancel()
        extractor = ChangeExtractor(env.source, clock=env.clock, cancellation=token)

        with pytest.raises(OperationCancelledError):
            extractor.fetch(subjects_config, Watermark.empty(), batch_size=10)
