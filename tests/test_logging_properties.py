"""Property-based tests for structured logging.

**Feature: table-sync, Property 16: Log entries carry the sync context**
"""

import json

import pytest
import structlog
from hypothesis import given, settings
from hypothesis import strategies as st

from table_sync.models.config import LoggingConfig
from table_sync.utils.logging_config import (
    bind_sync_context,
    configure_logging,
    configure_logging_from,
)


def read_events(capsys: pytest.CaptureFixture[str]) -> list[dict]:
    """Parse every JSON line written to stdout since the last read."""
    events = []
    for line in capsys.readouterr().out.splitlines():
        line = line.strip()
        if line.startswith("{"):
            events.append(json.loads(line))
    return events


def test_json_logs_contain_required_fields(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(log_level="INFO", json_logs=True, log_file=None)

    log = structlog.stdlib.get_logger("test_json_logs")
    log.info("merge_applied", destination_table="EXAM_SUBJECTS", inserted=3)

    [entry] = [event for event in read_events(capsys) if event["event"] == "merge_applied"]
    assert entry["level"] == "info"
    assert entry["destination_table"] == "EXAM_SUBJECTS"
    assert entry["inserted"] == 3
    assert "timestamp" in entry


def test_bound_context_is_scoped(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(log_level="INFO", json_logs=True)
    log = structlog.stdlib.get_logger("test_bound_context")

    with bind_sync_context(table_name="EXAM_SUBJECTS"):
        with bind_sync_context(run_id=7):
            log.info("inside_run")
        log.info("inside_table")
    log.info("outside")

    events = {event["event"]: event for event in read_events(capsys)}
    assert events["inside_run"]["table_name"] == "EXAM_SUBJECTS"
    assert events["inside_run"]["run_id"] == 7
    assert events["inside_table"]["table_name"] == "EXAM_SUBJECTS"
    assert "run_id" not in events["inside_table"]
    assert "table_name" not in events["outside"]


def test_level_filters_events(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging_from(LoggingConfig(log_level="WARNING", json_logs=True))
    log = structlog.stdlib.get_logger("test_level_filter")

    log.info("quiet_event")
    log.warning("loud_event")

    names = [event["event"] for event in read_events(capsys)]
    assert "quiet_event" not in names
    assert "loud_event" in names


def test_log_file_receives_events(tmp_path, capsys: pytest.CaptureFixture[str]) -> None:
    log_file = tmp_path / "sync.log"
    configure_logging(log_level="INFO", json_logs=True, log_file=str(log_file))

    structlog.stdlib.get_logger("test_log_file").info("written_to_file", table_name="EXAM_SUBJECTS")

    lines = [json.loads(line) for line in log_file.read_text().splitlines() if line.strip()]
    assert any(line["event"] == "written_to_file" for line in lines)


@given(
    table_name=st.text(alphabet="ABCDEFGHIJKLMNOPQRSTUVWXYZ_", min_size=1, max_size=30),
    run_id=st.integers(min_value=1, max_value=2**31),
)
@settings(max_examples=25, deadline=None)
def test_property_16_context_is_attached(table_name: str, run_id: int) -> None:
    """Property 16: Log entries carry the sync context.

    For any table name and run id bound around a block, every event logged in
    that block carries both values.

    **Feature: table-sync, Property 16: Log entries carry the sync context**
    """
    captured: list[dict] = []

    def capture(logger, method_name, event_dict):
        captured.append(dict(event_dict))
        raise structlog.DropEvent

    structlog.configure(
        processors=[structlog.contextvars.merge_contextvars, capture],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    log = structlog.stdlib.get_logger("test_property_16")

    with bind_sync_context(table_name=table_name, run_id=run_id):
        log.info("batch_processed", records_scanned=1)

    assert captured == [
        {
            "table_name": table_name,
            "run_id": run_id,
            "event": "batch_processed",
            "records_scanned": 1,
        }
    ]
