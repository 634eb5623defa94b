"""
Tests for the local JSON and database ingestion status trackers.
"""

import json

import pytest

from candidate_atlas.core.exceptions import ConfigurationError, StatusTrackerError
from candidate_atlas.domain.imports.status import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSED,
    STATUS_PROCESSING,
    DatabaseStatusTracker,
    LocalJsonStatusTracker,
    create_status_tracker,
)


@pytest.fixture(params=["local", "database"])
def tracker(request, tmp_path, database):
    if request.param == "local":
        instance = LocalJsonStatusTracker(tmp_path / "state" / "status.json")
    else:
        instance = DatabaseStatusTracker(database)
    instance.ensure_ready()
    return instance


def test_seed_pending_is_insert_if_absent(tracker):
    tracker.seed_pending(["a.xlsx", "b.xlsx"])
    tracker.mark_processing("a.xlsx")
    tracker.seed_pending(["a.xlsx", "c.xlsx"])

    assert tracker.get_status("a.xlsx") == STATUS_PROCESSING
    assert tracker.get_status("b.xlsx") == STATUS_PENDING
    assert tracker.get_status("c.xlsx") == STATUS_PENDING
    assert tracker.get_status("missing.xlsx") is None
    assert tracker.get_record("missing.xlsx") is None


def test_lifecycle_processing_then_processed(tracker):
    tracker.seed_pending(["a.xlsx"])
    tracker.mark_processing("a.xlsx")
    tracker.mark_failed("a.xlsx", RuntimeError("disk full"))
    tracker.mark_processing("a.xlsx")
    tracker.mark_processed("a.xlsx", processed_rows=120, persisted=118)

    record = tracker.get_record("a.xlsx")
    assert record["status"] == STATUS_PROCESSED
    assert record["attempts"] == 2
    assert record["processed_rows"] == 120
    assert record["persisted"] == 118
    assert record["error_message"] is None
    assert record["error_stack"] is None
    assert record["started_at"] is not None
    assert record["finished_at"] is not None


def test_mark_failed_records_message_and_stack(tracker):
    try:
        raise ValueError("bad workbook")
    except ValueError as exc:
        error = exc

    tracker.mark_processing("a.xlsx")
    tracker.mark_failed("a.xlsx", error)

    record = tracker.get_record("a.xlsx")
    assert record["status"] == STATUS_FAILED
    assert record["error_message"] == "bad workbook"
    assert "ValueError: bad workbook" in record["error_stack"]


def test_mark_operations_create_unknown_rows(tracker):
    tracker.mark_processing("new.xlsx")
    record = tracker.get_record("new.xlsx")
    assert record["status"] == STATUS_PROCESSING
    assert record["attempts"] == 1


def test_local_file_layout_and_atomic_write(tmp_path):
    path = tmp_path / "status.json"
    tracker = LocalJsonStatusTracker(path)
    tracker.ensure_ready()
    tracker.seed_pending(["a.xlsx"])
    tracker.mark_processed("a.xlsx", processed_rows=1, persisted=1)

    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["version"] == 1
    assert document["files"]["a.xlsx"]["status"] == STATUS_PROCESSED
    assert not (tmp_path / "status.json.tmp").exists()


def test_local_tracker_state_survives_a_new_instance(tmp_path):
    path = tmp_path / "status.json"
    LocalJsonStatusTracker(path).mark_processed("a.xlsx", processed_rows=3, persisted=3)
    assert LocalJsonStatusTracker(path).get_status("a.xlsx") == STATUS_PROCESSED


def test_local_tracker_rejects_corrupt_file(tmp_path):
    path = tmp_path / "status.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(StatusTrackerError):
        LocalJsonStatusTracker(path).get_status("a.xlsx")


def test_create_status_tracker(tmp_path, database):
    assert create_status_tracker("none") is None
    assert isinstance(create_status_tracker("local", status_file=str(tmp_path / "s.json")), LocalJsonStatusTracker)
    assert isinstance(create_status_tracker("database", database=database), DatabaseStatusTracker)

    with pytest.raises(ConfigurationError):
        create_status_tracker("database")
    with pytest.raises(ConfigurationError):
        create_status_tracker("redis")
