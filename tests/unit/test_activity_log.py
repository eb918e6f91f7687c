from __future__ import annotations

import json
import logging
from io import StringIO
from pathlib import Path

from catalog_sync.logging.activity_log import ActivityLogBuffer
from catalog_sync.logging.sync_logger import SyncLogger
from catalog_sync.models.activity_record import ActivityRecord

RECORD_KEYS = {"timestamp", "level", "channel", "action", "message", "context"}


def test_activity_record_json_line():
    rec = ActivityRecord.create("WARNING", "item_sync", "repeated_page", "Detected repeated page payload", {"page": 3})
    data = json.loads(rec.to_json_line())
    assert set(data) == RECORD_KEYS
    assert data["timestamp"].endswith("Z")
    assert data["context"] == {"page": 3}


def test_activity_record_tolerates_odd_context():
    rec = ActivityRecord.create("INFO", "item_sync", "x", "m", {"path": Path("logs")})
    assert json.loads(rec.to_json_line())["context"]["path"] == "logs"


def test_buffer_flush_writes_json_lines(temp_workdir: Path):
    buf = ActivityLogBuffer()
    buf.append(ActivityRecord.create("INFO", "item_sync", "run_started", "Starting"))
    buf.append(ActivityRecord.create("ERROR", "item_sync", "row_failed", "boom", {"mtrl": "1"}))

    path = buf.flush()

    assert path is not None and path.exists()
    assert path.parent == Path("logs")
    assert path.name.startswith("sync-activity-") and path.suffix == ".log"
    lines = path.read_text(encoding="utf-8").strip().splitlines()
    assert [json.loads(line)["action"] for line in lines] == ["run_started", "row_failed"]
    assert len(buf) == 0


def test_buffer_appends_to_same_file(temp_workdir: Path):
    buf = ActivityLogBuffer()
    buf.append(ActivityRecord.create("INFO", "c", "a", "one"))
    first = buf.flush()
    buf.append(ActivityRecord.create("INFO", "c", "a", "two"))
    second = buf.flush()
    assert first == second
    assert len(first.read_text(encoding="utf-8").splitlines()) == 2


def test_empty_buffer_creates_no_file(tmp_path: Path):
    buf = ActivityLogBuffer(tmp_path / "logs")
    assert buf.flush() is None
    assert not (tmp_path / "logs").exists()


class TestSyncLogger:
    def test_log_forwards_and_records(self):
        captured = StringIO()
        target = logging.getLogger("test_sync_logger_forward")
        target.setLevel(logging.INFO)
        target.handlers[:] = [logging.StreamHandler(captured)]
        target.propagate = False
        activity = ActivityLogBuffer()
        sync_logger = SyncLogger("item_sync", logger=target, activity=activity)

        sync_logger.log("warning", "Detected repeated page payload", {"page": 2, "event": "repeated_page"})

        assert "Detected repeated page payload (page=2 event=repeated_page)" in captured.getvalue()
        [record] = activity.records
        assert record.level == "WARNING"
        assert record.channel == "item_sync"
        assert record.action == "repeated_page"
        assert record.context == {"page": 2}

    def test_debug_is_not_recorded(self):
        activity = ActivityLogBuffer()
        SyncLogger(activity=activity).log("debug", "noise")
        assert activity.records == []

    def test_action_defaults_to_level(self):
        activity = ActivityLogBuffer()
        SyncLogger(activity=activity).info("hello", {"action": "stock_out"})
        [record] = activity.records
        assert record.action == "info"
        assert record.context == {"action": "stock_out"}

    def test_child_shares_activity_buffer(self):
        activity = ActivityLogBuffer()
        child = SyncLogger("item_sync", activity=activity).child("stale_items")
        child.error("failed", {"product_id": 4})
        assert activity.records[0].channel == "stale_items"
        assert activity.records[0].level == "ERROR"
