from __future__ import annotations

import json

import pytest

from catalog_sync.models.import_state import (
    MAX_STORED_PAGE_HASHES,
    MAX_STORED_WARNINGS,
    ImportState,
    ImportStats,
    ImportStatus,
)


def test_new_state_is_running():
    state = ImportState.new(run_timestamp=1700000000, sql_name="Items", params={"a": 1}, page_size=0)
    assert state.status is ImportStatus.RUNNING
    assert state.page == 1 and state.offset == 0
    assert state.page_size == 1
    assert len(state.run_id) == 32
    assert not state.is_complete


def test_page_hash_window_is_bounded():
    state = ImportState.new(run_timestamp=1, sql_name="Items")
    for i in range(MAX_STORED_PAGE_HASHES + 5):
        state.remember_page_hash(f"h{i}")
    assert len(state.page_hashes) == MAX_STORED_PAGE_HASHES
    assert state.page_hashes[0] == "h5"
    assert state.page_hashes[-1] == f"h{MAX_STORED_PAGE_HASHES + 4}"


def test_warnings_are_bounded():
    state = ImportState.new(run_timestamp=1, sql_name="Items")
    for i in range(MAX_STORED_WARNINGS + 1):
        state.add_warning(f"w{i}")
    assert len(state.warnings) == MAX_STORED_WARNINGS
    assert state.warnings[0] == "w1"


def test_state_survives_json_round_trip():
    state = ImportState.new(run_timestamp=42, sql_name="Items", params={"upddate": "2024-01-01"}, page_size=25)
    state.page, state.offset = 3, 7
    state.remember_page_hash("abc")
    state.stats.record("created")
    state.add_warning("careful")

    restored = ImportState.from_dict(json.loads(json.dumps(state.to_dict())))

    assert restored == state


def test_from_dict_rejects_garbage():
    with pytest.raises(ValueError, match="invalid import state"):
        ImportState.from_dict({"run_timestamp": 1})
    with pytest.raises(ValueError, match="invalid import state"):
        ImportState.from_dict({"run_id": "x", "run_timestamp": 1, "status": "paused"})


class TestImportStats:
    def test_record_outcomes(self):
        stats = ImportStats()
        for outcome in ("created", "updated", "skipped", "skipped"):
            stats.record(outcome)
        assert stats.to_dict() == {
            "processed": 4, "created": 1, "updated": 1, "skipped": 2, "errors": 0, "stale": 0,
        }

    def test_merge(self):
        total = ImportStats(processed=2, created=2)
        total.merge(ImportStats(processed=1, skipped=1, errors=1, stale=3))
        assert total == ImportStats(processed=3, created=2, skipped=1, errors=1, stale=3)
