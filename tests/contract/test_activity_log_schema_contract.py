from __future__ import annotations

import json
from pathlib import Path

import jsonschema
import pytest

from catalog_sync.cli import main as cli_main
from catalog_sync.models.activity_record import ActivityRecord

"""Activity log JSON Lines contract test."""

ACTIVITY_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "required": ["timestamp", "level", "channel", "action", "message", "context"],
    "properties": {
        "timestamp": {"type": "string", "pattern": r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?Z$"},
        "level": {"type": "string", "enum": ["INFO", "WARNING", "ERROR", "CRITICAL"]},
        "channel": {"type": "string", "minLength": 1},
        "action": {"type": "string", "minLength": 1},
        "message": {"type": "string"},
        "context": {"type": "object"},
    },
}


def test_record_matches_schema():
    record = ActivityRecord.create("WARNING", "item_sync", "row_invalid", "Skipping invalid row", {"page": 1})
    jsonschema.validate(json.loads(record.to_json_line()), ACTIVITY_SCHEMA)


def test_schema_rejects_extra_key():
    line = json.loads(ActivityRecord.create("INFO", "item_sync", "run_started", "start").to_json_line())
    line["extra"] = "not allowed"
    with pytest.raises(jsonschema.exceptions.ValidationError):
        jsonschema.validate(line, ACTIVITY_SCHEMA)


def test_cli_activity_lines_match_schema(write_config, temp_workdir: Path):
    (temp_workdir / "data" / "items.csv").write_text(
        "MTRL,CODE,DESC,RETAILPRICE\n"
        "101,SKU-101,Linen Shirt,29.90\n"
        ",,Orphan row,1\n",
        encoding="utf-8",
    )

    cli_main([])

    log_file = next((temp_workdir / "logs").glob("sync-activity-*.log"))
    lines = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    for line in lines:
        jsonschema.validate(line, ACTIVITY_SCHEMA)
    invalid = [line for line in lines if line["action"] == "row_invalid"]
    assert len(invalid) == 1
    assert invalid[0]["level"] == "WARNING"
    assert invalid[0]["channel"] == "item_sync"
    assert invalid[0]["context"] == {"page": 1, "index": 1}
