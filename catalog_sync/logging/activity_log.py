from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from catalog_sync.models.activity_record import ActivityRecord

"""Sync activity log buffer.

Records are buffered in memory and appended as JSON Lines to
``logs/sync-activity-YYYYMMDD-HHMMSS.log`` (UTC) when flushed. The file is
created lazily, so a run without activity leaves no file behind.
"""

__all__ = [
    "ActivityRecord",
    "ActivityLogBuffer",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ActivityLogBuffer:
    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[ActivityRecord] = []
        self._file_path: Path | None = None
        self._logs_dir = logs_dir or LOGS_DIR

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"sync-activity-{stamp}.log"
        return self._file_path

    @property
    def records(self) -> list[ActivityRecord]:
        return list(self._records)

    def append(self, record: ActivityRecord) -> None:
        self._records.append(record)

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        if not self._records:
            return None
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
