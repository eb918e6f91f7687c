from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

"""ActivityRecord model for the sync activity log.

One JSON line per notable engine event (row failures, repeated pages,
variation reconciliation problems, stale handling).
"""

__all__ = [
    "ActivityRecord",
]


@dataclass(frozen=True)
class ActivityRecord:
    """Structured activity entry.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        level: logging level name (INFO, WARNING, ERROR)
        channel: emitting component, e.g. item_sync or stale_items
        action: short machine-readable event name
        message: human readable text
        context: extra JSON-serializable details
    """
    timestamp: str
    level: str
    channel: str
    action: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def create(
        level: str, channel: str, action: str, message: str, context: dict[str, Any] | None = None
    ) -> ActivityRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ActivityRecord(
            timestamp=ts,
            level=level,
            channel=channel,
            action=action,
            message=message,
            context=dict(context or {}),
        )

    def to_json_line(self) -> str:
        # default=str keeps odd context values (Decimal, Path) from breaking the log
        return json.dumps(asdict(self), ensure_ascii=False, default=str)
