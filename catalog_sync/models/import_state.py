from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

"""Resumable import state and batch result models.

ImportState is owned by the caller between batches; the engine never keeps
it across suspensions. Everything here round-trips through plain JSON types
via to_dict() / from_dict().
"""

__all__ = [
    "MAX_STORED_PAGE_HASHES",
    "MAX_STORED_WARNINGS",
    "ImportStatus",
    "ImportStats",
    "ImportState",
    "BatchResult",
    "ImportRunResult",
]

MAX_STORED_PAGE_HASHES = 10
MAX_STORED_WARNINGS = 100


class ImportStatus(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETE = "complete"


@dataclass
class ImportStats:
    """Row counters; used both per batch and cumulatively."""
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    stale: int = 0

    def record(self, outcome: str) -> None:
        self.processed += 1
        if outcome == "created":
            self.created += 1
        elif outcome == "updated":
            self.updated += 1
        else:
            self.skipped += 1

    def merge(self, other: ImportStats) -> None:
        self.processed += other.processed
        self.created += other.created
        self.updated += other.updated
        self.skipped += other.skipped
        self.errors += other.errors
        self.stale += other.stale

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ImportStats:
        data = data or {}
        return cls(**{k: int(data.get(k, 0) or 0) for k in cls.__dataclass_fields__})


@dataclass
class ImportState:
    """Cursor over the remote feed plus running totals for one import run.

    ``page`` is the next page to fetch and ``offset`` the number of rows of
    that page already consumed. ``page_hashes`` is a bounded FIFO window used
    for repeated page detection and is emptied when the run completes.
    """
    run_id: str
    run_timestamp: int
    sql_name: str
    params: dict[str, Any] = field(default_factory=dict)
    page_size: int = 250
    status: ImportStatus = ImportStatus.NOT_STARTED
    page: int = 1
    offset: int = 0
    current_page_hash: str | None = None
    page_hashes: list[str] = field(default_factory=list)
    force_refresh: bool = False
    stats: ImportStats = field(default_factory=ImportStats)
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def new(
        cls,
        *,
        run_timestamp: int,
        sql_name: str,
        params: dict[str, Any] | None = None,
        page_size: int = 250,
        force_refresh: bool = False,
    ) -> ImportState:
        return cls(
            run_id=uuid.uuid4().hex,
            run_timestamp=int(run_timestamp),
            sql_name=sql_name,
            params=dict(params or {}),
            page_size=max(1, int(page_size)),
            status=ImportStatus.RUNNING,
            force_refresh=bool(force_refresh),
        )

    @property
    def is_complete(self) -> bool:
        return self.status is ImportStatus.COMPLETE

    def remember_page_hash(self, page_hash: str) -> None:
        self.page_hashes.append(page_hash)
        overflow = len(self.page_hashes) - MAX_STORED_PAGE_HASHES
        if overflow > 0:
            del self.page_hashes[:overflow]

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)
        overflow = len(self.warnings) - MAX_STORED_WARNINGS
        if overflow > 0:
            del self.warnings[:overflow]

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "run_timestamp": self.run_timestamp,
            "sql_name": self.sql_name,
            "params": dict(self.params),
            "page_size": self.page_size,
            "status": self.status.value,
            "page": self.page,
            "offset": self.offset,
            "current_page_hash": self.current_page_hash,
            "page_hashes": list(self.page_hashes),
            "force_refresh": self.force_refresh,
            "stats": self.stats.to_dict(),
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImportState:
        try:
            return cls(
                run_id=str(data["run_id"]),
                run_timestamp=int(data["run_timestamp"]),
                sql_name=str(data.get("sql_name", "")),
                params=dict(data.get("params") or {}),
                page_size=max(1, int(data.get("page_size", 250))),
                status=ImportStatus(data.get("status", ImportStatus.RUNNING.value)),
                page=max(1, int(data.get("page", 1))),
                offset=max(0, int(data.get("offset", 0))),
                current_page_hash=data.get("current_page_hash"),
                page_hashes=[str(h) for h in data.get("page_hashes") or []][-MAX_STORED_PAGE_HASHES:],
                force_refresh=bool(data.get("force_refresh", False)),
                stats=ImportStats.from_dict(data.get("stats")),
                warnings=[str(w) for w in data.get("warnings") or []][-MAX_STORED_WARNINGS:],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"invalid import state: {e}") from e


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one batch call.

    ``batch`` counts this batch only; ``stats`` is cumulative for the run.
    ``warnings`` is the run's cumulative (bounded) warning list.
    """
    state: ImportState
    batch: ImportStats
    complete: bool
    stats: ImportStats
    warnings: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.to_dict(),
            "batch": self.batch.to_dict(),
            "complete": self.complete,
            "stats": self.stats.to_dict(),
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class ImportRunResult:
    """Aggregated outcome of a full (multi-batch) run, used for the SUMMARY line."""
    result: BatchResult
    batches: int
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float

    @property
    def stats(self) -> ImportStats:
        return self.result.stats

    @property
    def complete(self) -> bool:
        return self.result.complete
