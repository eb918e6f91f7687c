from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from catalog_sync.models.rows import RawRow

"""Row source contract.

A row source serves one page of a named stored query at a time. Pages are
1-based; an empty page means the feed is exhausted.
"""

__all__ = [
    "PageResult",
    "RowSource",
    "RowSourceError",
]


class RowSourceError(Exception):
    """Raised when a page cannot be fetched or decoded.

    ``context`` carries request details with credentials redacted.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context = dict(context or {})


@dataclass(frozen=True)
class PageResult:
    rows: list[RawRow] = field(default_factory=list)
    total: int | None = None


class RowSource(Protocol):
    def fetch_page(
        self, sql_name: str, params: dict[str, Any], page: int, page_size: int
    ) -> PageResult: ...
