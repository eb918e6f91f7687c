from __future__ import annotations

import hashlib
import json
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from catalog_sync.logging.sync_logger import EngineLogger
from catalog_sync.models.import_state import ImportState
from catalog_sync.models.rows import NormalizedRow, RawRow, RowValidationError, normalize_row
from catalog_sync.sources.base import RowSource

"""Paged row sequencing with repeated-page detection.

The sequencer turns a paged row source into a lazy stream of rows and keeps
the ImportState cursor (page/offset) in step with what has been handed out,
so a batch can stop after any row and the next batch resumes right after it.

Some SoftOne stored queries ignore pPage and return the same page forever.
Each freshly fetched page is hashed; a hash already present in the bounded
window is reported as a repeated page. Reporting never stops the stream:
an exhausted (empty) page is the only end condition besides max_pages.
"""

__all__ = [
    "PageHasher",
    "RowSequencer",
    "SequencedRow",
    "REPEATED_PAGE_MESSAGE",
]

REPEATED_PAGE_MESSAGE = "Detected repeated page payload"


class PageHasher:
    @staticmethod
    def hash_rows(rows: Sequence[RawRow]) -> str:
        encoded = json.dumps(list(rows), sort_keys=True, ensure_ascii=False, default=str)
        return hashlib.md5(encoded.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SequencedRow:
    """One row from the feed; ``row`` is None when normalization failed."""
    page: int
    index: int
    raw: RawRow
    row: NormalizedRow | None
    error: str | None = None


class RowSequencer:
    def __init__(
        self,
        source: RowSource,
        *,
        sql_name: str,
        params: dict[str, Any] | None = None,
        page_size: int = 250,
        logger: EngineLogger,
        max_pages: int | None = None,
        hasher: PageHasher | None = None,
    ) -> None:
        self.source = source
        self.sql_name = sql_name
        self.params = dict(params or {})
        self.page_size = page_size if page_size > 0 else 1
        self.logger = logger
        self.max_pages = max_pages
        self.hasher = hasher or PageHasher()

    def _check_page(self, state: ImportState, page: int, page_hash: str, resuming: bool) -> None:
        if resuming and state.current_page_hash is not None:
            # same page fetched again to continue mid-page; not a repeat
            if page_hash != state.current_page_hash:
                message = f"Page payload changed between batches (page={page})"
                self.logger.log("warning", message, {"page": page, "event": "page_changed"})
                state.add_warning(message)
                state.remember_page_hash(page_hash)
            return
        if page_hash in state.page_hashes:
            message = f"{REPEATED_PAGE_MESSAGE} (page={page}, hash={page_hash})"
            self.logger.log(
                "warning", message, {"page": page, "hash": page_hash, "event": "repeated_page"}
            )
            state.add_warning(message)
        state.remember_page_hash(page_hash)

    def iter_rows(self, state: ImportState | None = None) -> Iterator[SequencedRow]:
        """Yield rows from ``state.page`` / ``state.offset`` onwards.

        The state cursor is advanced before each row is yielded, so it always
        points at the first row not yet handed out.
        """
        if state is None:
            state = ImportState.new(run_timestamp=0, sql_name=self.sql_name, page_size=self.page_size)

        while True:
            page = state.page
            if self.max_pages is not None and page > self.max_pages:
                return
            skip = state.offset

            result = self.source.fetch_page(self.sql_name, self.params, page, self.page_size)
            rows = list(result.rows)
            if not rows:
                return

            page_hash = self.hasher.hash_rows(rows)
            self._check_page(state, page, page_hash, resuming=skip > 0)
            state.current_page_hash = page_hash

            if skip >= len(rows):
                state.page, state.offset = page + 1, 0
                continue

            for index in range(skip, len(rows)):
                if index + 1 >= len(rows):
                    state.page, state.offset = page + 1, 0
                else:
                    state.offset = index + 1
                raw = rows[index]
                try:
                    normalized = normalize_row(raw)
                except RowValidationError as e:
                    yield SequencedRow(page, index, raw, None, str(e))
                    continue
                yield SequencedRow(page, index, raw, normalized)
