from __future__ import annotations

from pathlib import Path
from typing import Any

import pandas as pd

from catalog_sync.sources.base import PageResult, RowSourceError

"""Row source over an exported item list (xlsx or csv).

Lets the sync run from a SoftOne export file when the web-services endpoint
is unavailable. The file is read once with pandas and served page by page.
"""

__all__ = [
    "SpreadsheetRowSource",
    "read_item_export",
]


def read_item_export(path: Path, sheet: str | None = None) -> list[dict[str, Any]]:
    """Read an export file into row dicts (first row is the header).

    Empty cells become None; strings such as "NA" are kept as-is because
    they are legitimate item codes in some catalogs.
    """
    if not path.exists():
        raise RowSourceError(f"export file not found: {path}", {"file": str(path)})
    try:
        if path.suffix.lower() == ".csv":
            df = pd.read_csv(path, dtype=object, keep_default_na=False, na_values=[""])
        else:
            df = pd.read_excel(
                path, sheet_name=sheet or 0, dtype=object, keep_default_na=False, na_values=[""]
            )
    except (OSError, ValueError) as e:
        raise RowSourceError(f"cannot read export file {path.name}: {e}", {"file": str(path)}) from e

    df.columns = [str(c).strip() for c in df.columns]
    df = df.dropna(how="all")
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


class SpreadsheetRowSource:
    def __init__(self, path: Path, sheet: str | None = None) -> None:
        self.path = Path(path)
        self.sheet = sheet
        self._rows: list[dict[str, Any]] | None = None

    @property
    def rows(self) -> list[dict[str, Any]]:
        if self._rows is None:
            self._rows = read_item_export(self.path, self.sheet)
        return self._rows

    def fetch_page(self, sql_name: str, params: dict[str, Any], page: int, page_size: int) -> PageResult:
        size = max(1, int(page_size))
        start = (max(1, int(page)) - 1) * size
        return PageResult(rows=[dict(r) for r in self.rows[start:start + size]], total=len(self.rows))
