from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from catalog_sync.sources.base import RowSourceError
from catalog_sync.sources.spreadsheet import SpreadsheetRowSource, read_item_export


def _csv(tmp_path: Path) -> Path:
    path = tmp_path / "items.csv"
    path.write_text(
        "MTRL,CODE,DESC,Stock QTY\n"
        "1,NA,Null Shirt,\n"
        "2,B-2,Bag,5\n"
        ",,,\n"
        "3,C-3,Cap,1\n",
        encoding="utf-8",
    )
    return path


def test_read_csv_keeps_na_strings_and_drops_blank_rows(tmp_path: Path):
    rows = read_item_export(_csv(tmp_path))

    assert len(rows) == 3
    assert rows[0]["CODE"] == "NA"
    assert rows[0]["Stock QTY"] is None
    assert rows[1]["MTRL"] == "2"


def test_read_excel_sheet(tmp_path: Path):
    path = tmp_path / "items.xlsx"
    pd.DataFrame([{"MTRL": "1", "CODE": "A"}, {"MTRL": "2", "CODE": "B"}]).to_excel(
        path, sheet_name="Items", index=False
    )

    rows = read_item_export(path, "Items")

    assert [r["CODE"] for r in rows] == ["A", "B"]


def test_missing_file(tmp_path: Path):
    with pytest.raises(RowSourceError, match="not found"):
        read_item_export(tmp_path / "nope.csv")


def test_pages_are_sliced(tmp_path: Path):
    source = SpreadsheetRowSource(_csv(tmp_path))

    first = source.fetch_page("sheet", {}, 1, 2)
    second = source.fetch_page("sheet", {}, 2, 2)
    third = source.fetch_page("sheet", {}, 3, 2)

    assert [r["MTRL"] for r in first.rows] == ["1", "2"]
    assert [r["MTRL"] for r in second.rows] == ["3"]
    assert third.rows == []
    assert first.total == 3
