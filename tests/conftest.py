# Shared pytest fixtures
from __future__ import annotations
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from catalog_sync.logging.init import reset_logging
from catalog_sync.models.rows import RawRow
from catalog_sync.sources.base import PageResult


class RecordingLogger:
    """EngineLogger double that keeps every call."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def log(self, level: str, message: str, context: dict[str, Any] | None = None) -> None:
        self.records.append((level, message, dict(context or {})))

    def messages(self, level: str | None = None) -> list[str]:
        return [m for lv, m, _ in self.records if level is None or lv == level]


class ListRowSource:
    """Row source over an in-memory list; records every page request."""

    def __init__(self, rows: list[RawRow]) -> None:
        self.rows = list(rows)
        self.calls: list[tuple[int, int]] = []

    def fetch_page(self, sql_name: str, params: dict[str, Any], page: int, page_size: int) -> PageResult:
        self.calls.append((page, page_size))
        start = (page - 1) * page_size
        return PageResult(rows=[dict(r) for r in self.rows[start:start + page_size]], total=len(self.rows))


def make_rows(count: int, *, prefix: str = "ITEM") -> list[dict[str, Any]]:
    return [
        {
            "MTRL": str(1000 + i),
            "CODE": f"{prefix}-{i:04d}",
            "DESC": f"Item {i}",
            "RETAILPRICE": "9.90",
            "Stock QTY": "3",
            "COMMECATEGORY NAME": "Parent --> Child",
        }
        for i in range(count)
    ]


@pytest.fixture()
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture()
def list_source() -> Callable[[list[RawRow]], ListRowSource]:
    return ListRowSource


@pytest.fixture()
def row_factory() -> Callable[..., list[dict[str, Any]]]:
    return make_rows


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
        monkeypatch.delenv("SOFTONE_USERNAME", raising=False)
        monkeypatch.delenv("SOFTONE_PASSWORD", raising=False)
        reset_logging()
        yield p
        reset_logging()


@pytest.fixture()
def items_csv(temp_workdir: Path) -> Path:
    path = temp_workdir / "data" / "items.csv"
    path.write_text(
        "MTRL,CODE,DESC,RETAILPRICE,Stock QTY,COMMECATEGORY NAME,BRAND NAME\n"
        "101,SKU-101,Linen Shirt | Blue,29.90,4,Clothing --> Shirts,Acme\n"
        "102,SKU-102,Linen Shirt | Red,29.90,0,Clothing --> Shirts,Acme\n"
        "103,SKU-103,Canvas Bag,15,7,Accessories,\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture()
def sample_config_yaml() -> str:
    return """source:
  type: spreadsheet
  file: ./data/items.csv
  page_size: 2
import:
  batch_size: 2
stale:
  enabled: true
  action: stock_out
timezone: UTC
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str, items_csv: Path) -> Path:
    cfg = temp_workdir / "config" / "sync.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg
