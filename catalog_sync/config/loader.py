from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

"""Configuration loader.

Responsibilities:
- Load the YAML config (default config/sync.yml)
- Validate it against the bundled JSON schema (sync_schema.json)
- Apply defaults (page size, batch size, stale action, timezone=UTC)
- Overlay SoftOne credentials from the environment (SOFTONE_*), which
  wins over the file so secrets can live in .env
"""

__all__ = [
    "ConfigError",
    "SourceConfig",
    "ApiConfig",
    "ImportSettings",
    "StaleConfig",
    "DatabaseConfig",
    "SyncConfig",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "load_config",
]

DEFAULT_CONFIG_PATH = Path("config/sync.yml")
SCHEMA_PATH = Path(__file__).with_name("sync_schema.json")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class SourceConfig:
    type: str
    sql_name: str
    params: dict[str, Any] = field(default_factory=dict)
    page_size: int = 250
    max_pages: int | None = None
    file: str | None = None
    sheet: str | None = None


@dataclass(frozen=True)
class ApiConfig:
    endpoint: str
    username: str | None = None
    password: str | None = None
    app_id: str | None = None
    company: str | None = None
    branch: str | None = None
    module: str | None = None
    refid: str | None = None
    timeout: float = 30.0


@dataclass(frozen=True)
class ImportSettings:
    batch_size: int = 25
    force_taxonomy_refresh: bool = False
    variable_products: bool = False
    zero_stock_fallback: bool = False
    backorder_out_of_stock: bool = False
    colour_taxonomy: str = "pa_colour"


@dataclass(frozen=True)
class StaleConfig:
    enabled: bool = True
    action: str = "stock_out"
    batch_size: int = 50


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class SyncConfig:
    source: SourceConfig
    api: ApiConfig | None
    settings: ImportSettings
    stale: StaleConfig
    media_directory: str | None
    timezone: str
    database: DatabaseConfig


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the bundled JSON schema.

    Raises:
        ConfigError: if the schema file is missing or unreadable, or the
            data violates it (missing keys, wrong types, unknown keys).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path)
        suffix = f" (at {location})" if location else ""
        raise ConfigError(f"config validation failed: {e.message}{suffix}") from e


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _build_api(raw: dict[str, Any] | None) -> ApiConfig | None:
    if raw is None:
        return None
    return ApiConfig(
        endpoint=str(raw["endpoint"]).strip(),
        # environment first, then file
        username=os.getenv("SOFTONE_USERNAME") or _opt_str(raw.get("username")),
        password=os.getenv("SOFTONE_PASSWORD") or _opt_str(raw.get("password")),
        app_id=_opt_str(raw.get("app_id")),
        company=_opt_str(raw.get("company")),
        branch=_opt_str(raw.get("branch")),
        module=_opt_str(raw.get("module")),
        refid=_opt_str(raw.get("refid")),
        timeout=float(raw.get("timeout", 30.0)),
    )


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> SyncConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    src_raw = data["source"]
    source = SourceConfig(
        type=src_raw["type"],
        sql_name=src_raw.get("sql_name") or src_raw.get("sheet") or "spreadsheet",
        params=dict(src_raw.get("params") or {}),
        page_size=int(src_raw.get("page_size", 250)),
        max_pages=src_raw.get("max_pages"),
        file=src_raw.get("file"),
        sheet=src_raw.get("sheet"),
    )

    imp_raw = data.get("import") or {}
    settings = ImportSettings(
        batch_size=int(imp_raw.get("batch_size", 25)),
        force_taxonomy_refresh=bool(imp_raw.get("force_taxonomy_refresh", False)),
        variable_products=bool(imp_raw.get("variable_products", False)),
        zero_stock_fallback=bool(imp_raw.get("zero_stock_fallback", False)),
        backorder_out_of_stock=bool(imp_raw.get("backorder_out_of_stock", False)),
        colour_taxonomy=imp_raw.get("colour_taxonomy", "pa_colour"),
    )

    stale_raw = data.get("stale") or {}
    stale = StaleConfig(
        enabled=bool(stale_raw.get("enabled", True)),
        action=stale_raw.get("action", "stock_out"),
        batch_size=int(stale_raw.get("batch_size", 50)),
    )

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )

    return SyncConfig(
        source=source,
        api=_build_api(data.get("api")),
        settings=settings,
        stale=stale,
        media_directory=data.get("media_directory"),
        timezone=data.get("timezone", "UTC"),
        database=db,
    )
