from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv
from psycopg2.extensions import TRANSACTION_STATUS_INERROR

from catalog_sync.config.loader import DEFAULT_CONFIG_PATH, ConfigError, SyncConfig, load_config
from catalog_sync.logging.activity_log import ActivityLogBuffer
from catalog_sync.logging.init import enable_debug, log_summary, setup_logging
from catalog_sync.logging.sync_logger import SyncLogger
from catalog_sync.models.import_state import BatchResult, ImportRunResult, ImportState
from catalog_sync.models.rows import RowValidationError, normalize_row
from catalog_sync.services.coordinator import build_coordinator
from catalog_sync.services.summary import render_summary_line
from catalog_sync.sources.base import RowSource, RowSourceError
from catalog_sync.sources.softone import SoftOneClient, SoftOneRowSource
from catalog_sync.sources.spreadsheet import SpreadsheetRowSource
from catalog_sync.store.base import CatalogStore, CatalogStoreError
from catalog_sync.store.memory import InMemoryCatalogStore
from catalog_sync.store.postgres import PostgresCatalogStore

"""CLI entrypoint.

Commands:
- run      full import: batches until the feed is exhausted, then the stale pass
- batch    a single batch; the ImportState is kept in --state-file between calls
- inspect  print the first rows of page 1 (raw and normalized) and exit

Exit codes: 0 success, 1 fatal (config / source / database), 2 completed
with row-level errors.
"""

EXIT_SUCCESS_ALL = 0
EXIT_FATAL = 1
EXIT_PARTIAL_FAILURE = 2

DEFAULT_STATE_FILE = Path(".catalog-sync-state.json")


class DatabaseUnavailable(Exception):
    """Raised when no database connection can be opened."""


@contextmanager
def _db_connection(cfg: SyncConfig) -> Iterator[Any]:
    """Provide a psycopg2 cursor; commit on success, roll back on error.

    Connection settings, first match wins:
        1. DATABASE_URL / PGDSN, then the config ``database.dsn``
        2. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE, falling back
           to the config ``database`` section per field
    """
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if not dsn:
        host = os.getenv("PGHOST", db_cfg.host or "localhost")
        port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
        user = os.getenv("PGUSER", db_cfg.user or "postgres")
        password = os.getenv("PGPASSWORD", db_cfg.password or "")
        database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
        dsn = f"host={host} port={port} user={user} dbname={database}"
        if password:
            dsn += f" password={password}"

    try:
        conn = psycopg2.connect(dsn)
    except psycopg2.Error as e:
        raise DatabaseUnavailable(str(e)) from e
    conn.autocommit = False
    cur = conn.cursor()
    try:
        yield cur
        if conn.get_transaction_status() == TRANSACTION_STATUS_INERROR:
            # the server would turn this commit into a silent rollback
            raise CatalogStoreError("transaction aborted; batch rolled back")
        try:
            conn.commit()
        except psycopg2.Error as e:
            raise CatalogStoreError(f"commit failed: {e}") from e
    except Exception:
        conn.rollback()
        raise
    finally:
        cur.close()
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env via python-dotenv; values there win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="catalog-sync", description="SoftOne -> catalog item synchronization")
    p.add_argument("command", nargs="?", choices=("run", "batch", "inspect"), default="run")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="YAML config path")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--dry-run", action="store_true", help="Use an in-memory catalog (no database writes)")
    p.add_argument("--force-refresh", action="store_true", help="Re-apply rows even when unchanged")
    p.add_argument("--batch-size", type=int, default=None, help="Rows per batch (overrides config)")
    p.add_argument("--state-file", type=Path, default=DEFAULT_STATE_FILE, help="ImportState JSON for 'batch'")
    p.add_argument("--reset", action="store_true", help="Discard the saved state and start a new run")
    return p.parse_args(argv)


def _build_source(cfg: SyncConfig) -> RowSource:
    if cfg.source.type == "spreadsheet":
        return SpreadsheetRowSource(Path(cfg.source.file or ""), cfg.source.sheet)
    if cfg.api is None:
        raise ConfigError("api section is required for the softone source")
    return SoftOneRowSource(SoftOneClient(cfg.api))


def _inspect_data(cfg: SyncConfig, source: RowSource) -> int:
    try:
        page = source.fetch_page(cfg.source.sql_name, cfg.source.params, 1, 3)
    except RowSourceError as e:
        print(f"inspect: source error: {e}")
        return EXIT_FATAL
    print(f"SOURCE: {cfg.source.type} sql_name={cfg.source.sql_name} total={page.total}")
    for raw in page.rows:
        print(f"  raw={json.dumps(raw, ensure_ascii=False, default=str)}")
        try:
            row = normalize_row(raw)
        except RowValidationError as e:
            print(f"  normalized=<invalid: {e}>")
            continue
        print(
            f"  normalized mtrl={row.mtrl} sku={row.sku} name={row.name!r} price={row.price} "
            f"stock={row.stock} colour={row.colour!r} categories={row.category_path!r}/{row.subcategory_path!r}"
        )
    return EXIT_SUCCESS_ALL


def _read_state(path: Path) -> ImportState | None:
    if not path.exists():
        return None
    try:
        return ImportState.from_dict(json.loads(path.read_text(encoding="utf-8")))
    except (ValueError, OSError) as e:
        raise ConfigError(f"unreadable state file {path}: {e}") from e


def _write_state(path: Path, state: ImportState) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(state.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")


def _execute(
    args: argparse.Namespace, cfg: SyncConfig, source: RowSource, store: CatalogStore, sync_logger: SyncLogger
) -> ImportRunResult | BatchResult:
    coordinator = build_coordinator(cfg, source, store, sync_logger)
    batch_size = args.batch_size or cfg.settings.batch_size
    force = True if args.force_refresh else None

    if args.command == "batch":
        state = None if args.reset else _read_state(args.state_file)
        if state is None or state.is_complete:
            state = coordinator.begin_async_import(force_refresh=force)
        return coordinator.run_async_import_batch(state, batch_size)
    return coordinator.run_full_import(batch_size, force_refresh=force)


def _run_live(
    args: argparse.Namespace, cfg: SyncConfig, source: RowSource, sync_logger: SyncLogger
) -> ImportRunResult | BatchResult:
    with _db_connection(cfg) as cur:
        store = PostgresCatalogStore(cur)
        store.ensure_schema()
        return _execute(args, cfg, source, store, sync_logger)


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None only: an explicit [] from tests must not pick up pytest's own argv
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    try:
        cfg = load_config(args.config)
        source = _build_source(cfg)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.debug:
        enable_debug(logger)
        logger.debug("debug mode enabled")

    if args.command == "inspect":
        return _inspect_data(cfg, source)

    activity = ActivityLogBuffer()
    sync_logger = SyncLogger("item_sync", activity=activity)
    db_mode = "memory"
    try:
        if args.dry_run or os.getenv("DISABLE_DB_CONNECT") == "1":
            logger.debug("database disabled -> in-memory catalog")
            outcome = _execute(args, cfg, source, InMemoryCatalogStore(), sync_logger)
        else:
            try:
                outcome = _run_live(args, cfg, source, sync_logger)
                db_mode = "postgres"
            except DatabaseUnavailable as db_e:
                logger.warning(f"DB connection failed -> in-memory catalog: {db_e}")
                outcome = _execute(args, cfg, source, InMemoryCatalogStore(), sync_logger)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL
    except RowSourceError as e:
        logger.error(f"source: {e}")
        return EXIT_FATAL
    except CatalogStoreError as e:
        logger.error(f"catalog store: {e}")
        return EXIT_FATAL
    finally:
        log_path = activity.flush()
        if log_path is not None:
            logger.info(f"activity log written: {log_path}")

    if args.command == "batch":
        # only after the commit, so a rolled-back batch is replayed from the old cursor
        _write_state(args.state_file, outcome.state)

    logger.info(f"mode={db_mode} command={args.command}")
    summary_line = render_summary_line(outcome)
    # log_summary adds the "SUMMARY " label itself
    log_summary(summary_line[len("SUMMARY "):])

    if outcome.stats.errors > 0:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
