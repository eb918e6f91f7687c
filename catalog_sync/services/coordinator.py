from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from catalog_sync.config.loader import ImportSettings, SyncConfig
from catalog_sync.logging.sync_logger import EngineLogger, SyncLogger
from catalog_sync.models.import_state import (
    BatchResult,
    ImportRunResult,
    ImportState,
    ImportStats,
    ImportStatus,
)
from catalog_sync.services.categories import CategoryHierarchyBuilder
from catalog_sync.services.image_attacher import MediaDirectoryImageAttacher
from catalog_sync.services.importer import RowImporter
from catalog_sync.services.pagination import RowSequencer, SequencedRow
from catalog_sync.services.progress import ProgressTracker
from catalog_sync.services.related_items import RelatedItemResolver
from catalog_sync.services.stale import StaleItemHandler
from catalog_sync.services.variations import VariantAggregator
from catalog_sync.sources.base import RowSource
from catalog_sync.store.base import CatalogStore

"""Async (resumable) import coordination.

A run is split into batches. Each batch call receives the caller-owned
ImportState, works on a private copy, imports at most ``batch_size`` rows,
drains the variation queues, and returns the advanced state in a
BatchResult. The run is complete only once the row source is exhausted;
the stale pass runs at that point and the page-hash window is emptied.

If the row source fails mid-batch the queued variation work is still
drained, then the error propagates and the caller's state object is left
untouched, so the same batch can simply be retried. Each row is applied
inside a store savepoint.
"""

__all__ = [
    "AsyncImportCoordinator",
    "build_coordinator",
]

logger = logging.getLogger(__name__)


class AsyncImportCoordinator:
    def __init__(
        self,
        source: RowSource,
        store: CatalogStore,
        *,
        sql_name: str,
        params: dict[str, Any] | None = None,
        page_size: int = 250,
        max_pages: int | None = None,
        settings: ImportSettings | None = None,
        logger: EngineLogger | None = None,
        importer: RowImporter | None = None,
        variations: VariantAggregator | None = None,
        stale_handler: StaleItemHandler | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.source = source
        self.store = store
        self.sql_name = sql_name
        self.params = dict(params or {})
        self.page_size = page_size if page_size > 0 else 1
        self.max_pages = max_pages
        self.settings = settings or ImportSettings()
        self.logger = logger or SyncLogger()
        self.clock = clock
        self.categories = CategoryHierarchyBuilder(store)
        self.related = RelatedItemResolver(store, self.logger)
        self.variations = variations or VariantAggregator(store, self.logger, self.related, clock=clock)
        self.stale_handler = stale_handler
        self._importer = importer

    # ------------------------------------------------------------------ run lifecycle
    def begin_async_import(
        self, params: dict[str, Any] | None = None, force_refresh: bool | None = None
    ) -> ImportState:
        """Start a new run; no rows are imported here."""
        force = self.settings.force_taxonomy_refresh if force_refresh is None else bool(force_refresh)
        state = ImportState.new(
            run_timestamp=int(self.clock()),
            sql_name=self.sql_name,
            params={**self.params, **(params or {})},
            page_size=self.page_size,
            force_refresh=force,
        )
        self.logger.log(
            "info",
            "Starting SoftOne item import",
            {"run_id": state.run_id, "sql_name": state.sql_name, "force_refresh": force, "event": "run_started"},
        )
        return state

    def _importer_for(self, state: ImportState) -> RowImporter:
        if self._importer is not None:
            return self._importer
        return RowImporter(
            self.store,
            self.logger,
            settings=self.settings,
            categories=self.categories,
            related=self.related,
            variations=self.variations,
            force_refresh=state.force_refresh,
        )

    def _reset_caches(self, importer: RowImporter) -> None:
        self.categories.reset()
        reset = getattr(importer, "reset", None)
        if callable(reset):
            reset()

    def run_async_import_batch(self, state: ImportState, batch_size: int) -> BatchResult:
        """Import the next batch of rows from ``state``."""
        state = copy.deepcopy(state)
        batch = ImportStats()
        if state.is_complete:
            return BatchResult(state, batch, True, state.stats, list(state.warnings))
        if state.status is ImportStatus.NOT_STARTED:
            state.status = ImportStatus.RUNNING

        limit = batch_size if batch_size > 0 else 1
        importer = self._importer_for(state)
        self._reset_caches(importer)

        sequencer = RowSequencer(
            self.source,
            sql_name=state.sql_name,
            params=state.params,
            page_size=state.page_size,
            logger=self.logger,
            max_pages=self.max_pages,
        )
        rows = sequencer.iter_rows(state)
        exhausted = False
        try:
            while batch.processed < limit:
                try:
                    item = next(rows)
                except StopIteration:
                    exhausted = True
                    break
                self._import_one(importer, item, state, batch)
        finally:
            rows.close()
            # entries queued by rows already applied are drained even when the source fails
            self.variations.process_pending_single_product_variations()
            self.variations.process_pending_colour_variation_syncs()

        if exhausted:
            self._complete(state, batch)
        state.stats.merge(batch)

        logger.debug(
            f"batch run_id={state.run_id} processed={batch.processed} page={state.page} "
            f"offset={state.offset} complete={exhausted}"
        )
        return BatchResult(state, batch, exhausted, state.stats, list(state.warnings))

    def _import_one(self, importer: RowImporter, item: SequencedRow, state: ImportState, batch: ImportStats) -> None:
        if item.row is None:
            batch.processed += 1
            batch.skipped += 1
            batch.errors += 1
            message = f"Skipping invalid row (page={item.page}, index={item.index}): {item.error}"
            self.logger.log("warning", message, {"page": item.page, "index": item.index, "event": "row_invalid"})
            state.add_warning(message)
            return
        try:
            with self.store.savepoint():
                outcome = importer.import_row(item.row, state.run_timestamp)
        except Exception as e:
            batch.processed += 1
            batch.skipped += 1
            batch.errors += 1
            message = f"Failed to import row {item.row.identity} (page={item.page}, index={item.index}): {e}"
            self.logger.log(
                "error",
                message,
                {"mtrl": item.row.mtrl, "sku": item.row.sku, "error_type": e.__class__.__name__, "event": "row_failed"},
            )
            state.add_warning(message)
            # terms created by the failed row may have been rolled back
            self._reset_caches(importer)
            return
        batch.record(outcome.value)

    def _complete(self, state: ImportState, batch: ImportStats) -> None:
        if self.stale_handler is not None:
            batch.stale += self.stale_handler.handle(state.run_timestamp)
        state.page_hashes.clear()
        state.current_page_hash = None
        state.status = ImportStatus.COMPLETE
        totals = copy.copy(state.stats)
        totals.merge(batch)
        self.logger.log(
            "info",
            "SoftOne item import complete",
            {"run_id": state.run_id, **totals.to_dict(), "event": "run_complete"},
        )

    def run_full_import(
        self,
        batch_size: int,
        *,
        params: dict[str, Any] | None = None,
        force_refresh: bool | None = None,
        state: ImportState | None = None,
        max_batches: int | None = None,
    ) -> ImportRunResult:
        """Drive batches until the run completes (or ``max_batches`` is hit)."""
        start = datetime.now(UTC)
        state = state or self.begin_async_import(params, force_refresh)
        batches = 0
        result = BatchResult(state, ImportStats(), state.is_complete, state.stats, list(state.warnings))
        with ProgressTracker(None, description="Importing items") as progress:
            while not result.complete:
                if max_batches is not None and batches >= max_batches:
                    break
                result = self.run_async_import_batch(result.state, batch_size)
                batches += 1
                progress.advance(result.batch.processed)
                progress.set_postfix(
                    created=result.stats.created, updated=result.stats.updated, errors=result.stats.errors
                )
        end = datetime.now(UTC)
        return ImportRunResult(
            result=result,
            batches=batches,
            start_time=start,
            end_time=end,
            elapsed_seconds=(end - start).total_seconds(),
        )


def build_coordinator(
    config: SyncConfig,
    source: RowSource,
    store: CatalogStore,
    sync_logger: SyncLogger,
) -> AsyncImportCoordinator:
    """Wire a coordinator (with stale handling and image attacher) from config."""
    stale_handler = None
    if config.stale.enabled:
        attacher = (
            MediaDirectoryImageAttacher(store, Path(config.media_directory)) if config.media_directory else None
        )
        stale_handler = StaleItemHandler(
            store,
            sync_logger.child("stale_items"),
            action=config.stale.action,
            batch_size=config.stale.batch_size,
            image_attacher=attacher,
        )
    return AsyncImportCoordinator(
        source,
        store,
        sql_name=config.source.sql_name,
        params=config.source.params,
        page_size=config.source.page_size,
        max_pages=config.source.max_pages,
        settings=config.settings,
        logger=sync_logger,
        stale_handler=stale_handler,
    )
