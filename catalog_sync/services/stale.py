from __future__ import annotations

from typing import Protocol

from catalog_sync.logging.sync_logger import EngineLogger
from catalog_sync.models.catalog import META_LAST_SYNC
from catalog_sync.store.base import CatalogStore

"""Stale item handling.

After a completed import, every non-variation product that carries a
SoftOne material id but was not touched by the run (last-sync missing or
older than the run timestamp) is retired: either marked out of stock
(default) or moved to draft. Its gallery is reattached from the media
library by SKU, then its last-sync timestamp is stamped so the walk moves
on. A product whose retirement fails is logged, excluded from the following
queries and picked up again by the next run.
"""

__all__ = [
    "STALE_ACTIONS",
    "ImageAttacher",
    "StaleItemHandler",
]

STALE_ACTIONS = ("stock_out", "draft")


class ImageAttacher(Protocol):
    def attach_gallery_from_sku(self, product_id: int, sku: str) -> None: ...


class StaleItemHandler:
    def __init__(
        self,
        store: CatalogStore,
        logger: EngineLogger,
        *,
        action: str = "stock_out",
        batch_size: int = 50,
        image_attacher: ImageAttacher | None = None,
    ) -> None:
        self.store = store
        self.logger = logger
        self.action = action if action in STALE_ACTIONS else "stock_out"
        self.batch_size = batch_size if batch_size > 0 else 50
        self.image_attacher = image_attacher

    def handle(self, run_timestamp: int) -> int:
        """Retire products not seen by the run; returns the number handled."""
        try:
            run_timestamp = int(run_timestamp)
        except (TypeError, ValueError):
            return 0
        if run_timestamp <= 0:
            return 0

        processed = 0
        failed: set[int] = set()
        seen: set[int] = set()
        while True:
            ids = self.store.find_stale_product_ids(run_timestamp, self.batch_size, exclude=sorted(failed))
            fresh = [pid for pid in ids if pid not in seen]
            if not fresh:
                # empty batch, or only ids whose last-sync stamp did not stick
                break
            for product_id in fresh:
                seen.add(product_id)
                processed += 1
                try:
                    with self.store.savepoint():
                        self._retire(product_id, run_timestamp)
                except Exception as e:
                    failed.add(product_id)
                    self.logger.log(
                        "error",
                        "Failed to mark product as stale",
                        {
                            "product_id": product_id,
                            "reason": str(e),
                            "error_type": e.__class__.__name__,
                            "event": "stale_failed",
                        },
                    )

        if processed > 0:
            self.logger.log(
                "info",
                f"Handled {processed} stale Softone products.",
                {"action": self.action, "timestamp": run_timestamp, "batch_size": self.batch_size},
            )
        return processed

    def _retire(self, product_id: int, run_timestamp: int) -> None:
        product = self.store.load_product(product_id)
        if product is None:
            self.logger.log(
                "warning", "Unable to load product while marking as stale.", {"product_id": product_id}
            )
            self.store.update_meta(product_id, META_LAST_SYNC, run_timestamp)
            return

        if self.action == "draft":
            product.status = "draft"
        else:
            product.status = "publish"
            product.stock_status = "outofstock"
        self.store.save_product(product)

        sku = (product.sku or "").strip()
        if sku and self.image_attacher is not None:
            self.image_attacher.attach_gallery_from_sku(product_id, sku)

        self.store.update_meta(product_id, META_LAST_SYNC, run_timestamp)
        self.logger.log(
            "info",
            "Marked product as stale following Softone sync run.",
            {"product_id": product_id, "action": self.action},
        )
