from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

from catalog_sync.config.loader import ImportSettings
from catalog_sync.logging.sync_logger import EngineLogger
from catalog_sync.models.catalog import (
    BRAND_TAXONOMY,
    CATEGORY_TAXONOMY,
    META_BARCODE,
    META_BRAND,
    META_ITEM_CODE,
    META_LAST_SYNC,
    META_MTRL,
    META_PAYLOAD_HASH,
    META_VARIATION_PARENT,
    SIZE_TAXONOMY,
    CatalogProduct,
    ProductAttribute,
    ProductKind,
    Term,
)
from catalog_sync.models.rows import NormalizedRow, RawRow, normalize_row
from catalog_sync.services.categories import CategoryHierarchyBuilder
from catalog_sync.services.related_items import RelatedItemResolver
from catalog_sync.store.base import CatalogStore, CatalogStoreError

if TYPE_CHECKING:
    from catalog_sync.services.variations import VariantAggregator

"""Row importer: create / update / skip decision for a single feed row.

Lookup is by SoftOne material id first, then by SKU (variations excluded).
An existing product whose stored payload hash matches the row is skipped
without touching taxonomies; only its last-sync stamp is refreshed so the
stale pass leaves it alone. ``force_refresh`` bypasses that short-circuit.
"""

__all__ = [
    "ImportOutcome",
    "RowImporter",
    "format_price",
]


class ImportOutcome(Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


def format_price(price: float | None) -> str:
    return "" if price is None else f"{price:.2f}"


class RowImporter:
    def __init__(
        self,
        store: CatalogStore,
        logger: EngineLogger,
        *,
        settings: ImportSettings | None = None,
        categories: CategoryHierarchyBuilder | None = None,
        related: RelatedItemResolver | None = None,
        variations: VariantAggregator | None = None,
        force_refresh: bool | None = None,
    ) -> None:
        self.store = store
        self.logger = logger
        self.settings = settings or ImportSettings()
        self.categories = categories or CategoryHierarchyBuilder(store)
        self.related = related or RelatedItemResolver(store, logger)
        self.variations = variations
        self.force_refresh = (
            self.settings.force_taxonomy_refresh if force_refresh is None else bool(force_refresh)
        )

    def reset(self) -> None:
        self.categories.reset()

    # ------------------------------------------------------------------ entry point
    def import_row(self, row: NormalizedRow | RawRow, run_timestamp: int) -> ImportOutcome:
        if not isinstance(row, NormalizedRow):
            row = normalize_row(row)

        product_id = self.store.find_product_id_by_mtrl(row.mtrl) if row.mtrl else None
        if product_id is None:
            product_id = self.store.find_product_id_by_sku(row.sku)

        payload_hash = row.payload_hash()
        if product_id is not None:
            stored_hash = self.store.get_meta(product_id, META_PAYLOAD_HASH)
            if stored_hash == payload_hash and not self.force_refresh:
                self.store.update_meta(product_id, META_LAST_SYNC, int(run_timestamp))
                self._sync_relationships(product_id, row)
                return ImportOutcome.SKIPPED
            product = self.store.load_product(product_id)
            if product is None:
                raise CatalogStoreError(f"product {product_id} vanished during import")
            outcome = ImportOutcome.UPDATED
        else:
            product = CatalogProduct()
            outcome = ImportOutcome.CREATED

        category_ids = self.categories.prepare_category_ids(row)
        colour_term, size_term = self._attribute_terms(row)
        self._apply_fields(product, row, category_ids, colour_term, size_term)

        if outcome is ImportOutcome.CREATED:
            product.id = self.store.create_product(product)
        else:
            self.store.save_product(product)
        pid = product.id

        self.store.set_object_terms(pid, category_ids, CATEGORY_TAXONOMY)
        for taxonomy, attribute in product.attributes.items():
            if attribute.options:
                self.store.set_object_terms(pid, attribute.options, taxonomy)
        if row.brand:
            brand_term = self.store.ensure_term(row.brand, BRAND_TAXONOMY)
            self.store.set_object_terms(pid, [brand_term.id], BRAND_TAXONOMY)

        self._write_meta(pid, row, payload_hash, int(run_timestamp))
        self._sync_relationships(pid, row)
        self._queue_variations(pid, row, colour_term, size_term)
        return outcome

    # ------------------------------------------------------------------ helpers
    def _ensure_attribute_term(self, label: str, taxonomy: str) -> Term:
        """Reuse an existing term case-insensitively, renaming it to ``label``."""
        existing = self.store.find_term(label, taxonomy)
        if existing is None:
            return self.store.ensure_term(label, taxonomy)
        if existing.name != label:
            return self.store.rename_term(existing.id, label)
        return existing

    def _attribute_terms(self, row: NormalizedRow) -> tuple[Term | None, Term | None]:
        colour = self._ensure_attribute_term(row.colour, self.settings.colour_taxonomy) if row.colour else None
        size = self._ensure_attribute_term(row.size, SIZE_TAXONOMY) if row.size else None
        return colour, size

    def _set_attribute(self, product: CatalogProduct, taxonomy: str, term: Term, variation: bool) -> None:
        current = product.attributes.get(taxonomy)
        if product.kind is ProductKind.VARIABLE and current is not None:
            # variable parents collect options from all their variations
            if term.id not in current.options:
                current.options.append(term.id)
            current.variation = current.variation or variation
            return
        product.attributes[taxonomy] = ProductAttribute(
            name=taxonomy, options=[term.id], visible=True, variation=variation
        )

    def _apply_fields(
        self,
        product: CatalogProduct,
        row: NormalizedRow,
        category_ids: list[int],
        colour_term: Term | None,
        size_term: Term | None,
    ) -> None:
        product.name = row.name
        product.sku = row.sku
        product.regular_price = format_price(row.price)
        product.category_ids = list(category_ids)
        self._apply_stock(product, row.stock)

        migrated = product.id and self.store.get_meta(product.id, META_VARIATION_PARENT)
        product.status = "draft" if migrated else "publish"

        if colour_term is not None:
            self._set_attribute(product, self.settings.colour_taxonomy, colour_term, variation=True)
        if size_term is not None:
            self._set_attribute(product, SIZE_TAXONOMY, size_term, variation=False)

    def _apply_stock(self, product: CatalogProduct, stock: float | None) -> None:
        if stock is None:
            product.manage_stock = False
            product.stock_quantity = None
            product.stock_status = "instock"
            product.backorders = "no"
            return
        quantity = self.stock_quantity(stock)
        product.manage_stock = True
        product.stock_quantity = quantity
        if quantity > 0:
            product.stock_status = "instock"
            product.backorders = "no"
        elif self.settings.backorder_out_of_stock:
            product.stock_status = "onbackorder"
            product.backorders = "notify"
        else:
            product.stock_status = "outofstock"
            product.backorders = "no"

    def stock_quantity(self, stock: float | None) -> int | None:
        if stock is None:
            return None
        quantity = max(0, int(round(stock)))
        if quantity == 0 and self.settings.zero_stock_fallback:
            quantity = 1
        return quantity

    def _write_meta(self, pid: int, row: NormalizedRow, payload_hash: str, run_timestamp: int) -> None:
        values: dict[str, Any] = {
            META_MTRL: row.mtrl,
            META_BARCODE: row.barcode,
            META_BRAND: row.brand,
            META_ITEM_CODE: row.code,
        }
        for key, value in values.items():
            if value:
                self.store.update_meta(pid, key, value)
        self.store.update_meta(pid, META_PAYLOAD_HASH, payload_hash)
        self.store.update_meta(pid, META_LAST_SYNC, run_timestamp)

    def _sync_relationships(self, pid: int, row: NormalizedRow) -> None:
        self.related.sync_related_item_relationships(
            pid, row.mtrl, row.related_item_mtrl, row.related_item_mtrls, row.received_related_payload
        )

    def _queue_variations(
        self, pid: int, row: NormalizedRow, colour_term: Term | None, size_term: Term | None
    ) -> None:
        if not self.settings.variable_products or self.variations is None or colour_term is None:
            return
        taxonomy = self.settings.colour_taxonomy

        migrated_to = self.store.get_meta(pid, META_VARIATION_PARENT)
        if migrated_to:
            # already folded into a parent; refresh that variation instead
            parent_id = int(migrated_to)
            parent_mtrl = str(self.store.get_meta(parent_id, META_MTRL) or "")
            self.variations.queue_colour_variation_sync(parent_id, parent_mtrl, [row.mtrl], taxonomy)
            return

        pointer = row.related_item_mtrl.strip()
        if pointer and pointer != row.mtrl:
            # a child row: the family parent aggregates it during its colour sync
            parent_id = self.store.find_product_id_by_mtrl(pointer)
            if parent_id is not None and parent_id != pid:
                self.variations.queue_colour_variation_sync(
                    parent_id, pointer, [row.mtrl, *row.related_item_mtrls], taxonomy
                )
            return

        quantity = self.stock_quantity(row.stock)
        additional = {SIZE_TAXONOMY: [size_term.id]} if size_term is not None else None
        self.variations.queue_single_product_variation(
            pid,
            colour_term.id,
            taxonomy,
            row.sku,
            format_price(row.price),
            quantity,
            row.mtrl,
            bool(self.settings.backorder_out_of_stock and quantity == 0),
            additional,
        )
        if row.related_item_mtrls:
            self.variations.queue_colour_variation_sync(pid, row.mtrl, list(row.related_item_mtrls), taxonomy)
