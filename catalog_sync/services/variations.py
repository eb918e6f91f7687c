from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from catalog_sync.logging.sync_logger import EngineLogger
from catalog_sync.models.catalog import (
    META_LAST_SYNC,
    META_MTRL,
    META_VARIATION_PARENT,
    CatalogProduct,
    PendingColourSyncEntry,
    PendingVariationEntry,
    ProductAttribute,
    ProductKind,
)
from catalog_sync.services.related_items import RelatedItemResolver
from catalog_sync.store.base import CatalogStore, CatalogStoreError

"""Variant aggregation.

Two queues are filled while rows are imported and drained once per batch:

* single-product variations: a product becomes a variable product holding
  one colour variation built from its own row;
* colour syncs: a family parent gathers its related materials (other
  simple products) as colour variations; each migrated source is moved to
  draft and remembers the parent it was folded into.

Both paths share one reconciliation routine. Each entry runs inside a store
savepoint; a failing entry is logged with ``product_id`` and ``reason`` and
skipped, and the rest of the queue proceeds.
"""

__all__ = [
    "VariantAggregator",
    "VariationError",
]


class VariationError(Exception):
    def __init__(self, reason: str, message: str = "") -> None:
        super().__init__(message or reason)
        self.reason = reason


@dataclass(frozen=True)
class _VariationSpec:
    colour_term_id: int
    sku: str
    price: str
    stock: int | None
    mtrl: str
    backorders: str = "no"
    additional_attributes: dict[str, list[int]] = field(default_factory=dict)


def _stock_status(stock: int | None, backorders: str) -> str:
    if stock is None or stock > 0:
        return "instock"
    return "onbackorder" if backorders in ("notify", "yes") else "outofstock"


def _union(target: list[int], values: Iterable[int]) -> bool:
    changed = False
    for value in values:
        if value not in target:
            target.append(value)
            changed = True
    return changed


class VariantAggregator:
    def __init__(
        self,
        store: CatalogStore,
        logger: EngineLogger,
        related: RelatedItemResolver | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.logger = logger
        self.related = related or RelatedItemResolver(store, logger)
        self.clock = clock
        self._single_queue: dict[int, dict[tuple[int, str], PendingVariationEntry]] = {}
        self._colour_queue: dict[int, PendingColourSyncEntry] = {}

    # ------------------------------------------------------------------ queues
    @property
    def pending_single_variations(self) -> list[PendingVariationEntry]:
        return [e for entries in self._single_queue.values() for e in entries.values()]

    @property
    def pending_colour_syncs(self) -> list[PendingColourSyncEntry]:
        return list(self._colour_queue.values())

    def reset(self) -> None:
        self._single_queue.clear()
        self._colour_queue.clear()

    def queue_single_product_variation(
        self,
        product_id: int,
        colour_term_id: int,
        colour_taxonomy: str,
        sku: str,
        price: str,
        stock: int | None,
        mtrl: str,
        should_backorder: bool,
        additional_attributes: dict[str, list[int]] | None = None,
    ) -> None:
        entry = PendingVariationEntry(
            product_id=int(product_id),
            colour_term_id=int(colour_term_id),
            colour_taxonomy=colour_taxonomy,
            sku=sku,
            price=str(price),
            stock=stock,
            mtrl=mtrl,
            should_backorder=bool(should_backorder),
            additional_attributes=tuple(
                (tax, tuple(ids)) for tax, ids in sorted((additional_attributes or {}).items())
            ),
        )
        # a later row for the same colour/material replaces the earlier one
        self._single_queue.setdefault(entry.product_id, {})[(entry.colour_term_id, mtrl)] = entry

    def queue_colour_variation_sync(
        self, product_id: int, mtrl: str, related_item_mtrls: Iterable[str], colour_taxonomy: str
    ) -> None:
        family = self.related.collect_related_family(product_id, mtrl, related_item_mtrls)
        existing = self._colour_queue.get(product_id)
        if existing is not None:
            existing.related_item_mtrls.extend(m for m in family if m not in existing.related_item_mtrls)
            return
        self._colour_queue[product_id] = PendingColourSyncEntry(
            product_id=int(product_id), mtrl=mtrl, related_item_mtrls=family, colour_taxonomy=colour_taxonomy
        )

    # ------------------------------------------------------------------ draining
    def _report(self, product_id: int, reason: str, message: str) -> None:
        self.logger.log(
            "warning",
            f"Variation sync skipped: {message}",
            {"product_id": product_id, "reason": reason, "event": "variation_skipped"},
        )

    def process_pending_single_product_variations(self) -> int:
        queue, self._single_queue = self._single_queue, {}
        written = 0
        for product_id, entries in queue.items():
            by_taxonomy: dict[str, list[_VariationSpec]] = {}
            for entry in entries.values():
                by_taxonomy.setdefault(entry.colour_taxonomy, []).append(
                    _VariationSpec(
                        colour_term_id=entry.colour_term_id,
                        sku=entry.sku,
                        price=entry.price,
                        stock=entry.stock,
                        mtrl=entry.mtrl,
                        backorders="notify" if entry.should_backorder else "no",
                        additional_attributes={tax: list(ids) for tax, ids in entry.additional_attributes},
                    )
                )
            for taxonomy, specs in by_taxonomy.items():
                written += self._guarded_apply(product_id, specs, taxonomy)
        return written

    def process_pending_colour_variation_syncs(self) -> int:
        queue, self._colour_queue = self._colour_queue, {}
        written = 0
        for entry in queue.values():
            try:
                with self.store.savepoint():
                    written += self._sync_colour_family(entry)
            except VariationError as e:
                self._report(entry.product_id, e.reason, str(e))
            except CatalogStoreError as e:
                self._report(entry.product_id, "store_error", str(e))
        return written

    def _sync_colour_family(self, entry: PendingColourSyncEntry) -> int:
        specs, sources = self._collect_sources(entry)
        if not specs:
            return 0
        created = self._apply_variation_group(entry.product_id, specs, entry.colour_taxonomy)
        if created:
            self._draft_sources(entry.product_id, sources)
        return created

    def _guarded_apply(self, product_id: int, specs: list[_VariationSpec], taxonomy: str) -> int:
        try:
            with self.store.savepoint():
                return self._apply_variation_group(product_id, specs, taxonomy)
        except VariationError as e:
            self._report(product_id, e.reason, str(e))
        except CatalogStoreError as e:
            self._report(product_id, "store_error", str(e))
        return 0

    def _collect_sources(self, entry: PendingColourSyncEntry) -> tuple[list[_VariationSpec], list[int]]:
        specs: list[_VariationSpec] = []
        sources: list[int] = []
        for mtrl in entry.related_item_mtrls:
            if not mtrl or mtrl == entry.mtrl:
                continue
            source_id = self.store.find_product_id_by_mtrl(mtrl)
            if source_id is None or source_id == entry.product_id:
                continue
            source = self.store.load_product(source_id)
            if source is None or source.kind is not ProductKind.SIMPLE:
                continue
            colour = source.attributes.get(entry.colour_taxonomy)
            if colour is None or not colour.options:
                self._report(source_id, "missing_colour_term", f"material {mtrl} has no colour")
                continue
            specs.append(
                _VariationSpec(
                    colour_term_id=int(colour.options[0]),
                    sku=source.sku,
                    price=source.regular_price,
                    stock=source.stock_quantity if source.manage_stock else None,
                    mtrl=mtrl,
                    backorders=source.backorders,
                    additional_attributes={
                        tax: list(attr.options)
                        for tax, attr in source.attributes.items()
                        if tax != entry.colour_taxonomy and attr.options
                    },
                )
            )
            sources.append(source_id)
        return specs, sources

    def _draft_sources(self, parent_id: int, source_ids: list[int]) -> None:
        for source_id in source_ids:
            source = self.store.load_product(source_id)
            if source is None:
                continue
            if source.status != "draft":
                source.status = "draft"
                self.store.save_product(source)
            self.store.update_meta(source_id, META_VARIATION_PARENT, parent_id)
            self.logger.log(
                "info",
                "Migrated single product into variation",
                {"product_id": source_id, "parent_id": parent_id, "event": "variation_migrated"},
            )

    # ------------------------------------------------------------------ reconciliation
    def _load_fresh(self, product_id: int) -> CatalogProduct | None:
        self.store.invalidate(product_id)
        return self.store.load_product(product_id)

    def _ensure_variable(self, product_id: int) -> CatalogProduct:
        parent = self._load_fresh(product_id)
        if parent is None:
            raise VariationError("parent_not_found", f"product {product_id} not found")
        if parent.is_variation:
            raise VariationError("parent_is_variation", f"product {product_id} is a variation")
        if parent.kind is not ProductKind.VARIABLE:
            parent.kind = ProductKind.VARIABLE
            self.store.save_product(parent)
            parent = self._load_fresh(product_id)
            if parent is None or parent.kind is not ProductKind.VARIABLE:
                raise VariationError("product_not_variable", f"product {product_id} did not convert")
        return parent

    def _apply_variation_group(self, parent_id: int, specs: list[_VariationSpec], taxonomy: str) -> int:
        parent = self._ensure_variable(parent_id)

        resolved = []
        for spec in specs:
            term = self.store.get_term(spec.colour_term_id)
            if term is None:
                self._report(parent_id, "missing_colour_term", f"colour term {spec.colour_term_id} not found")
                continue
            resolved.append((spec, term))
        if not resolved:
            return 0

        changed: set[str] = set()
        colour_attr = parent.attributes.setdefault(
            taxonomy, ProductAttribute(name=taxonomy, visible=True, variation=True)
        )
        colour_attr.variation = True
        if _union(colour_attr.options, (term.id for _, term in resolved)):
            changed.add(taxonomy)
        for spec, _ in resolved:
            for tax, ids in spec.additional_attributes.items():
                attr = parent.attributes.setdefault(tax, ProductAttribute(name=tax, visible=True, variation=True))
                attr.variation = True
                if _union(attr.options, ids):
                    changed.add(tax)
        self.store.save_product(parent)
        for tax in sorted(changed):
            self.store.set_object_terms(parent_id, parent.attributes[tax].options, tax)

        existing = [
            v for v in (self.store.load_product(vid) for vid in self.store.find_variation_ids(parent_id)) if v
        ]
        written = 0
        for spec, term in resolved:
            variation = self._match_variation(existing, taxonomy, term.slug, spec)
            is_new = variation is None
            if variation is None:
                variation = CatalogProduct(kind=ProductKind.VARIATION, parent_id=parent_id)
            variation.name = f"{parent.name} - {term.name}" if parent.name else term.name
            variation.sku = spec.sku
            variation.regular_price = spec.price
            variation.manage_stock = spec.stock is not None
            variation.stock_quantity = spec.stock
            variation.backorders = spec.backorders or "no"
            variation.stock_status = _stock_status(spec.stock, variation.backorders)
            variation.status = "publish"
            attributes = {f"attribute_{taxonomy}": term.slug}
            for tax, ids in spec.additional_attributes.items():
                extra = self.store.get_term(ids[0]) if ids else None
                if extra is not None:
                    attributes[f"attribute_{tax}"] = extra.slug
            variation.variation_attributes = attributes

            if is_new:
                variation.id = self.store.create_product(variation)
                existing.append(variation)
            else:
                self.store.save_product(variation)
            if spec.mtrl:
                self.store.update_meta(variation.id, META_MTRL, spec.mtrl)
            self.store.update_meta(variation.id, META_LAST_SYNC, int(self.clock()))
            written += 1

        self.store.invalidate(parent_id)
        return written

    def _match_variation(
        self, existing: list[CatalogProduct], taxonomy: str, slug: str, spec: _VariationSpec
    ) -> CatalogProduct | None:
        """Existing variation for ``spec``: by colour slug, then mtrl, then SKU."""
        key = f"attribute_{taxonomy}"
        for variation in existing:
            if variation.variation_attributes.get(key) == slug:
                return variation
        if spec.mtrl:
            for variation in existing:
                if self.store.get_meta(variation.id, META_MTRL) == spec.mtrl:
                    return variation
        if spec.sku:
            for variation in existing:
                if variation.sku == spec.sku:
                    return variation
        return None
