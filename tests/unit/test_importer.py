from __future__ import annotations

import pytest

from catalog_sync.config.loader import ImportSettings
from catalog_sync.models.catalog import (
    BRAND_TAXONOMY,
    CATEGORY_TAXONOMY,
    META_BRAND,
    META_LAST_SYNC,
    META_MTRL,
    META_PAYLOAD_HASH,
    META_RELATED_ITEM_MTRL,
    META_VARIATION_PARENT,
    SIZE_TAXONOMY,
    CatalogProduct,
)
from catalog_sync.models.rows import normalize_row
from catalog_sync.services.importer import ImportOutcome, RowImporter, format_price
from catalog_sync.services.variations import VariantAggregator
from catalog_sync.store.memory import InMemoryCatalogStore

TS = 1_700_000_000

ROW = {
    "MTRL": "501",
    "CODE": "SHIRT-1",
    "DESC": "Linen Shirt",
    "RETAILPRICE": "29.9",
    "Stock QTY": "4",
    "COMMECATEGORY NAME": "Clothing --> Shirts",
}


def _importer(store, logger, **settings) -> RowImporter:
    return RowImporter(store, logger, settings=ImportSettings(**settings))


class TestCreateUpdateSkip:
    def test_create_new_product(self, recording_logger):
        store = InMemoryCatalogStore()

        outcome = _importer(store, recording_logger).import_row(normalize_row(ROW), TS)

        assert outcome is ImportOutcome.CREATED
        pid = store.find_product_id_by_mtrl("501")
        product = store.load_product(pid)
        assert product.name == "Linen Shirt"
        assert product.sku == "SHIRT-1"
        assert product.regular_price == "29.90"
        assert product.manage_stock and product.stock_quantity == 4
        assert product.status == "publish"
        assert product.category_ids == [1, 2]
        assert store.get_meta(pid, META_MTRL) == "501"
        assert store.get_meta(pid, META_LAST_SYNC) == TS
        assert store.get_meta(pid, META_PAYLOAD_HASH) == normalize_row(ROW).payload_hash()
        assert store.assignments_for(CATEGORY_TAXONOMY) == [(pid, [1, 2])]

    def test_unchanged_row_is_skipped_without_taxonomy_calls(self, recording_logger):
        store = InMemoryCatalogStore()
        importer = _importer(store, recording_logger)
        importer.import_row(ROW, TS)
        store.term_assignments.clear()

        outcome = importer.import_row(ROW, TS + 60)

        assert outcome is ImportOutcome.SKIPPED
        assert store.term_assignments == []
        assert store.get_meta(store.find_product_id_by_mtrl("501"), META_LAST_SYNC) == TS + 60

    def test_force_refresh_reapplies_categories_once(self, recording_logger):
        store = InMemoryCatalogStore()
        _importer(store, recording_logger).import_row(ROW, TS)
        pid = store.find_product_id_by_mtrl("501")
        first_ids = store.load_product(pid).category_ids
        store.term_assignments.clear()

        forced = RowImporter(store, recording_logger, force_refresh=True)
        outcome = forced.import_row(ROW, TS + 60)

        assert outcome is ImportOutcome.UPDATED
        assert store.term_assignments == [(pid, CATEGORY_TAXONOMY, first_ids)]

    def test_changed_row_is_updated(self, recording_logger):
        store = InMemoryCatalogStore()
        importer = _importer(store, recording_logger)
        importer.import_row(ROW, TS)

        outcome = importer.import_row({**ROW, "RETAILPRICE": "19.5"}, TS)

        assert outcome is ImportOutcome.UPDATED
        assert store.load_product(store.find_product_id_by_mtrl("501")).regular_price == "19.50"
        assert len(store.all_product_ids()) == 1

    def test_lookup_falls_back_to_sku(self, recording_logger):
        store = InMemoryCatalogStore()
        pid = store.create_product(CatalogProduct(name="Legacy", sku="SHIRT-1"))

        outcome = _importer(store, recording_logger).import_row(ROW, TS)

        assert outcome is ImportOutcome.UPDATED
        assert store.get_meta(pid, META_MTRL) == "501"

    def test_migrated_product_stays_draft(self, recording_logger):
        store = InMemoryCatalogStore()
        importer = _importer(store, recording_logger)
        importer.import_row(ROW, TS)
        pid = store.find_product_id_by_mtrl("501")
        store.update_meta(pid, META_VARIATION_PARENT, 99)

        importer.import_row({**ROW, "Stock QTY": "9"}, TS)

        assert store.load_product(pid).status == "draft"

    def test_skip_path_still_refreshes_relationships(self, recording_logger):
        store = InMemoryCatalogStore()
        importer = _importer(store, recording_logger)
        row = {**ROW, "RELATED ITEM MTRL": "PARENT-001"}
        importer.import_row(row, TS)
        pid = store.find_product_id_by_mtrl("501")
        store.delete_meta(pid, META_RELATED_ITEM_MTRL)

        assert importer.import_row(row, TS) is ImportOutcome.SKIPPED
        assert store.get_meta(pid, META_RELATED_ITEM_MTRL) == "PARENT-001"


class TestAttributes:
    def test_colour_term_reused_and_renamed(self, recording_logger):
        store = InMemoryCatalogStore()
        existing = store.ensure_term("black", "pa_colour")

        _importer(store, recording_logger).import_row({**ROW, "COLOUR NAME": "blk"}, TS)

        term = store.get_term(existing.id)
        assert term.name == "Black"
        product = store.load_product(store.find_product_id_by_mtrl("501"))
        assert product.attributes["pa_colour"].options == [existing.id]
        assert product.attributes["pa_colour"].variation is True
        assert ("pa_colour", [existing.id]) in [(tax, ids) for _, tax, ids in store.term_assignments]

    def test_dash_colour_means_no_colour(self, recording_logger):
        store = InMemoryCatalogStore()
        _importer(store, recording_logger).import_row({**ROW, "COLOUR NAME": "-"}, TS)
        product = store.load_product(store.find_product_id_by_mtrl("501"))
        assert "pa_colour" not in product.attributes

    def test_size_and_brand(self, recording_logger):
        store = InMemoryCatalogStore()
        _importer(store, recording_logger).import_row({**ROW, "SIZE NAME": "XL", "BRAND NAME": "Acme"}, TS)
        pid = store.find_product_id_by_mtrl("501")
        product = store.load_product(pid)
        assert product.attributes[SIZE_TAXONOMY].variation is False
        assert store.get_meta(pid, META_BRAND) == "Acme"
        brand = store.find_term("Acme", BRAND_TAXONOMY)
        assert store.get_object_terms(pid, BRAND_TAXONOMY) == [brand.id]


class TestStock:
    @pytest.mark.parametrize(
        "stock, settings, expected",
        [
            (None, {}, (False, None, "instock", "no")),
            ("2.6", {}, (True, 3, "instock", "no")),
            ("-4", {}, (True, 0, "outofstock", "no")),
            ("0", {"zero_stock_fallback": True}, (True, 1, "instock", "no")),
            ("0", {"backorder_out_of_stock": True}, (True, 0, "onbackorder", "notify")),
        ],
    )
    def test_stock_rules(self, recording_logger, stock, settings, expected):
        store = InMemoryCatalogStore()
        row = dict(ROW)
        if stock is None:
            del row["Stock QTY"]
        else:
            row["Stock QTY"] = stock

        _importer(store, recording_logger, **settings).import_row(row, TS)

        p = store.load_product(store.find_product_id_by_mtrl("501"))
        assert (p.manage_stock, p.stock_quantity, p.stock_status, p.backorders) == expected

    def test_format_price(self):
        assert format_price(None) == ""
        assert format_price(5) == "5.00"


class TestVariationQueueing:
    def _setup(self, logger):
        store = InMemoryCatalogStore()
        aggregator = VariantAggregator(store, logger, clock=lambda: TS)
        importer = RowImporter(
            store, logger, settings=ImportSettings(variable_products=True), variations=aggregator
        )
        return store, aggregator, importer

    def test_single_variation_queued_for_coloured_row(self, recording_logger):
        store, aggregator, importer = self._setup(recording_logger)

        importer.import_row({**ROW, "COLOUR NAME": "Red", "SIZE NAME": "M"}, TS)

        [entry] = aggregator.pending_single_variations
        red = store.find_term("Red", "pa_colour")
        size = store.find_term("M", SIZE_TAXONOMY)
        assert entry.colour_term_id == red.id
        assert entry.sku == "SHIRT-1" and entry.price == "29.90" and entry.stock == 4
        assert entry.additional_attributes == ((SIZE_TAXONOMY, (size.id,)),)
        assert aggregator.pending_colour_syncs == []

    def test_child_row_queues_colour_sync_on_parent(self, recording_logger):
        store, aggregator, importer = self._setup(recording_logger)
        importer.import_row({"MTRL": "PARENT-001", "CODE": "P", "COLOUR NAME": "Blue"}, TS)
        aggregator.reset()

        importer.import_row({"MTRL": "CHILD-RED", "CODE": "C", "COLOUR NAME": "Red",
                             "RELATED ITEM MTRL": "PARENT-001"}, TS)

        assert aggregator.pending_single_variations == []
        [sync] = aggregator.pending_colour_syncs
        assert sync.product_id == store.find_product_id_by_mtrl("PARENT-001")
        assert "CHILD-RED" in sync.related_item_mtrls

    def test_nothing_queued_without_colour(self, recording_logger):
        store, aggregator, importer = self._setup(recording_logger)
        importer.import_row(ROW, TS)
        assert aggregator.pending_single_variations == []
        assert aggregator.pending_colour_syncs == []
