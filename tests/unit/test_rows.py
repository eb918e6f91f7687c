from __future__ import annotations

import math

import pytest

from catalog_sync.models.rows import (
    RowValidationError,
    normalize_colour_name,
    normalize_row,
    parse_colour_from_description,
    strip_colour_from_description,
)


class TestNormalizeRow:
    def test_basic_fields(self):
        row = normalize_row({
            "MTRL": "501",
            "CODE": "ABC-1",
            "DESC": "Linen Shirt",
            "RETAILPRICE": "29,90",
            "Stock QTY": "4",
            "COMMECATEGORY NAME": "Clothing --> Shirts",
            "SUBMECATEGORY NAME": "Summer",
            "BRAND NAME": "Acme",
            "BARCODE": "5201234567890",
        })
        assert row.mtrl == "501"
        assert row.sku == "ABC-1"
        assert row.code == "ABC-1"
        assert row.name == "Linen Shirt"
        assert row.price == pytest.approx(29.9)
        assert row.stock == 4
        assert row.category_path == "Clothing --> Shirts"
        assert row.subcategory_path == "Summer"
        assert row.brand == "Acme"
        assert row.barcode == "5201234567890"
        assert row.identity == "501"

    def test_key_lookup_tolerates_case_and_underscores(self):
        row = normalize_row({"mtrl": "1", "sku": "S1", "stock_qty": "2", "retail_price": "1"})
        assert row.stock == 2
        # RETAILPRICE has no separator, so retail_price is kept as an extra attribute
        assert row.price is None
        assert row.attributes == {"retail_price": "1"}

    def test_sku_falls_back_to_code(self):
        row = normalize_row({"MTRL": "7", "CODE": "C-7"})
        assert row.sku == "C-7"

    def test_missing_identity_raises(self):
        with pytest.raises(RowValidationError):
            normalize_row({"DESC": "nameless"})

    def test_non_mapping_raises(self):
        with pytest.raises(RowValidationError, match="mapping"):
            normalize_row(["not", "a", "row"])  # type: ignore[arg-type]

    def test_colour_parsed_from_description_suffix(self):
        row = normalize_row({"MTRL": "1", "CODE": "X", "DESC": "Linen Shirt | blk"})
        assert row.name == "Linen Shirt"
        assert row.colour == "Black"

    def test_colour_column_wins_over_description(self):
        row = normalize_row({"MTRL": "1", "CODE": "X", "DESC": "Shirt | Red", "COLOUR NAME": "olive green"})
        assert row.colour == "Olive Green"

    def test_nan_and_float_codes(self):
        row = normalize_row({"MTRL": 501.0, "CODE": "X", "Stock QTY": math.nan, "BARCODE": None})
        assert row.mtrl == "501"
        assert row.stock is None
        assert row.barcode == ""

    def test_related_payload_split(self):
        row = normalize_row({
            "MTRL": "CHILD-RED",
            "CODE": "X",
            "RELATED ITEM MTRL": "PARENT-001",
            "RELATED ITEM MTRLS": "CHILD-BLUE; PARENT-001,CHILD-BLUE|CHILD-RED",
        })
        assert row.received_related_payload is True
        assert row.related_item_mtrl == "PARENT-001"
        assert row.related_item_mtrls == ("CHILD-BLUE", "PARENT-001", "CHILD-RED")

    def test_related_payload_absent(self):
        row = normalize_row({"MTRL": "1", "CODE": "X"})
        assert row.received_related_payload is False
        assert row.related_item_mtrls == ()

    def test_empty_related_column_still_counts_as_received(self):
        row = normalize_row({"MTRL": "1", "CODE": "X", "RELATED ITEM MTRLS": ""})
        assert row.received_related_payload is True
        assert row.related_item_mtrls == ()


class TestPayloadHash:
    def test_stable_for_equal_rows(self):
        raw = {"MTRL": "1", "CODE": "X", "DESC": "A", "RETAILPRICE": "1"}
        assert normalize_row(raw).payload_hash() == normalize_row(dict(raw)).payload_hash()

    def test_changes_with_price(self):
        a = normalize_row({"MTRL": "1", "CODE": "X", "RETAILPRICE": "1"})
        b = normalize_row({"MTRL": "1", "CODE": "X", "RETAILPRICE": "2"})
        assert a.payload_hash() != b.payload_hash()


class TestColourHelpers:
    @pytest.mark.parametrize(
        "value, expected",
        [("blk", "Black"), ("BLK", "Black"), ("-", ""), ("", ""), (None, ""), ("navy  blue", "Navy Blue")],
    )
    def test_normalize_colour_name(self, value, expected):
        assert normalize_colour_name(value) == expected

    def test_description_helpers(self):
        assert parse_colour_from_description("Shirt | Red ") == "Red"
        assert strip_colour_from_description("Shirt | Red") == "Shirt"
        assert parse_colour_from_description("Shirt") == ""
