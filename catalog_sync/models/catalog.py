from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

"""Local catalog entities and the queue entries used for variant aggregation."""

__all__ = [
    "ProductKind",
    "Term",
    "ProductAttribute",
    "CatalogProduct",
    "PendingVariationEntry",
    "PendingColourSyncEntry",
    "CATEGORY_TAXONOMY",
    "BRAND_TAXONOMY",
    "SIZE_TAXONOMY",
    "META_MTRL",
    "META_LAST_SYNC",
    "META_PAYLOAD_HASH",
    "META_BARCODE",
    "META_BRAND",
    "META_ITEM_CODE",
    "META_RELATED_ITEM_MTRL",
    "META_RELATED_ITEM_MTRLS",
    "META_VARIATION_PARENT",
    "META_THUMBNAIL_ID",
    "META_GALLERY",
]

CATEGORY_TAXONOMY = "product_cat"
BRAND_TAXONOMY = "product_brand"
SIZE_TAXONOMY = "pa_size"

META_MTRL = "_softone_mtrl_id"
META_LAST_SYNC = "_softone_last_synced"
META_PAYLOAD_HASH = "_softone_payload_hash"
META_BARCODE = "_softone_barcode"
META_BRAND = "_softone_brand"
META_ITEM_CODE = "_softone_item_code"
META_RELATED_ITEM_MTRL = "_softone_related_item_mtrl"
META_RELATED_ITEM_MTRLS = "_softone_related_item_mtrls"
META_VARIATION_PARENT = "_softone_variation_parent_id"
META_THUMBNAIL_ID = "_thumbnail_id"
META_GALLERY = "_product_image_gallery"


class ProductKind(Enum):
    SIMPLE = "simple"
    VARIABLE = "variable"
    VARIATION = "variation"


@dataclass(frozen=True)
class Term:
    id: int
    taxonomy: str
    name: str
    slug: str
    parent: int = 0


@dataclass
class ProductAttribute:
    name: str  # taxonomy, e.g. pa_colour
    options: list[int] = field(default_factory=list)  # term ids
    visible: bool = True
    variation: bool = False


@dataclass
class CatalogProduct:
    """A product record as seen by the sync engine.

    Variations carry ``parent_id`` and ``variation_attributes``
    (``attribute_<taxonomy>`` -> term slug).
    """
    id: int = 0
    kind: ProductKind = ProductKind.SIMPLE
    name: str = ""
    sku: str = ""
    status: str = "publish"
    regular_price: str = ""
    manage_stock: bool = False
    stock_quantity: int | None = None
    stock_status: str = "instock"
    backorders: str = "no"
    parent_id: int = 0
    attributes: dict[str, ProductAttribute] = field(default_factory=dict)
    variation_attributes: dict[str, str] = field(default_factory=dict)
    category_ids: list[int] = field(default_factory=list)

    @property
    def is_variation(self) -> bool:
        return self.kind is ProductKind.VARIATION


@dataclass(frozen=True)
class PendingVariationEntry:
    product_id: int
    colour_term_id: int
    colour_taxonomy: str
    sku: str
    price: str
    stock: int | None
    mtrl: str
    should_backorder: bool = False
    additional_attributes: tuple[tuple[str, tuple[int, ...]], ...] = ()


@dataclass
class PendingColourSyncEntry:
    product_id: int
    mtrl: str
    related_item_mtrls: list[str]
    colour_taxonomy: str
