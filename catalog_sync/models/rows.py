from __future__ import annotations

import hashlib
import json
import math
import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

"""Row models for the SoftOne item feed.

A RawRow is whatever the row source hands over (a mapping with loosely
named keys). normalize_row() turns it into a NormalizedRow with stable,
typed fields. Key lookup tolerates casing differences and space/underscore
swaps, e.g. ``"Stock QTY"``, ``"stock_qty"`` and ``"STOCK QTY"`` all match.
"""

__all__ = [
    "RawRow",
    "NormalizedRow",
    "RowValidationError",
    "normalize_row",
    "normalize_colour_name",
    "parse_colour_from_description",
    "strip_colour_from_description",
]

RawRow = Mapping[str, Any]

# Known shorthand spellings coming from the ERP colour column
_COLOUR_ALIASES = {
    "blk": "Black",
    "black": "Black",
    "wht": "White",
    "white": "White",
    "denim blue": "Denim Blue",
    "olive green": "Olive Green",
    "sepia black": "Sepia Black",
}

_EMPTY_MARKERS = {"", "-", "n/a", "none", "null"}

_COLOUR_SUFFIX_RE = re.compile(r"\s*\|\s*([^|]+?)\s*$")

# Keys consumed into dedicated fields; anything else lands in attributes
_CONSUMED_KEYS = {
    "mtrl", "sku", "code", "desc", "name", "description", "retailprice", "price",
    "stock qty", "stock", "qty", "commecategory name", "commercategory name",
    "category name", "category", "submecategory name", "subcategory name",
    "subcategory", "brand name", "brand", "barcode", "colour name", "color name",
    "colour", "color", "size name", "size", "related item mtrl",
    "related item mtrls", "related mtrl", "related mtrls",
}


class RowValidationError(ValueError):
    """Raised when a raw row cannot be turned into a NormalizedRow."""


@dataclass(frozen=True)
class NormalizedRow:
    """Typed view of one feed row.

    ``received_related_payload`` records whether the source row carried any
    related-item column at all, which decides whether relationship metadata
    is rewritten for the product.
    """
    mtrl: str
    sku: str
    code: str
    name: str
    description: str = ""
    price: float | None = None
    stock: float | None = None
    category_path: str = ""
    subcategory_path: str = ""
    brand: str = ""
    barcode: str = ""
    colour: str = ""
    size: str = ""
    related_item_mtrl: str = ""
    related_item_mtrls: tuple[str, ...] = ()
    received_related_payload: bool = False
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def identity(self) -> str:
        return self.mtrl or self.sku

    def payload_hash(self) -> str:
        """MD5 of the canonical JSON form of the row's significant fields."""
        data = asdict(self)
        data["related_item_mtrls"] = list(self.related_item_mtrls)
        encoded = json.dumps(data, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
        return hashlib.md5(encoded.encode("utf-8")).hexdigest()


def _canonical_key(key: str) -> str:
    return " ".join(str(key).replace("_", " ").split()).lower()


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return False


def _text(value: Any) -> str:
    if _is_missing(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        # pandas reads integer codes from spreadsheets as floats
        return str(int(value))
    return str(value).strip()


def _lookup(raw: RawRow, index: dict[str, Any], *keys: str) -> str:
    """Return the first non-empty value among ``keys``.

    Exact key first, then underscore/space swapped variants, then the
    case-insensitive canonical index.
    """
    for key in keys:
        for candidate in (key, key.replace(" ", "_"), key.replace("_", " ")):
            if candidate in raw:
                text = _text(raw[candidate])
                if text:
                    return text
        text = _text(index.get(_canonical_key(key)))
        if text:
            return text
    return ""


def _has_any(index: dict[str, Any], *keys: str) -> bool:
    return any(_canonical_key(k) in index for k in keys)


def _to_number(text: str) -> float | None:
    if text == "":
        return None
    try:
        # ERP exports use a decimal comma in some locales
        return float(text.replace(",", "."))
    except ValueError:
        return None


def _split_mtrls(value: Any) -> tuple[str, ...]:
    if _is_missing(value):
        return ()
    if isinstance(value, (list, tuple)):
        parts = [_text(v) for v in value]
    else:
        parts = [p.strip() for p in re.split(r"[,;|]", _text(value))]
    seen: list[str] = []
    for part in parts:
        if part and part not in seen:
            seen.append(part)
    return tuple(seen)


def normalize_colour_name(value: str | None) -> str:
    """Map ERP colour spellings to display labels.

    ``"blk"`` -> ``"Black"``; ``"-"`` -> ``""``; anything else is title-cased.
    """
    if value is None:
        return ""
    cleaned = " ".join(str(value).split())
    if cleaned.lower() in _EMPTY_MARKERS:
        return ""
    alias = _COLOUR_ALIASES.get(cleaned.lower())
    if alias:
        return alias
    return cleaned.title()


def parse_colour_from_description(description: str) -> str:
    match = _COLOUR_SUFFIX_RE.search(description or "")
    if not match:
        return ""
    return match.group(1).strip()


def strip_colour_from_description(description: str) -> str:
    return _COLOUR_SUFFIX_RE.sub("", description or "").strip()


def normalize_row(raw: RawRow) -> NormalizedRow:
    """Build a NormalizedRow from a raw feed mapping.

    Raises:
        RowValidationError: if the row is not a mapping or carries neither
            a material id nor a SKU.
    """
    if not isinstance(raw, Mapping):
        raise RowValidationError(f"row must be a mapping, got {type(raw).__name__}")

    index: dict[str, Any] = {}
    for key, value in raw.items():
        index.setdefault(_canonical_key(key), value)

    mtrl = _lookup(raw, index, "MTRL")
    code = _lookup(raw, index, "CODE")
    sku = _lookup(raw, index, "SKU") or code
    if not mtrl and not sku:
        raise RowValidationError("row has neither MTRL nor SKU/CODE")

    desc_raw = _lookup(raw, index, "DESC", "NAME", "DESCRIPTION")
    colour_raw = _lookup(raw, index, "COLOUR NAME", "COLOR NAME", "COLOUR", "COLOR")
    if not colour_raw:
        colour_raw = parse_colour_from_description(desc_raw)
    name = strip_colour_from_description(desc_raw) or desc_raw or sku or code

    related_keys = ("RELATED ITEM MTRL", "RELATED MTRL", "RELATED ITEM MTRLS", "RELATED MTRLS")
    related_list_value = None
    for key in ("RELATED ITEM MTRLS", "RELATED MTRLS"):
        if _canonical_key(key) in index:
            related_list_value = index[_canonical_key(key)]
            break

    attributes = {}
    for key, value in raw.items():
        ckey = _canonical_key(key)
        if ckey in _CONSUMED_KEYS:
            continue
        text = _text(value)
        if text:
            attributes[str(key)] = text

    return NormalizedRow(
        mtrl=mtrl,
        sku=sku,
        code=code,
        name=name,
        description=desc_raw,
        price=_to_number(_lookup(raw, index, "RETAILPRICE", "PRICE")),
        stock=_to_number(_lookup(raw, index, "Stock QTY", "STOCK", "QTY")),
        category_path=_lookup(
            raw, index, "COMMECATEGORY NAME", "COMMERCATEGORY NAME", "CATEGORY NAME", "CATEGORY"
        ),
        subcategory_path=_lookup(raw, index, "SUBMECATEGORY NAME", "SUBCATEGORY NAME", "SUBCATEGORY"),
        brand=_lookup(raw, index, "BRAND NAME", "BRAND"),
        barcode=_lookup(raw, index, "BARCODE"),
        colour=normalize_colour_name(colour_raw),
        size=_lookup(raw, index, "SIZE NAME", "SIZE"),
        related_item_mtrl=_lookup(raw, index, "RELATED ITEM MTRL", "RELATED MTRL"),
        related_item_mtrls=_split_mtrls(related_list_value),
        received_related_payload=_has_any(index, *related_keys),
        attributes=attributes,
    )
