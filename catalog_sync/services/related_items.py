from __future__ import annotations

from collections.abc import Iterable

from catalog_sync.logging.sync_logger import EngineLogger
from catalog_sync.models.catalog import META_MTRL, META_RELATED_ITEM_MTRL, META_RELATED_ITEM_MTRLS
from catalog_sync.store.base import CatalogStore

"""Related-item pointer resolution.

Each product may carry an authoritative pointer to its family parent
(META_RELATED_ITEM_MTRL) and a list of related material ids
(META_RELATED_ITEM_MTRLS). The list never contains the product's own
material id, and the pointer is never inferred from the list.
"""

__all__ = [
    "RelatedItemResolver",
    "sanitize_mtrls",
]


def sanitize_mtrls(values: Iterable[str] | None, exclude: str = "") -> list[str]:
    out: list[str] = []
    for value in values or ():
        text = str(value).strip()
        if not text or text == exclude or text in out:
            continue
        out.append(text)
    return out


def _merge(*groups: Iterable[str]) -> list[str]:
    merged: list[str] = []
    for group in groups:
        for value in group:
            if value and value not in merged:
                merged.append(value)
    return merged


class RelatedItemResolver:
    def __init__(self, store: CatalogStore, logger: EngineLogger) -> None:
        self.store = store
        self.logger = logger

    def sync_related_item_relationships(
        self,
        product_id: int,
        current_mtrl: str,
        related_item_mtrl: str,
        related_item_mtrls: Iterable[str],
        received_related_payload: bool,
    ) -> None:
        if not received_related_payload:
            return

        current = (current_mtrl or "").strip()
        pointer = (related_item_mtrl or "").strip()
        if pointer and pointer == current:
            pointer = ""
        mtrls = sanitize_mtrls(related_item_mtrls, exclude=current)

        if pointer:
            self.store.update_meta(product_id, META_RELATED_ITEM_MTRL, pointer)
        else:
            self.store.delete_meta(product_id, META_RELATED_ITEM_MTRL)
        if mtrls:
            self.store.update_meta(product_id, META_RELATED_ITEM_MTRLS, mtrls)
        else:
            self.store.delete_meta(product_id, META_RELATED_ITEM_MTRLS)

        if pointer and current:
            self.refresh_related_item_children(pointer, current, product_id)

    def refresh_related_item_children(self, parent_mtrl: str, current_mtrl: str, current_id: int) -> int:
        """Merge ``current_mtrl`` into every sibling that points at ``parent_mtrl``."""
        touched = 0
        for pid in self.store.find_product_ids_by_meta(META_RELATED_ITEM_MTRL, parent_mtrl):
            if pid == current_id:
                continue
            sibling_mtrl = str(self.store.get_meta(pid, META_MTRL) or "")
            existing = self.stored_related_mtrls(pid)
            merged = sanitize_mtrls(_merge(existing, [current_mtrl]), exclude=sibling_mtrl)
            if merged != existing:
                self.store.update_meta(pid, META_RELATED_ITEM_MTRLS, merged)
                touched += 1
        if touched:
            self.logger.log(
                "debug",
                "Refreshed related items for siblings",
                {"parent_mtrl": parent_mtrl, "mtrl": current_mtrl, "siblings": touched},
            )
        return touched

    def stored_related_mtrls(self, product_id: int) -> list[str]:
        value = self.store.get_meta(product_id, META_RELATED_ITEM_MTRLS)
        if isinstance(value, str):
            value = [v for v in value.split(",")]
        return sanitize_mtrls(value if isinstance(value, list) else [])

    def find_child_mtrls_for_parent(self, parent_mtrl: str) -> list[str]:
        """Material ids of products whose pointer names ``parent_mtrl``."""
        parent = (parent_mtrl or "").strip()
        if not parent:
            return []
        mtrls: list[str] = []
        for pid in self.store.find_product_ids_by_meta(META_RELATED_ITEM_MTRL, parent):
            mtrl = str(self.store.get_meta(pid, META_MTRL) or "").strip()
            if mtrl and mtrl != parent and mtrl not in mtrls:
                mtrls.append(mtrl)
        return mtrls

    def collect_related_family(self, product_id: int, mtrl: str, related_item_mtrls: Iterable[str]) -> list[str]:
        """Expand a related list with what the catalog already knows.

        Order: the given list, the product's stored list, children of its
        stored parent pointer, then its own children. The product's own mtrl
        is kept; duplicates are dropped in first-seen order.
        """
        pointer = str(self.store.get_meta(product_id, META_RELATED_ITEM_MTRL) or "").strip()
        return _merge(
            sanitize_mtrls(related_item_mtrls),
            self.stored_related_mtrls(product_id),
            self.find_child_mtrls_for_parent(pointer) if pointer else [],
            self.find_child_mtrls_for_parent(mtrl),
        )
