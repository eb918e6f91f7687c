from __future__ import annotations

import logging
import re

from catalog_sync.models.catalog import CATEGORY_TAXONOMY
from catalog_sync.models.rows import NormalizedRow
from catalog_sync.store.base import CatalogStore

"""Category hierarchy builder.

SoftOne exposes categories as denormalized path strings such as
``"Parent --> Child --> Grandchild"`` or ``"Top / Mid / Leaf"``, optionally
split over the commercial-category and subcategory columns. Each level is
ensured under its predecessor, outermost first.
"""

__all__ = [
    "CategoryHierarchyBuilder",
    "split_category_path",
]

logger = logging.getLogger(__name__)

_SEPARATOR_RE = re.compile(r"\s*(?:-{1,2}>|=>|>|/|\\|\|)\s*")
_IGNORED_LEVELS = {"", "-", "uncategorized", "uncategorised"}


def split_category_path(path: str) -> list[str]:
    levels = []
    for part in _SEPARATOR_RE.split(path or ""):
        level = " ".join(part.split())
        if level.lower() in _IGNORED_LEVELS:
            continue
        levels.append(level)
    return levels


class CategoryHierarchyBuilder:
    def __init__(self, store: CatalogStore, taxonomy: str = CATEGORY_TAXONOMY) -> None:
        self.store = store
        self.taxonomy = taxonomy
        self._memo: dict[tuple[str, int], int] = {}

    def reset(self) -> None:
        """Drop memoized lookups (called at each batch boundary)."""
        self._memo.clear()

    def prepare_category_ids(self, row: NormalizedRow) -> list[int]:
        """Return the term ids of the row's category chain, outermost first."""
        levels: list[str] = []
        for name in split_category_path(row.category_path) + split_category_path(row.subcategory_path):
            # subcategory columns often repeat the parent ("Parent" + "Parent > Child")
            if levels and levels[-1].lower() == name.lower():
                continue
            levels.append(name)

        ids: list[int] = []
        parent = 0
        for name in levels:
            key = (name.lower(), parent)
            term_id = self._memo.get(key)
            if term_id is None:
                term_id = self.store.ensure_term(name, self.taxonomy, parent).id
                self._memo[key] = term_id
                logger.debug(f"category level={name!r} parent={parent} id={term_id}")
            ids.append(term_id)
            parent = term_id
        return ids
