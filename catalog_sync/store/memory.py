from __future__ import annotations

import copy
import re
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from catalog_sync.models.catalog import META_LAST_SYNC, META_MTRL, CatalogProduct, ProductKind, Term
from catalog_sync.store.base import CatalogStoreError

"""In-memory catalog store.

Used for dry runs (no database) and as the store in tests. Loaded products
are deep copies served through an object cache, so callers must save()
explicitly and invalidate() when they need a fresh read. Term ids and
product ids are allocated from 1.
"""

__all__ = [
    "InMemoryCatalogStore",
    "slugify",
]


def slugify(name: str) -> str:
    slug = re.sub(r"[^\w]+", "-", name.strip().lower(), flags=re.UNICODE).strip("-")
    return slug or "term"


class InMemoryCatalogStore:
    def __init__(self) -> None:
        self._products: dict[int, CatalogProduct] = {}
        self._cache: dict[int, CatalogProduct] = {}
        self._meta: dict[int, dict[str, Any]] = {}
        self._terms: dict[int, Term] = {}
        self._object_terms: dict[tuple[int, str], list[int]] = {}
        self._next_product_id = 1
        self._next_term_id = 1
        # observability for tests / dry-run reporting
        self.term_assignments: list[tuple[int, str, list[int]]] = []
        self.invalidations: list[int] = []

    # ------------------------------------------------------------------ products
    def create_product(self, product: CatalogProduct) -> int:
        if product.id and product.id in self._products:
            raise CatalogStoreError(f"product {product.id} already exists")
        product_id = product.id or self._next_product_id
        self._next_product_id = max(self._next_product_id, product_id + 1)
        stored = copy.deepcopy(product)
        stored.id = product_id
        self._products[product_id] = stored
        self._meta.setdefault(product_id, {})
        return product_id

    def load_product(self, product_id: int) -> CatalogProduct | None:
        if product_id not in self._cache:
            record = self._products.get(product_id)
            if record is None:
                return None
            self._cache[product_id] = copy.deepcopy(record)
        return copy.deepcopy(self._cache[product_id])

    def save_product(self, product: CatalogProduct) -> None:
        if product.id not in self._products:
            raise CatalogStoreError(f"product {product.id} does not exist")
        self._products[product.id] = copy.deepcopy(product)
        if product.id in self._cache:
            self._cache[product.id] = copy.deepcopy(product)

    def prime_cache(self, product: CatalogProduct) -> None:
        """Place an object in the cache without touching the stored record."""
        self._cache[product.id] = copy.deepcopy(product)

    def invalidate(self, product_id: int) -> None:
        self.invalidations.append(product_id)
        self._cache.pop(product_id, None)

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        # no transactions here: writes made before a failure stay applied
        yield

    def find_product_id_by_sku(self, sku: str, *, include_variations: bool = False) -> int | None:
        if not sku:
            return None
        for pid in sorted(self._products):
            p = self._products[pid]
            if p.sku == sku and (include_variations or not p.is_variation):
                return pid
        return None

    def find_product_id_by_mtrl(self, mtrl: str, *, include_variations: bool = False) -> int | None:
        if not mtrl:
            return None
        for pid in self.find_product_ids_by_meta(META_MTRL, mtrl):
            if include_variations or not self._products[pid].is_variation:
                return pid
        return None

    def find_product_ids_by_meta(self, key: str, value: str) -> list[int]:
        return [
            pid
            for pid in sorted(self._products)
            if key in self._meta.get(pid, {}) and str(self._meta[pid][key]) == str(value)
        ]

    def find_variation_ids(self, parent_id: int) -> list[int]:
        return [
            pid
            for pid in sorted(self._products)
            if self._products[pid].is_variation and self._products[pid].parent_id == parent_id
        ]

    def find_stale_product_ids(
        self, run_timestamp: int, limit: int, exclude: Iterable[int] = ()
    ) -> list[int]:
        skip = set(exclude)
        out: list[int] = []
        for pid in sorted(self._products):
            if pid in skip or self._products[pid].is_variation:
                continue
            meta = self._meta.get(pid, {})
            if not meta.get(META_MTRL):
                continue
            last = meta.get(META_LAST_SYNC)
            if last in (None, "") or int(last) < run_timestamp:
                out.append(pid)
                if len(out) >= limit:
                    break
        return out

    def all_product_ids(self) -> list[int]:
        return sorted(self._products)

    # ------------------------------------------------------------------ terms
    def ensure_term(self, name: str, taxonomy: str, parent: int = 0) -> Term:
        existing = self.find_term(name, taxonomy, parent)
        if existing is not None:
            return existing
        term = Term(
            id=self._next_term_id, taxonomy=taxonomy, name=name.strip(),
            slug=slugify(name), parent=parent,
        )
        self._next_term_id += 1
        self._terms[term.id] = term
        return term

    def find_term(self, name: str, taxonomy: str, parent: int | None = None) -> Term | None:
        wanted = name.strip().lower()
        wanted_slug = slugify(name)
        for term in self._terms.values():
            if term.taxonomy != taxonomy:
                continue
            if parent is not None and term.parent != parent:
                continue
            if term.name.lower() == wanted or term.slug == wanted_slug:
                return term
        return None

    def get_term(self, term_id: int) -> Term | None:
        return self._terms.get(term_id)

    def rename_term(self, term_id: int, name: str) -> Term:
        term = self._terms.get(term_id)
        if term is None:
            raise CatalogStoreError(f"term {term_id} does not exist")
        renamed = Term(id=term.id, taxonomy=term.taxonomy, name=name, slug=slugify(name), parent=term.parent)
        self._terms[term_id] = renamed
        return renamed

    def set_object_terms(self, product_id: int, term_ids: Iterable[int], taxonomy: str) -> None:
        ids = list(dict.fromkeys(int(t) for t in term_ids))
        self.term_assignments.append((product_id, taxonomy, ids))
        self._object_terms[(product_id, taxonomy)] = ids

    def get_object_terms(self, product_id: int, taxonomy: str) -> list[int]:
        return list(self._object_terms.get((product_id, taxonomy), []))

    def assignments_for(self, taxonomy: str) -> list[tuple[int, list[int]]]:
        return [(pid, ids) for pid, tax, ids in self.term_assignments if tax == taxonomy]

    # ------------------------------------------------------------------ meta
    def get_meta(self, product_id: int, key: str) -> Any:
        return copy.deepcopy(self._meta.get(product_id, {}).get(key))

    def update_meta(self, product_id: int, key: str, value: Any) -> None:
        self._meta.setdefault(product_id, {})[key] = copy.deepcopy(value)

    def delete_meta(self, product_id: int, key: str) -> None:
        self._meta.get(product_id, {}).pop(key, None)
