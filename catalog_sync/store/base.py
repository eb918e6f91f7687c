from __future__ import annotations

from collections.abc import Iterable
from contextlib import AbstractContextManager
from typing import Any, Protocol

from catalog_sync.models.catalog import CatalogProduct, Term

"""Catalog store contract.

The engine only ever talks to the local catalog through this interface.
Two implementations ship with the package: InMemoryCatalogStore (dry runs
and tests) and PostgresCatalogStore.

Writes for one row (or one reconciliation entry) run inside ``savepoint()``:
a failure there undoes only that unit and the surrounding transaction
stays usable.
"""

__all__ = [
    "CatalogStore",
    "CatalogStoreError",
]


class CatalogStoreError(Exception):
    """Raised when the catalog store cannot complete an operation."""


class CatalogStore(Protocol):
    # products
    def create_product(self, product: CatalogProduct) -> int: ...

    def load_product(self, product_id: int) -> CatalogProduct | None: ...

    def save_product(self, product: CatalogProduct) -> None: ...

    def find_product_id_by_sku(self, sku: str, *, include_variations: bool = False) -> int | None: ...

    def find_product_id_by_mtrl(self, mtrl: str, *, include_variations: bool = False) -> int | None: ...

    def find_product_ids_by_meta(self, key: str, value: str) -> list[int]: ...

    def find_variation_ids(self, parent_id: int) -> list[int]: ...

    def find_stale_product_ids(
        self, run_timestamp: int, limit: int, exclude: Iterable[int] = ()
    ) -> list[int]: ...

    def invalidate(self, product_id: int) -> None: ...

    def savepoint(self) -> AbstractContextManager[None]: ...

    # terms
    def ensure_term(self, name: str, taxonomy: str, parent: int = 0) -> Term: ...

    def find_term(self, name: str, taxonomy: str, parent: int | None = None) -> Term | None: ...

    def get_term(self, term_id: int) -> Term | None: ...

    def rename_term(self, term_id: int, name: str) -> Term: ...

    def set_object_terms(self, product_id: int, term_ids: Iterable[int], taxonomy: str) -> None: ...

    def get_object_terms(self, product_id: int, taxonomy: str) -> list[int]: ...

    # metadata
    def get_meta(self, product_id: int, key: str) -> Any: ...

    def update_meta(self, product_id: int, key: str, value: Any) -> None: ...

    def delete_meta(self, product_id: int, key: str) -> None: ...
