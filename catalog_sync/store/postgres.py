from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Any

import psycopg2
from psycopg2.extras import Json, execute_values

from catalog_sync.models.catalog import (
    META_LAST_SYNC,
    META_MTRL,
    CatalogProduct,
    ProductAttribute,
    ProductKind,
    Term,
)
from catalog_sync.store.base import CatalogStoreError
from catalog_sync.store.memory import slugify

"""PostgreSQL-backed catalog store.

Works on a caller-provided psycopg2 cursor; the caller owns the connection
and the transaction boundary (the CLI commits once per batch). Each row runs
inside a savepoint so one failing statement does not abort the batch. Product
attributes and category ids are kept in JSONB columns, metadata values in a
key/value table with JSONB values.
"""

__all__ = [
    "PostgresCatalogStore",
    "SCHEMA_SQL_PATH",
]

logger = logging.getLogger(__name__)

SCHEMA_SQL_PATH = Path(__file__).with_name("schema.sql")

_SAVEPOINT = "catalog_sync_unit"

_PRODUCT_COLUMNS = (
    "id, kind, name, sku, status, regular_price, manage_stock, stock_quantity, "
    "stock_status, backorders, parent_id, attributes, variation_attributes, category_ids"
)


def _row_to_product(row: tuple[Any, ...]) -> CatalogProduct:
    attributes = {
        name: ProductAttribute(
            name=raw.get("name", name),
            options=[int(o) for o in raw.get("options", [])],
            visible=bool(raw.get("visible", True)),
            variation=bool(raw.get("variation", False)),
        )
        for name, raw in (row[11] or {}).items()
    }
    return CatalogProduct(
        id=int(row[0]),
        kind=ProductKind(row[1]),
        name=row[2],
        sku=row[3],
        status=row[4],
        regular_price=row[5],
        manage_stock=bool(row[6]),
        stock_quantity=row[7],
        stock_status=row[8],
        backorders=row[9],
        parent_id=int(row[10] or 0),
        attributes=attributes,
        variation_attributes=dict(row[12] or {}),
        category_ids=[int(c) for c in (row[13] or [])],
    )


def _product_values(product: CatalogProduct) -> tuple[Any, ...]:
    return (
        product.kind.value,
        product.name,
        product.sku,
        product.status,
        product.regular_price,
        product.manage_stock,
        product.stock_quantity,
        product.stock_status,
        product.backorders,
        product.parent_id,
        Json({k: asdict(v) for k, v in product.attributes.items()}),
        Json(product.variation_attributes),
        Json(product.category_ids),
    )


class PostgresCatalogStore:
    def __init__(self, cursor: Any) -> None:
        self.cursor = cursor

    def _execute(self, sql: str, params: tuple[Any, ...] | None = None) -> None:
        try:
            self.cursor.execute(sql, params)
        except psycopg2.Error as e:
            raise CatalogStoreError(f"{e.__class__.__name__}: {e}") from e

    def ensure_schema(self) -> None:
        self._execute(SCHEMA_SQL_PATH.read_text(encoding="utf-8"))

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Run the block inside a SAVEPOINT; a failure undoes only the block."""
        self._execute(f"SAVEPOINT {_SAVEPOINT}")
        try:
            yield
        except Exception:
            try:
                self._execute(f"ROLLBACK TO SAVEPOINT {_SAVEPOINT}")
            except CatalogStoreError as rollback_e:
                # keep the original error; the transaction stays aborted and the commit refuses it
                logger.error(f"rollback to savepoint failed: {rollback_e}")
            raise
        self._execute(f"RELEASE SAVEPOINT {_SAVEPOINT}")

    # ------------------------------------------------------------------ products
    def create_product(self, product: CatalogProduct) -> int:
        self._execute(
            "INSERT INTO catalog_products (kind, name, sku, status, regular_price, manage_stock, "
            "stock_quantity, stock_status, backorders, parent_id, attributes, variation_attributes, "
            "category_ids) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s) RETURNING id",
            _product_values(product),
        )
        row = self.cursor.fetchone()
        if not row:
            raise CatalogStoreError("insert returned no id")
        return int(row[0])

    def load_product(self, product_id: int) -> CatalogProduct | None:
        self._execute(f"SELECT {_PRODUCT_COLUMNS} FROM catalog_products WHERE id = %s", (product_id,))
        row = self.cursor.fetchone()
        return _row_to_product(row) if row else None

    def save_product(self, product: CatalogProduct) -> None:
        self._execute(
            "UPDATE catalog_products SET kind = %s, name = %s, sku = %s, status = %s, regular_price = %s, "
            "manage_stock = %s, stock_quantity = %s, stock_status = %s, backorders = %s, parent_id = %s, "
            "attributes = %s, variation_attributes = %s, category_ids = %s WHERE id = %s",
            _product_values(product) + (product.id,),
        )
        if self.cursor.rowcount == 0:
            raise CatalogStoreError(f"product {product.id} does not exist")

    def invalidate(self, product_id: int) -> None:
        # rows are read straight from the database; nothing is cached here
        logger.debug(f"invalidate product_id={product_id}")

    def _first_id(self) -> int | None:
        row = self.cursor.fetchone()
        return int(row[0]) if row else None

    def find_product_id_by_sku(self, sku: str, *, include_variations: bool = False) -> int | None:
        if not sku:
            return None
        sql = "SELECT id FROM catalog_products WHERE sku = %s"
        if not include_variations:
            sql += " AND kind <> 'variation'"
        self._execute(sql + " ORDER BY id LIMIT 1", (sku,))
        return self._first_id()

    def find_product_id_by_mtrl(self, mtrl: str, *, include_variations: bool = False) -> int | None:
        if not mtrl:
            return None
        sql = (
            "SELECT p.id FROM catalog_products p JOIN catalog_product_meta m ON m.product_id = p.id "
            "WHERE m.meta_key = %s AND m.meta_value #>> '{}' = %s"
        )
        if not include_variations:
            sql += " AND p.kind <> 'variation'"
        self._execute(sql + " ORDER BY p.id LIMIT 1", (META_MTRL, mtrl))
        return self._first_id()

    def find_product_ids_by_meta(self, key: str, value: str) -> list[int]:
        self._execute(
            "SELECT product_id FROM catalog_product_meta WHERE meta_key = %s AND meta_value #>> '{}' = %s "
            "ORDER BY product_id",
            (key, str(value)),
        )
        return [int(r[0]) for r in self.cursor.fetchall()]

    def find_variation_ids(self, parent_id: int) -> list[int]:
        self._execute(
            "SELECT id FROM catalog_products WHERE parent_id = %s AND kind = 'variation' ORDER BY id",
            (parent_id,),
        )
        return [int(r[0]) for r in self.cursor.fetchall()]

    def find_stale_product_ids(
        self, run_timestamp: int, limit: int, exclude: Iterable[int] = ()
    ) -> list[int]:
        self._execute(
            "SELECT p.id FROM catalog_products p "
            "JOIN catalog_product_meta m ON m.product_id = p.id AND m.meta_key = %s "
            "AND COALESCE(m.meta_value #>> '{}', '') <> '' "
            "LEFT JOIN catalog_product_meta s ON s.product_id = p.id AND s.meta_key = %s "
            "WHERE p.kind <> 'variation' "
            "AND (s.meta_value IS NULL OR COALESCE(s.meta_value #>> '{}', '') = '' "
            "OR (s.meta_value #>> '{}')::bigint < %s) "
            "AND NOT (p.id = ANY(%s::bigint[])) "
            "ORDER BY p.id LIMIT %s",
            (META_MTRL, META_LAST_SYNC, int(run_timestamp), [int(i) for i in exclude], int(limit)),
        )
        return [int(r[0]) for r in self.cursor.fetchall()]

    # ------------------------------------------------------------------ terms
    def ensure_term(self, name: str, taxonomy: str, parent: int = 0) -> Term:
        existing = self.find_term(name, taxonomy, parent)
        if existing is not None:
            return existing
        self._execute(
            "INSERT INTO catalog_terms (taxonomy, name, slug, parent) VALUES (%s, %s, %s, %s) "
            "ON CONFLICT (taxonomy, slug, parent) DO UPDATE SET name = catalog_terms.name "
            "RETURNING id, taxonomy, name, slug, parent",
            (taxonomy, name.strip(), slugify(name), parent),
        )
        return Term(*self.cursor.fetchone())

    def find_term(self, name: str, taxonomy: str, parent: int | None = None) -> Term | None:
        sql = (
            "SELECT id, taxonomy, name, slug, parent FROM catalog_terms "
            "WHERE taxonomy = %s AND (lower(name) = lower(%s) OR slug = %s)"
        )
        params: tuple[Any, ...] = (taxonomy, name.strip(), slugify(name))
        if parent is not None:
            sql += " AND parent = %s"
            params += (parent,)
        self._execute(sql + " ORDER BY id LIMIT 1", params)
        row = self.cursor.fetchone()
        return Term(*row) if row else None

    def get_term(self, term_id: int) -> Term | None:
        self._execute("SELECT id, taxonomy, name, slug, parent FROM catalog_terms WHERE id = %s", (term_id,))
        row = self.cursor.fetchone()
        return Term(*row) if row else None

    def rename_term(self, term_id: int, name: str) -> Term:
        self._execute(
            "UPDATE catalog_terms SET name = %s, slug = %s WHERE id = %s "
            "RETURNING id, taxonomy, name, slug, parent",
            (name, slugify(name), term_id),
        )
        row = self.cursor.fetchone()
        if not row:
            raise CatalogStoreError(f"term {term_id} does not exist")
        return Term(*row)

    def set_object_terms(self, product_id: int, term_ids: Iterable[int], taxonomy: str) -> None:
        ids = list(dict.fromkeys(int(t) for t in term_ids))
        self._execute(
            "DELETE FROM catalog_object_terms WHERE product_id = %s AND taxonomy = %s",
            (product_id, taxonomy),
        )
        if not ids:
            return
        rows = [(product_id, taxonomy, term_id, pos) for pos, term_id in enumerate(ids)]
        try:
            execute_values(
                self.cursor,
                "INSERT INTO catalog_object_terms (product_id, taxonomy, term_id, position) VALUES %s",
                rows,
            )
        except psycopg2.Error as e:
            raise CatalogStoreError(f"{e.__class__.__name__}: {e}") from e

    def get_object_terms(self, product_id: int, taxonomy: str) -> list[int]:
        self._execute(
            "SELECT term_id FROM catalog_object_terms WHERE product_id = %s AND taxonomy = %s ORDER BY position",
            (product_id, taxonomy),
        )
        return [int(r[0]) for r in self.cursor.fetchall()]

    # ------------------------------------------------------------------ meta
    def get_meta(self, product_id: int, key: str) -> Any:
        self._execute(
            "SELECT meta_value FROM catalog_product_meta WHERE product_id = %s AND meta_key = %s",
            (product_id, key),
        )
        row = self.cursor.fetchone()
        return row[0] if row else None

    def update_meta(self, product_id: int, key: str, value: Any) -> None:
        self._execute(
            "INSERT INTO catalog_product_meta (product_id, meta_key, meta_value) VALUES (%s, %s, %s) "
            "ON CONFLICT (product_id, meta_key) DO UPDATE SET meta_value = EXCLUDED.meta_value",
            (product_id, key, Json(value)),
        )

    def delete_meta(self, product_id: int, key: str) -> None:
        self._execute(
            "DELETE FROM catalog_product_meta WHERE product_id = %s AND meta_key = %s",
            (product_id, key),
        )
