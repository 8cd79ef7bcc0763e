"""
asyncpg_repository.py — Production PostgreSQL catalog store.

Implements the CatalogRepository interface using an asyncpg connection pool.
Merge-upserts are single INSERT ... ON CONFLICT statements whose UPDATE branch
COALESCEs every column, so a NULL (unknown) value never overwrites a stored one.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import asyncpg

from errors import StoreFailure
from models import (
    NUTRIENT_FIELDS, PRODUCT_FIELDS, ImageType, NutritionFacts,
    NutritionFields, Product, ProductDetail, ProductFields, ProductImage,
    UpsertOutcome, UpsertResult,
)
from repository import CatalogRepository, CatalogUnit

logger = logging.getLogger(__name__)

STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS products (
    id           BIGSERIAL PRIMARY KEY,
    barcode      VARCHAR(14) NOT NULL UNIQUE,
    name         TEXT NOT NULL,
    brand        TEXT,
    category     TEXT,
    description  TEXT,
    size_value   DOUBLE PRECISION,
    size_unit    TEXT,
    price        DOUBLE PRECISION,
    created_at   TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at   TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS idx_products_name ON products (name);

CREATE TABLE IF NOT EXISTS nutrition_facts (
    product_id         BIGINT PRIMARY KEY REFERENCES products(id),
    serving_size       TEXT,
    calories           DOUBLE PRECISION,
    total_fat          DOUBLE PRECISION,
    total_fat_rdi      DOUBLE PRECISION,
    saturated_fat      DOUBLE PRECISION,
    saturated_fat_rdi  DOUBLE PRECISION,
    trans_fat          DOUBLE PRECISION,
    cholesterol        DOUBLE PRECISION,
    sodium             DOUBLE PRECISION,
    sodium_rdi         DOUBLE PRECISION,
    total_carbs        DOUBLE PRECISION,
    total_carbs_rdi    DOUBLE PRECISION,
    dietary_fiber      DOUBLE PRECISION,
    total_sugars       DOUBLE PRECISION,
    protein            DOUBLE PRECISION,
    protein_rdi        DOUBLE PRECISION,
    updated_at         TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS product_images (
    id          BIGSERIAL PRIMARY KEY,
    product_id  BIGINT NOT NULL REFERENCES products(id),
    image_type  VARCHAR(32) NOT NULL DEFAULT 'main',
    image_url   TEXT NOT NULL,
    alt_text    TEXT,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
    UNIQUE (product_id, image_type)
);
"""


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _merge_set(table: str, columns: tuple[str, ...]) -> str:
    return ", ".join(f"{c} = COALESCE(EXCLUDED.{c}, {table}.{c})" for c in columns)


# ── Connection Pool Manager ──────────────────────────────────────────────────

class DatabasePool:
    """Manages asyncpg connection pool lifecycle."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10,
                 command_timeout: float = 30.0):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self._pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        self._pool = await asyncpg.create_pool(
            self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=self.command_timeout,
        )
        logger.info(
            "Database pool initialized (min=%d, max=%d)", self.min_size, self.max_size
        )

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")
        return self._pool

    @asynccontextmanager
    async def acquire(self):
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self):
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            logger.info("Database pool closed")


# ── Unit of Work ─────────────────────────────────────────────────────────────

class AsyncPGCatalogUnit(CatalogUnit):
    """Writes bound to one connection inside an open transaction."""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def upsert_product(self, fields: ProductFields) -> UpsertResult:
        if fields.name is None:
            # NOT NULL on name is checked before ON CONFLICT, so a nameless
            # write can only ever update an existing row
            return await self._update_product(fields)

        cols = ", ".join(PRODUCT_FIELDS)
        placeholders = ", ".join(f"${i + 2}" for i in range(len(PRODUCT_FIELDS)))
        row = await self.conn.fetchrow(
            f"""
            INSERT INTO products (barcode, {cols})
            VALUES ($1, {placeholders})
            ON CONFLICT (barcode) DO UPDATE SET
                {_merge_set("products", PRODUCT_FIELDS)},
                updated_at = now()
            RETURNING id, (xmax = 0) AS inserted
            """,
            fields.barcode,
            *[getattr(fields, c) for c in PRODUCT_FIELDS],
        )
        outcome = UpsertOutcome.INSERTED if row["inserted"] else UpsertOutcome.UPDATED
        return UpsertResult(outcome=outcome, product_id=row["id"])

    async def _update_product(self, fields: ProductFields) -> UpsertResult:
        known = fields.known()
        sets, vals, idx = [], [], 1
        for k, v in known.items():
            sets.append(f"{k} = ${idx}")
            vals.append(v)
            idx += 1
        sets.append("updated_at = now()")
        vals.append(fields.barcode)

        row = await self.conn.fetchrow(
            f"UPDATE products SET {', '.join(sets)} WHERE barcode = ${idx} RETURNING id",
            *vals,
        )
        if row is None:
            raise StoreFailure("products.name is required on insert", barcode=fields.barcode)
        return UpsertResult(outcome=UpsertOutcome.UPDATED, product_id=row["id"])

    async def upsert_nutrition(self, product_id: int, fields: NutritionFields) -> UpsertOutcome:
        cols = ", ".join(NUTRIENT_FIELDS)
        placeholders = ", ".join(f"${i + 2}" for i in range(len(NUTRIENT_FIELDS)))
        inserted = await self.conn.fetchval(
            f"""
            INSERT INTO nutrition_facts (product_id, {cols})
            VALUES ($1, {placeholders})
            ON CONFLICT (product_id) DO UPDATE SET
                {_merge_set("nutrition_facts", NUTRIENT_FIELDS)},
                updated_at = now()
            RETURNING (xmax = 0) AS inserted
            """,
            product_id,
            *[getattr(fields, c) for c in NUTRIENT_FIELDS],
        )
        return UpsertOutcome.INSERTED if inserted else UpsertOutcome.UPDATED

    async def upsert_image(self, product_id: int, image_type: str, url: str) -> UpsertOutcome:
        inserted = await self.conn.fetchval(
            """
            INSERT INTO product_images (product_id, image_type, image_url)
            VALUES ($1, $2, $3)
            ON CONFLICT (product_id, image_type) DO UPDATE SET
                image_url = EXCLUDED.image_url
            RETURNING (xmax = 0) AS inserted
            """,
            product_id,
            image_type,
            url,
        )
        return UpsertOutcome.INSERTED if inserted else UpsertOutcome.UPDATED

    async def get_product_id(self, barcode: str) -> Optional[int]:
        return await self.conn.fetchval(
            "SELECT id FROM products WHERE barcode = $1", barcode
        )


# ── Catalog Repository ───────────────────────────────────────────────────────

class AsyncPGCatalogRepository(CatalogRepository):
    """
    Production repository implementing the CatalogRepository interface.

    Driver errors are wrapped into StoreFailure at this boundary.
    """

    def __init__(self, db: DatabasePool):
        self.db = db

    async def ensure_schema(self) -> None:
        async with self.db.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Catalog schema ensured")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[CatalogUnit]:
        try:
            async with self.db.transaction() as conn:
                yield AsyncPGCatalogUnit(conn)
        except STORE_ERRORS as e:
            raise StoreFailure(f"Catalog write failed: {e}") from e

    @asynccontextmanager
    async def _reading(self):
        try:
            async with self.db.acquire() as conn:
                yield conn
        except STORE_ERRORS as e:
            logger.error("Catalog read failed: %s", e)
            raise StoreFailure("Catalog read failed") from e

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_by_barcode(self, barcode: str) -> Optional[ProductDetail]:
        async with self._reading() as conn:
            row = await conn.fetchrow("SELECT * FROM products WHERE barcode = $1", barcode)
            if not row:
                return None
            return (await self._details(conn, [row]))[0]

    async def get_by_id(self, product_id: int) -> Optional[ProductDetail]:
        async with self._reading() as conn:
            row = await conn.fetchrow("SELECT * FROM products WHERE id = $1", product_id)
            if not row:
                return None
            return (await self._details(conn, [row]))[0]

    async def find_matches(self, term: str) -> list[ProductDetail]:
        async with self._reading() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM products
                WHERE name ILIKE $1
                   OR brand ILIKE $1
                   OR description ILIKE $1
                   OR barcode = $2
                """,
                f"%{_escape_like(term)}%",
                term,
            )
            return await self._details(conn, rows)

    async def count_products(self) -> int:
        async with self._reading() as conn:
            return await conn.fetchval("SELECT COUNT(*) FROM products")

    async def list_brands(self) -> list[str]:
        async with self._reading() as conn:
            rows = await conn.fetch(
                "SELECT DISTINCT brand FROM products WHERE brand IS NOT NULL ORDER BY brand"
            )
            return [r["brand"] for r in rows]

    async def list_categories(self) -> list[str]:
        async with self._reading() as conn:
            rows = await conn.fetch(
                "SELECT DISTINCT category FROM products WHERE category IS NOT NULL "
                "ORDER BY category"
            )
            return [r["category"] for r in rows]

    async def _details(self, conn: asyncpg.Connection, rows: list[Any]) -> list[ProductDetail]:
        if not rows:
            return []
        ids = [r["id"] for r in rows]

        nutrition_rows = await conn.fetch(
            "SELECT * FROM nutrition_facts WHERE product_id = ANY($1::bigint[])", ids
        )
        image_rows = await conn.fetch(
            """
            SELECT product_id, image_type, image_url, alt_text
            FROM product_images
            WHERE product_id = ANY($1::bigint[])
            ORDER BY image_type
            """,
            ids,
        )

        nutrition = {r["product_id"]: NutritionFacts(**dict(r)) for r in nutrition_rows}
        images: dict[int, list[ProductImage]] = {}
        for r in image_rows:
            images.setdefault(r["product_id"], []).append(ProductImage(**dict(r)))

        details = []
        for r in rows:
            own_images = images.get(r["id"], [])
            main = next(
                (img.image_url for img in own_images if img.image_type == ImageType.MAIN.value),
                None,
            )
            details.append(ProductDetail(
                product=Product(**dict(r)),
                nutrition=nutrition.get(r["id"]),
                main_image=main,
                images=own_images,
            ))
        return details

    # ── Health Check ─────────────────────────────────────────────────────

    async def health_check(self) -> dict:
        try:
            async with self.db.acquire() as conn:
                version = await conn.fetchval("SELECT version()")
                pool = self.db.pool
                return {
                    "status": "healthy",
                    "backend": "postgres",
                    "postgres_version": version,
                    "pool_size": pool.get_size(),
                    "pool_free": pool.get_idle_size(),
                    "pool_used": pool.get_size() - pool.get_idle_size(),
                }
        except Exception as e:
            return {"status": "unhealthy", "backend": "postgres", "error": str(e)}

    async def close(self) -> None:
        await self.db.close()
