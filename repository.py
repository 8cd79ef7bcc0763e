"""
Product Catalog — Catalog Store

Repository interface shared by the ingestion pipeline, the search ranker and
the catalog service, plus an in-memory implementation for tests and local dev.
The PostgreSQL implementation lives in asyncpg_repository.py.

Writes only happen through a unit of work obtained from `transaction()`:
commit on normal exit, rollback on any exception.
"""
from __future__ import annotations
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from errors import StoreFailure
from models import (
    ImageType, NutritionFacts, NutritionFields, Product, ProductDetail,
    ProductFields, ProductImage, UpsertOutcome, UpsertResult,
)
from search import matches

logger = logging.getLogger(__name__)

# ============================================================
# Store Interface (Repository Pattern)
# ============================================================

class CatalogUnit:
    """Write handle bound to one transaction."""

    async def upsert_product(self, fields: ProductFields) -> UpsertResult:
        """Insert by barcode, or merge-update: None fields keep stored values."""
        raise NotImplementedError

    async def upsert_nutrition(self, product_id: int, fields: NutritionFields) -> UpsertOutcome:
        raise NotImplementedError

    async def upsert_image(self, product_id: int, image_type: str, url: str) -> UpsertOutcome:
        raise NotImplementedError

    async def get_product_id(self, barcode: str) -> Optional[int]:
        raise NotImplementedError


class CatalogRepository:
    """
    Abstract catalog access. Backed by asyncpg in production; the in-memory
    implementation below is swappable for tests.
    """

    def transaction(self) -> AsyncIterator[CatalogUnit]:
        raise NotImplementedError

    async def get_by_barcode(self, barcode: str) -> Optional[ProductDetail]:
        raise NotImplementedError

    async def get_by_id(self, product_id: int) -> Optional[ProductDetail]:
        raise NotImplementedError

    async def find_matches(self, term: str) -> list[ProductDetail]:
        """Every product whose name/brand/description contains term, or whose barcode equals it."""
        raise NotImplementedError

    async def count_products(self) -> int:
        raise NotImplementedError

    async def list_brands(self) -> list[str]:
        """Distinct non-null brands, sorted."""
        raise NotImplementedError

    async def list_categories(self) -> list[str]:
        raise NotImplementedError

    async def health_check(self) -> dict:
        raise NotImplementedError

    async def close(self) -> None:
        return None


# ============================================================
# In-Memory Repository (for testing / local dev)
# ============================================================

def _now() -> datetime:
    return datetime.now(timezone.utc)


class _InMemoryUnit(CatalogUnit):
    """Stages writes on copies of the committed tables."""

    def __init__(self, repo: InMemoryRepository):
        self.products = dict(repo.products)
        self.nutrition = dict(repo.nutrition)
        self.images = dict(repo.images)
        self.barcode_index = dict(repo.barcode_index)
        self.next_id = repo.next_id

    async def upsert_product(self, fields: ProductFields) -> UpsertResult:
        now = _now()
        product_id = self.barcode_index.get(fields.barcode)

        if product_id is None:
            if fields.name is None:
                raise StoreFailure("products.name is required on insert",
                                   barcode=fields.barcode)
            product_id = self.next_id
            self.next_id += 1
            self.products[product_id] = Product(
                id=product_id, barcode=fields.barcode,
                created_at=now, updated_at=now, **fields.known(),
            )
            self.barcode_index[fields.barcode] = product_id
            return UpsertResult(outcome=UpsertOutcome.INSERTED, product_id=product_id)

        current = self.products[product_id]
        self.products[product_id] = current.model_copy(
            update={**fields.known(), 'updated_at': now})
        # Same as a MySQL-style upsert: an update reports no new id
        return UpsertResult(outcome=UpsertOutcome.UPDATED)

    async def upsert_nutrition(self, product_id: int, fields: NutritionFields) -> UpsertOutcome:
        if product_id not in self.products:
            raise StoreFailure(f"nutrition_facts: unknown product {product_id}")
        now = _now()
        current = self.nutrition.get(product_id)
        if current is None:
            self.nutrition[product_id] = NutritionFacts(
                product_id=product_id, updated_at=now, **fields.known())
            return UpsertOutcome.INSERTED
        self.nutrition[product_id] = current.model_copy(
            update={**fields.known(), 'updated_at': now})
        return UpsertOutcome.UPDATED

    async def upsert_image(self, product_id: int, image_type: str, url: str) -> UpsertOutcome:
        if product_id not in self.products:
            raise StoreFailure(f"product_images: unknown product {product_id}")
        key = (product_id, image_type)
        outcome = UpsertOutcome.UPDATED if key in self.images else UpsertOutcome.INSERTED
        self.images[key] = ProductImage(
            product_id=product_id, image_type=image_type, image_url=url)
        return outcome

    async def get_product_id(self, barcode: str) -> Optional[int]:
        return self.barcode_index.get(barcode)


class InMemoryRepository(CatalogRepository):
    """In-memory implementation for testing without a database."""

    def __init__(self):
        self.products: dict[int, Product] = {}
        self.nutrition: dict[int, NutritionFacts] = {}
        self.images: dict[tuple[int, str], ProductImage] = {}
        self.barcode_index: dict[str, int] = {}
        self.next_id = 1
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[CatalogUnit]:
        async with self._lock:
            unit = _InMemoryUnit(self)
            try:
                yield unit
            except BaseException:
                logger.debug("Rolling back in-memory unit of work")
                raise
            self.products = unit.products
            self.nutrition = unit.nutrition
            self.images = unit.images
            self.barcode_index = unit.barcode_index
            self.next_id = unit.next_id

    async def get_by_barcode(self, barcode: str) -> Optional[ProductDetail]:
        product_id = self.barcode_index.get(barcode)
        return self._detail(product_id) if product_id is not None else None

    async def get_by_id(self, product_id: int) -> Optional[ProductDetail]:
        return self._detail(product_id) if product_id in self.products else None

    async def find_matches(self, term: str) -> list[ProductDetail]:
        return [
            self._detail(p.id) for p in self.products.values()
            if matches(p, term)
        ]

    async def count_products(self) -> int:
        return len(self.products)

    async def list_brands(self) -> list[str]:
        return sorted({p.brand for p in self.products.values() if p.brand is not None})

    async def list_categories(self) -> list[str]:
        return sorted({p.category for p in self.products.values() if p.category is not None})

    async def health_check(self) -> dict:
        return {
            "status": "healthy",
            "backend": "memory",
            "products": len(self.products),
        }

    def _detail(self, product_id: int) -> ProductDetail:
        images = sorted(
            (img for (pid, _), img in self.images.items() if pid == product_id),
            key=lambda img: img.image_type,
        )
        main = self.images.get((product_id, ImageType.MAIN.value))
        return ProductDetail(
            product=self.products[product_id],
            nutrition=self.nutrition.get(product_id),
            main_image=main.image_url if main else None,
            images=images,
        )


# ============================================================
# Backend Selection
# ============================================================

async def open_repository(settings) -> CatalogRepository:
    """Build the repository named by `settings.repository_backend`."""
    if settings.repository_backend == "postgres":
        from asyncpg_repository import AsyncPGCatalogRepository, DatabasePool

        db = DatabasePool(
            settings.asyncpg_dsn,
            min_size=settings.db_pool_min,
            max_size=settings.db_pool_max,
            command_timeout=settings.db_command_timeout,
        )
        await db.initialize()
        repo = AsyncPGCatalogRepository(db)
        await repo.ensure_schema()
        return repo

    logger.warning("Using in-memory repository; data is lost on shutdown")
    return InMemoryRepository()
