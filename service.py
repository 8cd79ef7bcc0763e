"""
Product Catalog — Catalog Service

Caller-facing operations shared by the HTTP layer and tests. Every input is
validated before the store is touched; store exceptions surface as
StoreFailure so callers can tell "broken" from "absent".
"""
from __future__ import annotations
import logging
from typing import Any, Awaitable, Optional, TypeVar

from barcode import require_valid
from errors import (
    CatalogError, DuplicateProduct, InvalidQuery, MissingRequiredField, NotFound,
    StoreFailure,
)
from models import (
    ImageType, NutritionFields, ProductCreateRequest, ProductDetail,
    ProductFields, ProductUpdateRequest, SearchPage,
)
from normalizer import to_direct_link
from repository import CatalogRepository, CatalogUnit
from search import DEFAULT_SEARCH_CONFIG, SearchConfig, SearchRanker

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CatalogService:

    def __init__(self, repo: CatalogRepository, search_config: SearchConfig = DEFAULT_SEARCH_CONFIG):
        self.repo = repo
        self.search_config = search_config
        self.ranker = SearchRanker(repo, search_config)

    # ----------------------------------------------------------
    # Reads
    # ----------------------------------------------------------

    async def lookup_barcode(self, raw: str) -> ProductDetail:
        barcode = require_valid(raw)
        detail = await self._guarded(self.repo.get_by_barcode(barcode))
        if detail is None:
            raise NotFound(f"No product with barcode {barcode}", barcode=barcode)
        return detail

    async def search(self, term: str, page: int = 1, page_size: Optional[int] = None) -> SearchPage:
        cfg = self.search_config
        term = (term or "").strip()
        page_size = cfg.default_page_size if page_size is None else page_size

        if len(term) < cfg.min_term_length:
            raise InvalidQuery(f"Search term must be at least {cfg.min_term_length} characters")
        if page < 1:
            raise InvalidQuery("page must be >= 1")
        if not 1 <= page_size <= cfg.max_page_size:
            raise InvalidQuery(f"page_size must be between 1 and {cfg.max_page_size}")

        return await self._guarded(self.ranker.search(term, page=page, page_size=page_size))

    async def get_product(self, product_id: int) -> ProductDetail:
        detail = await self._guarded(self.repo.get_by_id(product_id))
        if detail is None:
            raise NotFound(f"No product with id {product_id}", product_id=product_id)
        return detail

    async def list_brands(self) -> list[str]:
        return await self._guarded(self.repo.list_brands())

    async def list_categories(self) -> list[str]:
        return await self._guarded(self.repo.list_categories())

    # ----------------------------------------------------------
    # Writes
    # ----------------------------------------------------------

    async def create_product(self, payload: ProductCreateRequest) -> ProductDetail:
        barcode = require_valid(payload.barcode)
        if not payload.name.strip():
            raise MissingRequiredField("name")
        fields = ProductFields(barcode=barcode, **_product_values(payload))

        async def write(unit: CatalogUnit) -> int:
            if await unit.get_product_id(barcode) is not None:
                raise DuplicateProduct(f"Product with barcode {barcode} already exists",
                                       barcode=barcode)
            return await self._write(unit, fields, payload.nutrition, payload.image_url)

        product_id = await self._in_unit(write)
        logger.info("Created product %s (id=%s)", barcode, product_id)
        return await self.get_product(product_id)

    async def update_product(self, product_id: int, payload: ProductUpdateRequest) -> ProductDetail:
        current = await self.get_product(product_id)
        fields = ProductFields(barcode=current.product.barcode, **_product_values(payload))

        async def write(unit: CatalogUnit) -> int:
            return await self._write(unit, fields, payload.nutrition, payload.image_url)

        await self._in_unit(write)
        logger.info("Updated product %s (id=%s)", current.product.barcode, product_id)
        return await self.get_product(product_id)

    async def _write(
        self,
        unit: CatalogUnit,
        fields: ProductFields,
        nutrition: Optional[NutritionFields],
        image_url: Optional[str],
    ) -> int:
        result = await unit.upsert_product(fields)
        product_id = result.product_id
        if product_id is None:
            product_id = await unit.get_product_id(fields.barcode)
        if product_id is None:
            raise StoreFailure("Product id could not be resolved", barcode=fields.barcode)

        if nutrition is not None and not nutrition.is_empty():
            await unit.upsert_nutrition(product_id, nutrition)
        if image_url:
            await unit.upsert_image(product_id, ImageType.MAIN.value, to_direct_link(image_url))
        return product_id

    async def _in_unit(self, write) -> Any:
        try:
            async with self.repo.transaction() as unit:
                return await write(unit)
        except CatalogError:
            raise
        except Exception as e:
            logger.exception("Catalog write failed")
            raise StoreFailure("Catalog write failed") from e

    @staticmethod
    async def _guarded(awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except CatalogError:
            raise
        except Exception as e:
            logger.exception("Catalog read failed")
            raise StoreFailure("Catalog read failed") from e


def _product_values(payload) -> dict[str, Any]:
    return payload.model_dump(exclude={"barcode", "nutrition", "image_url"}, exclude_none=True)
