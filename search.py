"""
Product Catalog — Search Ranker

Ranks catalog matches by match type:
  1. barcode equals the term
  2. name starts with the term
  3. brand starts with the term
  4. term found anywhere else (name, brand, description)
Ties are broken by name (code-point order), then by id, so the ordering is
total and identical across calls against an unchanged store.
"""
from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING

from models import Product, ProductDetail, SearchPage

if TYPE_CHECKING:
    from repository import CatalogRepository

logger = logging.getLogger(__name__)


@dataclass
class SearchConfig:
    """Tunable parameters for search."""
    min_term_length: int = 2
    default_page_size: int = 20
    max_page_size: int = 100


DEFAULT_SEARCH_CONFIG = SearchConfig()


class MatchRank(IntEnum):
    BARCODE = 1
    NAME_PREFIX = 2
    BRAND_PREFIX = 3
    SUBSTRING = 4


def matches(product: Product, term: str) -> bool:
    if product.barcode == term:
        return True
    needle = term.lower()
    return any(
        needle in field.lower()
        for field in (product.name, product.brand, product.description)
        if field
    )


def rank_of(product: Product, term: str) -> MatchRank:
    needle = term.lower()
    if product.barcode == term:
        return MatchRank.BARCODE
    if product.name.lower().startswith(needle):
        return MatchRank.NAME_PREFIX
    if product.brand and product.brand.lower().startswith(needle):
        return MatchRank.BRAND_PREFIX
    return MatchRank.SUBSTRING


def rank(candidates: list[ProductDetail], term: str) -> list[ProductDetail]:
    return sorted(
        candidates,
        key=lambda d: (rank_of(d.product, term), d.product.name, d.product.id),
    )


def total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if total else 0


class SearchRanker:
    """Stateless: one ordering pass over the store's candidates per call."""

    def __init__(self, repo: CatalogRepository, config: SearchConfig = DEFAULT_SEARCH_CONFIG):
        self.repo = repo
        self.config = config

    async def search(self, term: str, page: int = 1, page_size: int = 20) -> SearchPage:
        candidates = await self.repo.find_matches(term)
        ordered = rank(candidates, term)

        start = (page - 1) * page_size
        window = ordered[start:start + page_size]
        logger.debug("search %r: %d matches, page %d/%d",
                     term, len(ordered), page, total_pages(len(ordered), page_size))

        return SearchPage(
            query=term,
            items=window,
            total=len(ordered),
            page=page,
            page_size=page_size,
            total_pages=total_pages(len(ordered), page_size),
        )
