import random
from datetime import datetime, timezone

import pytest

from models import Product, ProductDetail
from search import MatchRank, SearchConfig, SearchRanker, matches, rank, rank_of, total_pages
from tests.conftest import CHITATO, MIE_INSTAN_LEGACY, run


def make(pid, name, barcode='00000000', brand=None, description=None):
    now = datetime.now(timezone.utc)
    return ProductDetail(product=Product(
        id=pid, barcode=barcode, name=name, brand=brand, description=description,
        created_at=now, updated_at=now,
    ))


def test_match_predicate():
    p = make(1, 'Mie Instan Goreng', barcode='8991234567890', brand='Indofood',
             description='Rasa ayam bawang').product
    assert matches(p, 'goreng')
    assert matches(p, 'INDO')
    assert matches(p, 'ayam')
    assert matches(p, '8991234567890')
    assert not matches(p, '89912345')  # barcodes only match exactly
    assert not matches(p, 'sapi')


def test_rank_classes():
    p = make(1, 'Mie Instan', barcode='12345678', brand='Sedaap').product
    assert rank_of(p, '12345678') is MatchRank.BARCODE
    assert rank_of(p, 'mie') is MatchRank.NAME_PREFIX
    assert rank_of(p, 'sed') is MatchRank.BRAND_PREFIX
    assert rank_of(p, 'instan') is MatchRank.SUBSTRING


def test_barcode_match_ranks_first_regardless_of_name():
    term = '12345678'
    items = [
        make(1, 'Aaa 12345678 edition'),
        make(2, 'Zzz', barcode=term),
    ]
    assert [d.product.id for d in rank(items, term)] == [2, 1]


def test_rank_order_then_name_tie_break():
    items = [
        make(1, 'Keripik Sapi', brand='Sapi Jaya'),
        make(2, 'Sapi Lada Hitam'),
        make(3, 'Bakso', brand='Sapiku'),
        make(4, 'Abon Sapi'),
        make(5, 'Sapi Bumbu'),
    ]
    ordered = [d.product.id for d in rank(items, 'sapi')]
    # name prefix (5, 2), brand prefix (3, 1), substring (4)
    assert ordered == [5, 2, 3, 1, 4]


@pytest.mark.parametrize('seed', range(5))
def test_ranking_is_deterministic(seed):
    rng = random.Random(seed)
    names = ['Teh Manis', 'Teh Tawar', 'Es Teh', 'Teh Manis', 'Kopi Teh']
    items = [make(i, n, brand=rng.choice(['Teh Co', None])) for i, n in enumerate(names)]
    shuffled = items[:]
    rng.shuffle(shuffled)
    assert [d.product.id for d in rank(items, 'teh')] == \
        [d.product.id for d in rank(shuffled, 'teh')]


@pytest.mark.parametrize('total, size, pages', [(0, 20, 0), (1, 20, 1), (20, 20, 1), (21, 20, 2)])
def test_total_pages(total, size, pages):
    assert total_pages(total, size) == pages


def test_search_against_store(seeded_repo):
    page = run(SearchRanker(seeded_repo).search('mie', page=1, page_size=20))
    assert page.total == 1
    assert page.total_pages == 1
    assert page.items[0].product.barcode == MIE_INSTAN_LEGACY
    assert page.items[0].product.name == 'Mie Instan Goreng'


def test_search_pagination_windows(seeded_repo):
    ranker = SearchRanker(seeded_repo, SearchConfig())
    first = run(ranker.search('indofood', page=1, page_size=1))
    second = run(ranker.search('indofood', page=2, page_size=1))
    beyond = run(ranker.search('indofood', page=3, page_size=1))
    assert first.total == second.total == 2
    assert first.total_pages == 2
    # Brand-prefix ties broken by name: Chitato before Mie
    assert first.items[0].product.barcode == CHITATO
    assert second.items[0].product.barcode == MIE_INSTAN_LEGACY
    assert beyond.items == []
