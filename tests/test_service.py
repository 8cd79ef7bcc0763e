import pytest

from errors import (
    DuplicateProduct, InvalidChecksum, InvalidFormat, InvalidQuery, MissingRequiredField,
    NotFound, StoreFailure,
)
from models import NutritionFields, ProductCreateRequest, ProductUpdateRequest
from repository import InMemoryRepository
from service import CatalogService
from tests.conftest import CHITATO, INDOMIE, MIE_INSTAN_LEGACY, SUSU, run


class ExplodingRepository(InMemoryRepository):
    """Fails the test if any read reaches the store."""

    async def get_by_barcode(self, barcode):
        raise AssertionError('store must not be touched')

    async def find_matches(self, term):
        raise AssertionError('store must not be touched')


class BrokenRepository(InMemoryRepository):
    async def get_by_barcode(self, barcode):
        raise ConnectionError('connection refused')

    async def find_matches(self, term):
        raise ConnectionError('connection refused')


def test_lookup_by_barcode(seeded_repo):
    detail = run(CatalogService(seeded_repo).lookup_barcode(CHITATO))
    assert detail.product.name == 'Chitato Sapi Panggang'


def test_lookup_unknown_barcode_is_not_found(service):
    with pytest.raises(NotFound):
        run(service.lookup_barcode(INDOMIE))


@pytest.mark.parametrize('raw, error', [
    ('8994907111111', InvalidChecksum),
    ('1234', InvalidFormat),
    ('123456789012345', InvalidFormat),
])
def test_invalid_barcode_is_rejected_before_store_access(raw, error):
    with pytest.raises(error):
        run(CatalogService(ExplodingRepository()).lookup_barcode(raw))


@pytest.mark.parametrize('term', ['', ' ', 'a', '  b  '])
def test_short_terms_are_rejected_before_store_access(term):
    with pytest.raises(InvalidQuery):
        run(CatalogService(ExplodingRepository()).search(term))


@pytest.mark.parametrize('page, page_size', [(0, 20), (1, 0), (1, 101)])
def test_bad_page_window_is_invalid_query(page, page_size):
    with pytest.raises(InvalidQuery):
        run(CatalogService(ExplodingRepository()).search('mie', page=page, page_size=page_size))


def test_search_trims_and_ranks(seeded_repo):
    page = run(CatalogService(seeded_repo).search('  mie  '))
    assert page.query == 'mie'
    assert page.total == 1
    assert page.page_size == 20
    assert page.items[0].product.barcode == MIE_INSTAN_LEGACY


def test_identical_searches_return_identical_order(seeded_repo):
    svc = CatalogService(seeded_repo)
    first = run(svc.search('su'))
    second = run(svc.search('su'))
    assert [d.product.id for d in first.items] == [d.product.id for d in second.items]


def test_store_errors_surface_as_store_failure():
    svc = CatalogService(BrokenRepository())
    with pytest.raises(StoreFailure):
        run(svc.lookup_barcode(INDOMIE))
    with pytest.raises(StoreFailure):
        run(svc.search('mie'))


def test_create_product_with_nutrition_and_image(service):
    detail = run(service.create_product(ProductCreateRequest(
        barcode=INDOMIE,
        name='Indomie Goreng',
        brand='Indofood',
        nutrition=NutritionFields(total_carbs=54, total_fat=17, protein=9),
        image_url='https://drive.google.com/open?id=ABC',
    )))
    assert detail.product.id == 1
    assert detail.nutrition.protein == 9
    assert detail.nutrition.macro_composition is not None
    assert detail.main_image == 'https://drive.google.com/uc?export=view&id=ABC'


def test_create_duplicate_barcode(service):
    payload = ProductCreateRequest(barcode=INDOMIE, name='Indomie Goreng')
    run(service.create_product(payload))
    with pytest.raises(DuplicateProduct):
        run(service.create_product(payload))


def test_create_rejects_invalid_barcode(service, repo):
    with pytest.raises(InvalidChecksum):
        run(service.create_product(ProductCreateRequest(barcode='8994907111111', name='X')))
    assert run(repo.count_products()) == 0


def test_create_rejects_blank_name(service, repo):
    with pytest.raises(MissingRequiredField) as exc_info:
        run(service.create_product(ProductCreateRequest(barcode=INDOMIE, name='  ')))
    assert exc_info.value.field_name == 'name'
    assert run(repo.count_products()) == 0


def test_update_merges_fields(service):
    created = run(service.create_product(ProductCreateRequest(
        barcode=INDOMIE, name='Indomie Goreng', brand='Indofood',
        nutrition=NutritionFields(calories=380, protein=8),
    )))
    updated = run(service.update_product(created.product.id, ProductUpdateRequest(
        price=3500, nutrition=NutritionFields(calories=390),
    )))
    assert updated.product.name == 'Indomie Goreng'
    assert updated.product.brand == 'Indofood'
    assert updated.product.price == 3500
    assert updated.nutrition.calories == 390
    assert updated.nutrition.protein == 8


def test_update_unknown_product(service):
    with pytest.raises(NotFound):
        run(service.update_product(99, ProductUpdateRequest(name='Ghost')))


def test_brands_and_categories_are_distinct_and_sorted(service):
    for barcode, name, brand, category in [
        (INDOMIE, 'Indomie Goreng', 'Indofood', 'Mie Instan'),
        (CHITATO, 'Chitato Sapi Panggang', 'Indofood', 'Keripik'),
        (SUSU, 'Susu UHT Coklat', 'Ultrajaya', None),
    ]:
        run(service.create_product(ProductCreateRequest(
            barcode=barcode, name=name, brand=brand, category=category)))

    assert run(service.list_brands()) == ['Indofood', 'Ultrajaya']
    assert run(service.list_categories()) == ['Keripik', 'Mie Instan']


def test_brand_listing_store_errors_surface_as_store_failure():
    class DownRepository(InMemoryRepository):
        async def list_brands(self):
            raise ConnectionError('connection refused')

    with pytest.raises(StoreFailure):
        run(CatalogService(DownRepository()).list_brands())
