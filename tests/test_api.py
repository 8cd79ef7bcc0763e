import pytest
from fastapi.testclient import TestClient

from api import app
from tests.conftest import CHITATO, INDOMIE, SUSU


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def _create(client, barcode=INDOMIE, name='Indomie Goreng', **extra):
    return client.post('/products', json={'barcode': barcode, 'name': name, **extra})


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    body = response.json()
    assert body['status'] == 'healthy'
    assert body['components']['repository']['backend'] == 'memory'
    assert body['request_count'] >= 1
    assert 'X-Response-Time-Ms' in response.headers


def test_request_count_grows(client):
    first = client.get('/health').json()['request_count']
    client.get('/brands')
    assert client.get('/health').json()['request_count'] == first + 2


def test_create_and_scan(client):
    response = _create(client, brand='Indofood',
                       nutrition={'total_carbs': 54, 'total_fat': 17, 'protein': 9})
    assert response.status_code == 201
    created = response.json()
    assert created['product']['barcode'] == INDOMIE
    assert created['nutrition']['macro_composition']['energy_kcal'] == 405.0

    scanned = client.get(f'/products/scan/{INDOMIE}')
    assert scanned.status_code == 200
    assert scanned.json()['product']['id'] == created['product']['id']


def test_duplicate_create_is_409(client):
    assert _create(client).status_code == 201
    response = _create(client)
    assert response.status_code == 409
    assert response.json()['error'] == 'duplicate_product'


@pytest.mark.parametrize('barcode, code', [
    ('8994907111111', 'invalid_checksum'),
    ('1234', 'invalid_format'),
])
def test_scan_invalid_barcode_is_400(client, barcode, code):
    response = client.get(f'/products/scan/{barcode}')
    assert response.status_code == 400
    assert response.json()['error'] == code


def test_scan_unknown_barcode_is_404(client):
    response = client.get(f'/products/scan/{CHITATO}')
    assert response.status_code == 404
    assert response.json() == {
        'error': 'not_found',
        'message': f'No product with barcode {CHITATO}',
    }


def test_search(client):
    _create(client, name='Mie Sedaap', brand='Wings')
    _create(client, barcode=CHITATO, name='Chitato', brand='Indofood',
            description='Keripik kentang rasa mie goreng')
    _create(client, barcode=SUSU, name='Susu UHT')

    response = client.get('/products/search', params={'q': 'mie'})
    assert response.status_code == 200
    body = response.json()
    assert body['total'] == 2
    assert body['total_pages'] == 1
    assert [item['product']['name'] for item in body['items']] == ['Mie Sedaap', 'Chitato']


@pytest.mark.parametrize('params', [
    {'q': 'm'},
    {'q': 'mie', 'page': 0},
    {'q': 'mie', 'page_size': 500},
])
def test_search_bad_query_is_400(client, params):
    response = client.get('/products/search', params=params)
    assert response.status_code == 400
    assert response.json()['error'] == 'invalid_query'


def test_update_product(client):
    product_id = _create(client, brand='Indofood').json()['product']['id']
    response = client.put(f'/products/{product_id}', json={'price': 3500})
    assert response.status_code == 200
    product = response.json()['product']
    assert product['price'] == 3500
    assert product['brand'] == 'Indofood'


def test_get_unknown_product_is_404(client):
    assert client.get('/products/999').status_code == 404
    assert client.put('/products/999', json={'price': 1}).status_code == 404


def test_blank_name_is_rejected(client):
    response = _create(client, name='  ')
    assert response.status_code == 400
    assert response.json()['error'] == 'missing_required_field'
    assert client.get(f'/products/scan/{INDOMIE}').status_code == 404


def test_blank_name_on_update_is_422(client):
    product_id = _create(client).json()['product']['id']
    response = client.put(f'/products/{product_id}', json={'name': ' '})
    assert response.status_code == 422
    assert response.json()['error'] == 'invalid_request'


def test_ingest_rows(client):
    response = client.post('/ingest', json={'rows': [
        {'Kode Barcode': INDOMIE, 'Nama Produk': 'Indomie Goreng', 'Protein': '8,5'},
        {'Kode Barcode': '8994907111111', 'Nama Produk': 'Bad'},
        {'Nama Produk': 'No Barcode'},
    ]})
    assert response.status_code == 200
    assert response.json() == {
        'ok': 1,
        'skipped': 2,
        'skip_reasons': {'invalid_barcode': 1, 'missing_required_field': 1},
        'total': 3,
    }
    detail = client.get(f'/products/scan/{INDOMIE}').json()
    assert detail['nutrition']['protein'] == 8.5


def test_brands_and_categories(client):
    _create(client, brand='Indofood', category='Mie Instan')
    _create(client, barcode=CHITATO, name='Chitato Sapi Panggang', brand='Indofood',
            category='Keripik')
    _create(client, barcode=SUSU, name='Susu UHT Coklat')

    brands = client.get('/brands')
    assert brands.status_code == 200
    assert brands.json() == ['Indofood']
    assert client.get('/categories').json() == ['Keripik', 'Mie Instan']


def test_brands_on_empty_catalog(client):
    assert client.get('/brands').json() == []
    assert client.get('/categories').json() == []
