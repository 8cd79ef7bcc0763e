"""
Product Catalog — Spreadsheet Field Normalizer

Upstream spreadsheets label the same column a dozen ways ("Nama Produk",
"namaproduk", "Product Name"). Labels are folded (lower-case, no whitespace,
no parentheses / percent signs / periods) and looked up in LABEL_ALIASES.
Values are then coerced per canonical field:
  - numbers: comma or dot decimals, lenient leading-number parse
  - barcode: digits only
  - image links: Google Drive share links rewritten to direct-view URLs
"""
from __future__ import annotations
import logging
import math
import numbers
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlparse

from barcode import digits_only
from models import NUTRIENT_FIELDS, NutritionFields, ProductFields, SkipReason

logger = logging.getLogger(__name__)

# ============================================================
# Label Alias Table
# ============================================================

# Keys are folded labels (see fold_label); values are canonical field names.
LABEL_ALIASES: dict[str, str] = {
    # Identity
    'kodebarcode': 'barcode',
    'barcode': 'barcode',
    'kodeproduk': 'barcode',
    'ean': 'barcode',
    'ean13': 'barcode',
    'gtin': 'barcode',
    'upc': 'barcode',
    'namaproduk': 'product_name',
    'nama': 'product_name',
    'productname': 'product_name',
    'name': 'product_name',
    'produksi': 'brand',
    'produsen': 'brand',
    'merek': 'brand',
    'merk': 'brand',
    'brand': 'brand',
    'producer': 'brand',
    'manufacturer': 'brand',
    'kategori': 'category',
    'category': 'category',
    'deskripsi': 'description',
    'keterangan': 'description',
    'description': 'description',
    'ukuran/berat': 'size_value',
    'ukuran': 'size_value',
    'berat': 'size_value',
    'beratbersih': 'size_value',
    'size': 'size_value',
    'weight': 'size_value',
    'netweight': 'size_value',
    'satuan': 'size_unit',
    'unit': 'size_unit',
    'harga': 'price',
    'price': 'price',
    # Serving / energy
    'takaransaji': 'serving_size',
    'servingsize': 'serving_size',
    'kaloritotalkkal': 'calories',
    'kaloritotal': 'calories',
    'kalori': 'calories',
    'energitotal': 'calories',
    'energitotalkkal': 'calories',
    'calories': 'calories',
    'calorieskcal': 'calories',
    'energykcal': 'calories',
    # Fat
    'lemaktot': 'total_fat',
    'lemaktotal': 'total_fat',
    'lemaktotalgr': 'total_fat',
    'lemakgr': 'total_fat',
    'lemak': 'total_fat',
    'totalfat': 'total_fat',
    'totalfatg': 'total_fat',
    'lemaktotakg': 'total_fat_rdi',
    'lemaktotalakg': 'total_fat_rdi',
    'lemakakg': 'total_fat_rdi',
    'totalfatdv': 'total_fat_rdi',
    'lemakjen': 'saturated_fat',
    'lemakjenuh': 'saturated_fat',
    'lemakjenuhgr': 'saturated_fat',
    'saturatedfat': 'saturated_fat',
    'saturatedfatg': 'saturated_fat',
    'lemakjenakg': 'saturated_fat_rdi',
    'lemakjenuhakg': 'saturated_fat_rdi',
    'saturatedfatdv': 'saturated_fat_rdi',
    'lemaktrans': 'trans_fat',
    'lemaktransgr': 'trans_fat',
    'transfat': 'trans_fat',
    'transfatg': 'trans_fat',
    'kolesterol': 'cholesterol',
    'kolesterolmg': 'cholesterol',
    'cholesterol': 'cholesterol',
    'cholesterolmg': 'cholesterol',
    # Sodium
    'garammg': 'sodium',
    'garam': 'sodium',
    'natriummg': 'sodium',
    'natrium': 'sodium',
    'sodium': 'sodium',
    'sodiummg': 'sodium',
    # Second "% AKG" column: sheet_to_json-style "_1", pandas-style ".1"
    'akg_1': 'sodium_rdi',
    'akg1': 'sodium_rdi',
    'garamakg': 'sodium_rdi',
    'natriumakg': 'sodium_rdi',
    'sodiumdv': 'sodium_rdi',
    # Carbohydrates
    'karbohidrattot': 'total_carbs',
    'karbohidrattotal': 'total_carbs',
    'karbohidrat': 'total_carbs',
    'karbohidratgr': 'total_carbs',
    'totalcarbs': 'total_carbs',
    'totalcarbohydrate': 'total_carbs',
    'totalcarbohydrateg': 'total_carbs',
    'akg': 'total_carbs_rdi',
    'karbohidratakg': 'total_carbs_rdi',
    'karbohidrattotakg': 'total_carbs_rdi',
    'totalcarbohydratedv': 'total_carbs_rdi',
    'seratpangan': 'dietary_fiber',
    'seratpangangr': 'dietary_fiber',
    'serat': 'dietary_fiber',
    'dietaryfiber': 'dietary_fiber',
    'dietaryfiberg': 'dietary_fiber',
    'gulatotalgr': 'total_sugars',
    'gulatotal': 'total_sugars',
    'gula': 'total_sugars',
    'totalsugars': 'total_sugars',
    'totalsugarsg': 'total_sugars',
    'sugars': 'total_sugars',
    # Protein
    'protein': 'protein',
    'proteingr': 'protein',
    'proteing': 'protein',
    'proteinakg': 'protein_rdi',
    'proteindv': 'protein_rdi',
    # Image
    'linkgambar': 'image_url',
    'linkgambar1': 'image_url',
    'link': 'image_url',
    'gambar': 'image_url',
    'imageurl': 'image_url',
    'image': 'image_url',
}

TEXT_FIELDS = {'product_name', 'brand', 'category', 'description', 'size_unit', 'serving_size'}
NUMERIC_FIELDS = {'size_value', 'price'} | (set(NUTRIENT_FIELDS) - {'serving_size'})
CANONICAL_FIELDS = TEXT_FIELDS | NUMERIC_FIELDS | {'barcode', 'image_url'}

_FOLD = re.compile(r'[\s().%]+')
_LEADING_FLOAT = re.compile(r'^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?')
_DRIVE_PATH_ID = re.compile(r'/d/([^/?#]+)')
_DRIVE_QUERY_ID = re.compile(r'[?&]id=([^&#]+)')
DRIVE_HOSTS = ('drive.google.com', 'docs.google.com')


def fold_label(label: Any) -> str:
    return _FOLD.sub('', str(label).lower())


def map_label(label: Any) -> Optional[str]:
    """Map a raw column label to its canonical field name."""
    key = fold_label(label)
    if key in LABEL_ALIASES:
        return LABEL_ALIASES[key]
    if key in CANONICAL_FIELDS:
        return key
    return None

# ============================================================
# Value Coercion
# ============================================================

def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def parse_number(value: Any) -> Optional[float]:
    """Parse '12,5', '12.5 g', 12.5 into a float; None when unknown, never 0."""
    if is_empty(value) or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        try:
            number = float(value)
        except OverflowError:
            return None
        return number if math.isfinite(number) else None

    text = str(value).strip().replace(',', '.', 1)
    m = _LEADING_FLOAT.match(text)
    if not m:
        return None
    number = float(m.group(0))
    return number if math.isfinite(number) else None


def clean_text(value: Any) -> Optional[str]:
    if is_empty(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def sanitize_barcode(value: Any) -> str:
    if is_empty(value):
        return ''
    # Spreadsheet readers hand numeric barcodes back as floats
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return digits_only(re.sub(r'\s+', '', str(value)))


def _link_host(url: str) -> str:
    try:
        if '://' not in url and not url.startswith('//'):
            url = f'//{url}'
        parsed = urlparse(url)
        return (parsed.hostname or '').lower()
    except ValueError:
        return ''


def is_drive_host(host: str) -> bool:
    return any(host == h or host.endswith('.' + h) for h in DRIVE_HOSTS)


def to_direct_link(url: Optional[str]) -> Optional[str]:
    """Rewrite a Drive share link to a direct-view URL; anything else passes through."""
    if not url:
        return url
    if not is_drive_host(_link_host(url)):
        return url
    m = _DRIVE_PATH_ID.search(url) or _DRIVE_QUERY_ID.search(url)
    if not m:
        return url
    return f'https://drive.google.com/uc?export=view&id={m.group(1)}'

# ============================================================
# Row Normalization
# ============================================================

@dataclass(frozen=True)
class CanonicalRow:
    product: ProductFields
    nutrition: NutritionFields
    image_url: Optional[str] = None


def collect_fields(raw_row: Mapping[str, Any]) -> dict[str, Any]:
    """Resolve labels; the first non-empty value per canonical field wins."""
    collected: dict[str, Any] = {}
    for label, value in raw_row.items():
        canonical = map_label(label)
        if canonical is None:
            logger.debug("Ignoring unknown column %r", label)
            continue
        if canonical in collected or is_empty(value):
            continue
        collected[canonical] = value
    return collected


def normalize(raw_row: Mapping[str, Any]) -> Union[CanonicalRow, SkipReason]:
    fields = collect_fields(raw_row)

    barcode = sanitize_barcode(fields.get('barcode'))
    name = clean_text(fields.get('product_name'))
    if not barcode or not name:
        return SkipReason.MISSING_REQUIRED_FIELD

    product = ProductFields(
        barcode=barcode,
        name=name,
        brand=clean_text(fields.get('brand')),
        category=clean_text(fields.get('category')),
        description=clean_text(fields.get('description')),
        size_value=parse_number(fields.get('size_value')),
        size_unit=clean_text(fields.get('size_unit')),
        price=parse_number(fields.get('price')),
    )

    nutrition = NutritionFields(
        serving_size=clean_text(fields.get('serving_size')),
        **{f: parse_number(fields.get(f)) for f in NUTRIENT_FIELDS if f != 'serving_size'},
    )

    return CanonicalRow(
        product=product,
        nutrition=nutrition,
        image_url=to_direct_link(clean_text(fields.get('image_url'))),
    )
