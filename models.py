"""
Product Catalog — Core Pydantic Models
"""
from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field, computed_field, field_validator

# ============================================================
# Enums
# ============================================================

class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"

class ImageType(str, Enum):
    MAIN = "main"
    NUTRITION = "nutrition"
    INGREDIENTS = "ingredients"
    PACKAGING = "packaging"

class SkipReason(str, Enum):
    MISSING_REQUIRED_FIELD = "missing_required_field"
    INVALID_BARCODE = "invalid_barcode"
    STORE_FAILURE = "store_failure"
    INVALID_ROW = "invalid_row"

# ============================================================
# Write Payloads (None = unknown, never overwrites)
# ============================================================

PRODUCT_FIELDS = (
    'name', 'brand', 'category', 'description',
    'size_value', 'size_unit', 'price',
)

NUTRIENT_FIELDS = (
    'serving_size', 'calories',
    'total_fat', 'total_fat_rdi',
    'saturated_fat', 'saturated_fat_rdi',
    'trans_fat', 'cholesterol',
    'sodium', 'sodium_rdi',
    'total_carbs', 'total_carbs_rdi',
    'dietary_fiber', 'total_sugars',
    'protein', 'protein_rdi',
)

class ProductFields(BaseModel):
    """Product attributes for a merge-upsert keyed by barcode."""
    barcode: str
    name: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    size_value: Optional[float] = None
    size_unit: Optional[str] = None
    price: Optional[float] = None

    def known(self) -> dict[str, Any]:
        """Attributes other than the barcode that carry a value."""
        return {k: getattr(self, k) for k in PRODUCT_FIELDS if getattr(self, k) is not None}

class NutritionFields(BaseModel):
    serving_size: Optional[str] = None
    calories: Optional[float] = None
    total_fat: Optional[float] = None
    total_fat_rdi: Optional[float] = None
    saturated_fat: Optional[float] = None
    saturated_fat_rdi: Optional[float] = None
    trans_fat: Optional[float] = None
    cholesterol: Optional[float] = None
    sodium: Optional[float] = None
    sodium_rdi: Optional[float] = None
    total_carbs: Optional[float] = None
    total_carbs_rdi: Optional[float] = None
    dietary_fiber: Optional[float] = None
    total_sugars: Optional[float] = None
    protein: Optional[float] = None
    protein_rdi: Optional[float] = None

    def known(self) -> dict[str, Any]:
        return {k: getattr(self, k) for k in NUTRIENT_FIELDS if getattr(self, k) is not None}

    def is_empty(self) -> bool:
        return not self.known()

# ============================================================
# Stored Records
# ============================================================

class Product(BaseModel):
    id: int
    barcode: str
    name: str
    brand: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    size_value: Optional[float] = None
    size_unit: Optional[str] = None
    price: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class MacroComposition(BaseModel):
    """Share of macro energy per macronutrient, in percent."""
    carbs_pct: float
    fat_pct: float
    protein_pct: float
    energy_kcal: float

class NutritionFacts(NutritionFields):
    product_id: int
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def macro_composition(self) -> Optional[MacroComposition]:
        return macro_composition(self.total_carbs, self.total_fat, self.protein)

class ProductImage(BaseModel):
    product_id: int
    image_type: str = ImageType.MAIN.value
    image_url: str
    alt_text: Optional[str] = None

class ProductDetail(BaseModel):
    """A product joined with its nutrition facts and images."""
    product: Product
    nutrition: Optional[NutritionFacts] = None
    main_image: Optional[str] = None
    images: list[ProductImage] = Field(default_factory=list)

class UpsertResult(BaseModel):
    outcome: UpsertOutcome
    # Stores may omit the id on UPDATED; callers fall back to a barcode lookup.
    product_id: Optional[int] = None

# ============================================================
# Query / Pipeline Output
# ============================================================

class SearchPage(BaseModel):
    query: str
    items: list[ProductDetail] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 20
    total_pages: int = 0

class IngestSummary(BaseModel):
    ok: int = 0
    skipped: int = 0
    skip_reasons: dict[str, int] = Field(default_factory=dict)

    @computed_field
    @property
    def total(self) -> int:
        return self.ok + self.skipped

# ============================================================
# API Request/Response Models
# ============================================================

class ProductCreateRequest(BaseModel):
    barcode: str
    name: str
    brand: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    size_value: Optional[float] = None
    size_unit: Optional[str] = None
    price: Optional[float] = None
    nutrition: Optional[NutritionFields] = None
    image_url: Optional[str] = None

    @field_validator('name')
    @classmethod
    def strip_name(cls, v: str) -> str:
        # Blank names are rejected by the service as a missing field
        return v.strip()

class ProductUpdateRequest(BaseModel):
    name: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    size_value: Optional[float] = None
    size_unit: Optional[str] = None
    price: Optional[float] = None
    nutrition: Optional[NutritionFields] = None
    image_url: Optional[str] = None

    @field_validator('name')
    @classmethod
    def name_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError('name must not be blank')
        return v.strip() if v is not None else v

class IngestRequest(BaseModel):
    rows: list[dict[str, Any]] = Field(default_factory=list)

class HealthResponse(BaseModel):
    status: str
    components: dict[str, dict]
    version: str
    uptime_seconds: int
    request_count: int = 0

# ============================================================
# Utility: Macro Composition
# ============================================================

KCAL_PER_GRAM = {'carbs': 4.0, 'fat': 9.0, 'protein': 4.0}

def macro_composition(
    carbs_g: Optional[float],
    fat_g: Optional[float],
    protein_g: Optional[float],
) -> Optional[MacroComposition]:
    """Derive macro energy shares from grams (4/9/4 kcal per gram).

    Unknown grams count as zero as long as one of the three is known.
    """
    if carbs_g is None and fat_g is None and protein_g is None:
        return None
    carbs = (carbs_g or 0.0) * KCAL_PER_GRAM['carbs']
    fat = (fat_g or 0.0) * KCAL_PER_GRAM['fat']
    protein = (protein_g or 0.0) * KCAL_PER_GRAM['protein']
    energy = carbs + fat + protein
    if energy <= 0:
        return None
    return MacroComposition(
        carbs_pct=round(carbs / energy * 100, 1),
        fat_pct=round(fat / energy * 100, 1),
        protein_pct=round(protein / energy * 100, 1),
        energy_kcal=round(energy, 1),
    )
