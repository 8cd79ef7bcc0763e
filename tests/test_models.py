import pytest
from pydantic import ValidationError

from models import (
    IngestSummary, NutritionFacts, ProductCreateRequest, ProductUpdateRequest,
    macro_composition,
)


def test_macro_composition_uses_4_9_4_kcal_per_gram():
    macros = macro_composition(carbs_g=50, fat_g=10, protein_g=15)
    # 200 + 90 + 60 = 350 kcal
    assert macros.energy_kcal == 350
    assert macros.carbs_pct == 57.1
    assert macros.fat_pct == 25.7
    assert macros.protein_pct == 17.1


def test_macro_composition_treats_missing_grams_as_zero():
    macros = macro_composition(carbs_g=None, fat_g=None, protein_g=10)
    assert macros.protein_pct == 100.0
    assert macros.carbs_pct == 0.0


@pytest.mark.parametrize('grams', [(None, None, None), (0, 0, 0)])
def test_macro_composition_unknown_without_energy(grams):
    assert macro_composition(*grams) is None


def test_nutrition_facts_expose_derived_macros():
    facts = NutritionFacts(product_id=1, total_carbs=62, total_fat=14, protein=8)
    dumped = facts.model_dump()
    assert dumped['macro_composition']['fat_pct'] == pytest.approx(31.0, abs=0.1)
    assert NutritionFacts(product_id=1, calories=100).macro_composition is None


def test_ingest_summary_total():
    summary = IngestSummary(ok=3, skipped=2, skip_reasons={'invalid_barcode': 2})
    assert summary.model_dump()['total'] == 5


def test_blank_names_in_requests():
    # Create defers the blank check to the service
    assert ProductCreateRequest(barcode='8991234567891', name='   ').name == ''
    with pytest.raises(ValidationError):
        ProductUpdateRequest(name='')
    assert ProductUpdateRequest().name is None
