"""
Pytest configuration and shared fixtures for catalog tests.
"""
import asyncio

import pytest

from ingestion import IngestionConfig, IngestionPipeline
from repository import InMemoryRepository
from service import CatalogService

# Valid EAN-13 codes
INDOMIE = '8991234567891'
CHITATO = '4006381333931'
SUSU = '5901234123457'

# 13 digits, check digit should be 1
MIE_INSTAN_LEGACY = '8991234567890'


def run(coro):
    """Drive a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


def sheet_row(barcode, name, **extra):
    """A raw row labelled the way the upstream spreadsheets label it."""
    row = {'Kode Barcode': barcode, 'Nama Produk': name}
    row.update(extra)
    return row


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def pipeline(repo):
    return IngestionPipeline(repo)


@pytest.fixture
def legacy_pipeline(repo):
    return IngestionPipeline(repo, IngestionConfig(enforce_checksum=False))


@pytest.fixture
def service(repo):
    return CatalogService(repo)


@pytest.fixture
def seeded_repo(repo, legacy_pipeline):
    """Store holding a small, mixed catalog."""
    rows = [
        sheet_row(MIE_INSTAN_LEGACY, 'Mie Instan Goreng', Produksi='Indofood',
                  **{'Karbohidrat Tot': '62', 'Lemak Tot': '14', 'Protein': '8'}),
        sheet_row(CHITATO, 'Chitato Sapi Panggang', Produksi='Indofood'),
        sheet_row(SUSU, 'Susu UHT Coklat', Produksi='Ultrajaya',
                  Deskripsi='Susu dengan rasa coklat'),
    ]
    summary = run(legacy_pipeline.ingest(rows))
    assert summary.ok == 3
    return repo
