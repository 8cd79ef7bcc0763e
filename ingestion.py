"""
Product Catalog — Ingestion Pipeline

Bulk spreadsheet rows → catalog writes.
Per row, in order:
  1. Normalize labels and values (normalizer.normalize)
  2. Validate the barcode
  3. One atomic unit: product upsert → id resolution → nutrition upsert
     → main image upsert
A row that fails at any step is counted as skipped and the batch moves on;
a failure inside the unit rolls back everything that row wrote.
"""
from __future__ import annotations
import argparse
import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

import pandas as pd

from barcode import require_valid
from config import configure_logging, get_settings
from errors import CatalogError, InvalidChecksum, InvalidFormat, StoreFailure
from models import ImageType, IngestSummary, SkipReason, UpsertOutcome
from normalizer import CanonicalRow, normalize
from repository import CatalogRepository, CatalogUnit, open_repository

logger = logging.getLogger(__name__)

# ============================================================
# Configuration
# ============================================================

@dataclass
class IngestionConfig:
    """Tunable parameters for ingestion behavior."""
    # Legacy sheets carry 13-digit codes with bad check digits; structure is
    # still enforced when this is off
    enforce_checksum: bool = True

    # Image slot written for the row's image link
    image_type: str = ImageType.MAIN.value


DEFAULT_CONFIG = IngestionConfig()


@dataclass
class IngestionStats:
    """Tracks counts for a single ingestion run."""
    total_rows: int = 0
    ok: int = 0
    skipped: int = 0
    inserted: int = 0
    updated: int = 0
    skip_reasons: dict[str, int] = field(default_factory=dict)

    def skip(self, reason: SkipReason) -> None:
        self.skipped += 1
        self.skip_reasons[reason.value] = self.skip_reasons.get(reason.value, 0) + 1

    def to_summary(self) -> IngestSummary:
        return IngestSummary(ok=self.ok, skipped=self.skipped,
                             skip_reasons=dict(self.skip_reasons))


# ============================================================
# Pipeline
# ============================================================

class IngestionPipeline:
    """Drives normalize → validate → write for every row of a batch."""

    def __init__(self, repo: CatalogRepository, config: IngestionConfig = DEFAULT_CONFIG):
        self.repo = repo
        self.config = config

    async def ingest(self, rows: Iterable[Mapping[str, Any]]) -> IngestSummary:
        stats = IngestionStats()

        for index, raw_row in enumerate(rows):
            stats.total_rows += 1
            reason = await self._ingest_row(index, raw_row, stats)
            if reason is None:
                stats.ok += 1
            else:
                stats.skip(reason)

        logger.info(
            "Ingestion finished: %d ok (%d new, %d updated), %d skipped %s",
            stats.ok, stats.inserted, stats.updated, stats.skipped, stats.skip_reasons,
        )
        return stats.to_summary()

    async def _ingest_row(
        self, index: int, raw_row: Mapping[str, Any], stats: IngestionStats
    ) -> Optional[SkipReason]:
        try:
            canonical: Union[CanonicalRow, SkipReason] = normalize(raw_row)
        except Exception as e:
            logger.warning("Row %d skipped: unreadable values (%s: %s)",
                           index, type(e).__name__, e)
            return SkipReason.INVALID_ROW

        if isinstance(canonical, SkipReason):
            logger.info("Row %d skipped: %s", index, canonical.value)
            return canonical

        barcode = canonical.product.barcode
        try:
            require_valid(barcode, enforce_checksum=self.config.enforce_checksum)
        except (InvalidFormat, InvalidChecksum) as e:
            logger.info("Row %d skipped: %s (barcode=%s)", index, e.code, barcode)
            return SkipReason.INVALID_BARCODE

        try:
            async with self.repo.transaction() as unit:
                inserted = await self._write_row(unit, canonical)
        except Exception as e:
            logger.error("Row %d rolled back (barcode=%s): %s", index, barcode, e)
            return SkipReason.STORE_FAILURE

        if inserted:
            stats.inserted += 1
        else:
            stats.updated += 1
        return None

    async def _write_row(self, unit: CatalogUnit, row: CanonicalRow) -> bool:
        """Write one canonical row; returns True when the product was new."""
        result = await unit.upsert_product(row.product)

        product_id = result.product_id
        if product_id is None:
            product_id = await unit.get_product_id(row.product.barcode)
        if product_id is None:
            raise StoreFailure("Product id could not be resolved",
                               barcode=row.product.barcode)

        await unit.upsert_nutrition(product_id, row.nutrition)
        if row.image_url:
            await unit.upsert_image(product_id, self.config.image_type, row.image_url)

        return result.outcome is UpsertOutcome.INSERTED


# ============================================================
# Spreadsheet Loading
# ============================================================

EXCEL_SUFFIXES = {'.xlsx', '.xlsm'}


def load_rows(path: Union[str, Path]) -> list[dict[str, Any]]:
    """Read the first sheet (or a CSV) into `{label: value}` rows, NaN → None."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix in EXCEL_SUFFIXES:
        df = pd.read_excel(path, sheet_name=0, dtype=object, engine="openpyxl")
    elif suffix == '.csv':
        df = pd.read_csv(path, dtype=object)
    else:
        raise ValueError(f"Unsupported spreadsheet type: {path.name}")

    rows = []
    for record in df.to_dict(orient='records'):
        rows.append({
            str(label): (None if pd.isna(value) else value)
            for label, value in record.items()
        })
    logger.info("Loaded %d rows from %s", len(rows), path.name)
    return rows


async def ingest_file(
    path: Union[str, Path],
    repo: CatalogRepository,
    config: IngestionConfig = DEFAULT_CONFIG,
) -> IngestSummary:
    rows = load_rows(path)
    return await IngestionPipeline(repo, config).ingest(rows)


# ============================================================
# CLI
# ============================================================

async def _run_import(path: Path, enforce_checksum: bool) -> IngestSummary:
    settings = get_settings()
    repo = await open_repository(settings)
    try:
        return await ingest_file(path, repo, IngestionConfig(enforce_checksum=enforce_checksum))
    finally:
        await repo.close()


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(
        prog="catalog-import",
        description="Import a product spreadsheet (.xlsx / .csv) into the catalog.",
    )
    ap.add_argument("file", help="Spreadsheet to import")
    ap.add_argument("--no-checksum", action="store_true",
                    help="Accept 13-digit barcodes with a wrong EAN-13 check digit")
    args = ap.parse_args(argv)

    settings = get_settings()
    configure_logging(settings)

    path = Path(args.file)
    if not path.exists():
        ap.error(f"file not found: {path}")

    enforce = settings.ingest_enforce_checksum and not args.no_checksum
    try:
        summary = asyncio.run(_run_import(path, enforce))
    except (CatalogError, ValueError) as e:
        logger.error("Import failed: %s", e)
        return 1

    print(f"Import finished. OK: {summary.ok}, Skip: {summary.skipped}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
