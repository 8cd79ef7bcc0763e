"""
Product Catalog — FastAPI Application Layer

Endpoints:
  1. GET  /health                   — Health check
  2. GET  /products/search          — Ranked, paginated search
  3. GET  /products/scan/{barcode}  — Barcode lookup
  4. GET  /products/{product_id}    — Lookup by id
  5. POST /products                 — Create product
  6. PUT  /products/{product_id}    — Merge-update product
  7. POST /ingest                   — Bulk row ingestion (JSON)
  8. GET  /brands                   — Distinct brand names
  9. GET  /categories               — Distinct category names

Every error body is {"error": <code>, "message": <text>}.
"""
from __future__ import annotations
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import configure_logging, get_settings
from errors import (
    CatalogError, DuplicateProduct, InvalidChecksum, InvalidFormat,
    InvalidQuery, MissingRequiredField, NotFound, StoreFailure,
)
from ingestion import IngestionConfig, IngestionPipeline
from models import (
    HealthResponse, IngestRequest, IngestSummary, ProductCreateRequest,
    ProductDetail, ProductUpdateRequest, SearchPage,
)
from repository import CatalogRepository, open_repository
from search import SearchConfig
from service import CatalogService

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"

# ============================================================
# Application State (shared singletons)
# ============================================================

class AppState:
    """Holds all shared service instances."""
    repo: CatalogRepository
    service: CatalogService
    ingestion: IngestionPipeline
    start_time: float
    request_count: int = 0

    def __init__(self):
        self.start_time = time.monotonic()
        self.request_count = 0


_state = AppState()


# ============================================================
# Lifespan: Startup / Shutdown
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup, cleanup on shutdown."""
    settings = get_settings()
    logger.info("Starting Product Catalog (backend=%s)...", settings.repository_backend)

    repo = await open_repository(settings)
    _state.repo = repo
    _state.service = CatalogService(repo, SearchConfig(
        default_page_size=settings.search_default_page_size,
        max_page_size=settings.search_max_page_size,
    ))
    _state.ingestion = IngestionPipeline(repo, IngestionConfig(
        enforce_checksum=settings.ingest_enforce_checksum,
    ))
    _state.start_time = time.monotonic()

    logger.info("Catalog ready: %d products", await repo.count_products())
    yield

    logger.info("Shutting down Product Catalog...")
    await repo.close()


# ============================================================
# FastAPI App
# ============================================================

app = FastAPI(
    title="Product Catalog API",
    description="Barcode lookup, ranked search and bulk ingestion for packaged "
                "food products and their nutrition facts.",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================
# Middleware: Request Counting & Timing
# ============================================================

@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    start = time.monotonic()
    _state.request_count += 1
    response = await call_next(request)
    elapsed = int((time.monotonic() - start) * 1000)
    response.headers["X-Response-Time-Ms"] = str(elapsed)
    return response


# ============================================================
# Error Mapping
# ============================================================

STATUS_BY_ERROR: dict[type[CatalogError], int] = {
    InvalidFormat: 400,
    InvalidChecksum: 400,
    InvalidQuery: 400,
    MissingRequiredField: 400,
    NotFound: 404,
    DuplicateProduct: 409,
    StoreFailure: 500,
}


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    status = next(
        (code for cls, code in STATUS_BY_ERROR.items() if isinstance(exc, cls)), 500
    )
    body = exc.to_dict()
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        body["message"] = "The catalog store is unavailable, try again later"
    else:
        logger.info("%s %s -> %d %s", request.method, request.url.path, status, exc.code)
    return JSONResponse(status_code=status, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{where}: {first.get('msg', 'invalid request')}" if where else "invalid request"
    return JSONResponse(status_code=422, content={"error": "invalid_request", "message": message})


# ============================================================
# 1. GET /health — Health Check
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """System health check."""
    uptime = int(time.monotonic() - _state.start_time)
    store = await _state.repo.health_check()

    return HealthResponse(
        status="healthy" if store.get("status") == "healthy" else "degraded",
        components={
            "repository": store,
            "ingestion": {"status": "healthy"},
        },
        version=APP_VERSION,
        uptime_seconds=uptime,
        request_count=_state.request_count,
    )


# ============================================================
# 2-4. Product Reads
# ============================================================

@app.get("/products/search", response_model=SearchPage, tags=["Products"])
async def search_products(
    q: str = Query("", description="Search term (min 2 characters)"),
    page: int = Query(1),
    page_size: Optional[int] = Query(None),
):
    """Search by barcode, name, brand or description; best matches first."""
    return await _state.service.search(q, page=page, page_size=page_size)


@app.get("/products/scan/{barcode}", response_model=ProductDetail, tags=["Products"])
async def scan_barcode(barcode: str):
    return await _state.service.lookup_barcode(barcode)


@app.get("/products/{product_id}", response_model=ProductDetail, tags=["Products"])
async def get_product(product_id: int):
    return await _state.service.get_product(product_id)


# ============================================================
# 5-6. Product Writes
# ============================================================

@app.post("/products", response_model=ProductDetail, status_code=201, tags=["Products"])
async def create_product(request: ProductCreateRequest):
    """Create a product with optional nutrition facts and main image."""
    return await _state.service.create_product(request)


@app.put("/products/{product_id}", response_model=ProductDetail, tags=["Products"])
async def update_product(product_id: int, request: ProductUpdateRequest):
    """Merge-update: fields left out of the body keep their stored values."""
    return await _state.service.update_product(product_id, request)


# ============================================================
# 7. POST /ingest — Bulk Row Ingestion
# ============================================================

@app.post("/ingest", response_model=IngestSummary, tags=["Ingestion"])
async def ingest_rows(request: IngestRequest):
    """
    Ingest spreadsheet rows already parsed to `{label: value}` objects.

    Rows are independent: a bad row is skipped and counted, never fatal.
    """
    summary = await _state.ingestion.ingest(request.rows)
    logger.info("Ingested %d rows via API: %d ok, %d skipped",
                summary.total, summary.ok, summary.skipped)
    return summary


# ============================================================
# 8-9. Catalog Facets
# ============================================================

@app.get("/brands", response_model=list[str], tags=["Catalog"])
async def list_brands():
    """Distinct brand names, sorted."""
    return await _state.service.list_brands()


@app.get("/categories", response_model=list[str], tags=["Catalog"])
async def list_categories():
    return await _state.service.list_categories()


# ============================================================
# Entry Point
# ============================================================

if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    configure_logging(settings)
    uvicorn.run("api:app", host=settings.host, port=settings.port,
                reload=settings.reload, log_level=settings.log_level.lower())
