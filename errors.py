"""
Product Catalog — Error Taxonomy

Every failure the core reports to a caller is a CatalogError subclass with a
stable `code`. Validation errors are raised before any store access.
"""
from __future__ import annotations
from typing import Optional


class CatalogError(Exception):
    code = "catalog_error"

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class InvalidFormat(CatalogError):
    """Barcode is not 8-14 digits after sanitizing."""
    code = "invalid_format"


class InvalidChecksum(CatalogError):
    """13-digit barcode whose EAN-13 check digit does not match."""
    code = "invalid_checksum"


class InvalidQuery(CatalogError):
    code = "invalid_query"


class NotFound(CatalogError):
    code = "not_found"


class MissingRequiredField(CatalogError):
    code = "missing_required_field"

    def __init__(self, field_name: str, message: Optional[str] = None):
        super().__init__(message or f"Missing required field: {field_name}",
                         field=field_name)
        self.field_name = field_name


class DuplicateProduct(CatalogError):
    code = "duplicate_product"


class StoreFailure(CatalogError):
    """Underlying persistence error during a read or write."""
    code = "store_failure"
