"""
Product Catalog — Barcode Validation

Structural check (8-14 digits after stripping non-digits) for every barcode,
EAN-13 check digit only for 13-digit codes. Lengths 8, 12 and 14 are
accepted on structure alone; their check digits are not evaluated.
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from errors import InvalidChecksum, InvalidFormat

MIN_LENGTH = 8
MAX_LENGTH = 14
EAN13_LENGTH = 13

_NON_DIGIT = re.compile(r'\D')


class BarcodeError(str, Enum):
    INVALID_FORMAT = "invalid_format"
    INVALID_CHECKSUM = "invalid_checksum"


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    barcode: str                 # digits only
    error: Optional[BarcodeError] = None


def digits_only(raw) -> str:
    return _NON_DIGIT.sub('', str(raw if raw is not None else ''))


def ean13_check_digit(first12: str) -> int:
    """Weights 1 and 3 alternate starting with 1 at index 0."""
    if len(first12) != 12 or not first12.isdigit():
        raise ValueError(f"expected 12 digits, got {first12!r}")
    total = sum(int(d) * (3 if i % 2 else 1) for i, d in enumerate(first12))
    return (10 - total % 10) % 10


def validate(raw) -> ValidationResult:
    code = digits_only(raw)
    if not MIN_LENGTH <= len(code) <= MAX_LENGTH:
        return ValidationResult(False, code, BarcodeError.INVALID_FORMAT)
    if len(code) == EAN13_LENGTH and ean13_check_digit(code[:12]) != int(code[12]):
        return ValidationResult(False, code, BarcodeError.INVALID_CHECKSUM)
    return ValidationResult(True, code)


def require_valid(raw, enforce_checksum: bool = True) -> str:
    """Return the sanitized barcode or raise InvalidFormat / InvalidChecksum."""
    result = validate(raw)
    if result.error is BarcodeError.INVALID_FORMAT:
        raise InvalidFormat(
            f"Barcode must contain {MIN_LENGTH}-{MAX_LENGTH} digits, got {len(result.barcode)}",
            barcode=result.barcode)
    if result.error is BarcodeError.INVALID_CHECKSUM and enforce_checksum:
        raise InvalidChecksum(
            f"EAN-13 check digit mismatch for {result.barcode}",
            barcode=result.barcode)
    return result.barcode
