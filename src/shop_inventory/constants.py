"""Enumerations and limits shared across the shop inventory modules.

Centralises domain constants so that the data access layer (DAL), business
logic layer (BLL), the pure identifier/statistics helpers, and the CLI rely on
a single source of truth for critical identifiers.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Product identifier limits.
MAX_ID_LENGTH = 64
UNIQUE_SUFFIX_LENGTH = 4
MAX_GENERATION_ATTEMPTS = 25
# Leaves room for "-" plus the generated suffix.
MAX_COMMON_ID_LENGTH = MAX_ID_LENGTH - UNIQUE_SUFFIX_LENGTH - 1

DEFAULT_WARRANTY_YEARS = 1
DEFAULT_CURRENCY = "BDT"


class UserRole(str, Enum):
    """Enumerate the operator roles that gate catalog and stock operations."""

    ADMIN = "admin"
    SELLER = "seller"


class TransactionType(str, Enum):
    """Enumerate the transaction logs kept by the shop."""

    SALE = "SALE"
    PURCHASE = "PURCHASE"
    RETURN = "RETURN"


class Availability(str, Enum):
    """Stock availability filter applied to product listings."""

    ALL = "all"
    IN_STOCK = "in-stock"
    OUT_OF_STOCK = "out-of-stock"


class WarrantyStatus(str, Enum):
    """Enumerate warranty states derived from a sale's warranty end date."""

    ACTIVE = "active"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


class CompensationType(str, Enum):
    """Enumerate the ways a return refund may be reduced."""

    PERCENT = "percent"
    AMOUNT = "amount"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    CATEGORIES = "Categories"
    BRANDS = "Brands"
    SALES = "Sales"
    PURCHASES = "Purchases"
    RETURNS = "Returns"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "MAX_ID_LENGTH",
    "UNIQUE_SUFFIX_LENGTH",
    "MAX_GENERATION_ATTEMPTS",
    "DEFAULT_WARRANTY_YEARS",
    "DEFAULT_CURRENCY",
    "UserRole",
    "TransactionType",
    "Availability",
    "WarrantyStatus",
    "CompensationType",
    "SheetName",
]
