"""Business logic layer for the shop inventory toolkit.

This module contains the rules that govern the product catalog and the
append-only sale, purchase and return logs. It consumes the Data Access Layer
(DAL) for all I/O, the identifier helpers for product IDs and the sales
aggregator for every report, so every mutation and every figure shown to an
operator passes through one place.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log, sales_stats
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    Availability,
    CompensationType,
    TransactionType,
    UserRole,
    WarrantyStatus,
)
from .identifiers import (
    IdentifierManager,
    UniqueIdExhaustedError,
    format_common_id,
    format_unique_id,
    validate_common_id,
)


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, sale, category or brand is unknown."""


class PermissionDeniedError(BusinessRuleViolation):
    """Raised when the configured operator's role may not perform an action."""


class DuplicateRecordError(BusinessRuleViolation):
    """Raised when a record would collide with an existing one."""


class IdentifierValidationError(BusinessRuleViolation):
    """Raised when a product's common or unique ID cannot be accepted."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL.

    The cache also holds the session's :class:`IdentifierManager`, which is
    rebuilt from the loaded products the first time it is needed and dropped
    together with the context.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class CustomerDetails:
    """Optional customer information captured with a sale."""

    name: Optional[str] = None
    mobile: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class SaleCommand:
    """Operator intent for selling units of a product."""

    product_id: str
    quantity: Decimal
    sell_price_per_unit: Optional[Decimal] = None
    customer: Optional[CustomerDetails] = None
    date_of_sale: Optional[date] = None
    warranty_end_date: Optional[date] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PurchaseCommand:
    """Operator intent for restocking a product from a supplier."""

    product_id: str
    quantity: Decimal
    buy_price: Optional[Decimal] = None
    sell_price: Optional[Decimal] = None
    supplier: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ReturnCommand:
    """Operator intent for taking back units a customer bought."""

    product_id: str
    quantity: Decimal
    reason: str
    customer_mobile: Optional[str] = None
    compensation_type: Optional[CompensationType] = None
    compensation_value: Optional[Decimal] = None
    original_sale_date: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ProductFilters:
    """Criteria applied by :func:`filter_products`."""

    search_term: str = ""
    category: str = ""
    brand: str = ""
    availability: Availability = Availability.ALL
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None


@dataclass(frozen=True)
class ProfitReport:
    items: List[sales_stats.ProfitItem]
    total_profit: Decimal


@dataclass(frozen=True)
class WarrantyItem:
    """A sale together with the state of its warranty."""

    sale_id: str
    product_id: str
    product_name: str
    customer_name: Optional[str]
    customer_mobile: Optional[str]
    date_of_sale: str
    warranty_end_date: Optional[str]
    status: WarrantyStatus
    days_remaining: int
    common_id: str
    unique_id: str


# Maps editable ProductRow attributes to their worksheet columns.
PRODUCT_COLUMNS: Mapping[str, str] = {
    "product_name": "ProductName",
    "brand": "Brand",
    "category": "Category",
    "supplier": "Supplier",
    "unit": "Unit",
    "buy_price": "BuyPrice",
    "sell_price": "SellPrice",
    "stock": "Stock",
    "common_id": "CommonID",
    "unique_id": "UniqueID",
    "description": "Description",
}

_NON_DIGITS = re.compile(r"\D")

TRANSACTION_PREFIXES: Mapping[TransactionType, str] = {
    TransactionType.SALE: "S",
    TransactionType.PURCHASE: "P",
    TransactionType.RETURN: "R",
}


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _local_date(moment: datetime) -> date:
    """Calendar date of ``moment`` in local time."""

    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone().date()


def _today() -> date:
    return _local_date(_resolve_timestamp(None))


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name."""

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Missing buckets are ignored.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_rows_cache(
    context: RuntimeContext,
    name: str,
    loader: Callable[[Workbook], Iterable[Any]],
    key: Callable[[Any], str],
) -> Dict[str, Any]:
    """Populate a cache bucket with ``all`` rows and a ``by_id`` lookup.

    Args:
        context (RuntimeContext): Runtime state used to access the workbook and
            shared caches.
        name (str): Bucket name.
        loader (Callable): DAL iterator for the sheet.
        key (Callable): Extracts the primary key of a row.

    Returns:
        dict[str, Any]: The populated bucket, reused when already present.
    """

    bucket = _get_cache_bucket(context, name)
    if "all" not in bucket:
        rows = list(loader(context.workbook))
        bucket["all"] = rows
        bucket["by_id"] = {key(row): row for row in rows}
        log.debug("Populated %s cache with %d entries", name, len(rows))
    return bucket


def _products_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_rows_cache(context, "products", data_manager.iter_products, lambda row: row.product_id)


def _sales_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_rows_cache(context, "sales", data_manager.iter_sales, lambda row: row.sale_id)


def _purchases_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_rows_cache(context, "purchases", data_manager.iter_purchases, lambda row: row.purchase_id)


def _returns_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_rows_cache(context, "returns", data_manager.iter_returns, lambda row: row.return_id)


def _categories_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_rows_cache(context, "categories", data_manager.iter_categories, lambda row: row.category_id)


def _brands_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_rows_cache(context, "brands", data_manager.iter_brands, lambda row: row.brand_id)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def require_admin(context: RuntimeContext, action: str) -> None:
    """Reject ``action`` unless the configured operator is an admin.

    Raises:
        PermissionDeniedError: If the operator role is not ``admin``.
    """
    if context.settings.operator_role is not UserRole.ADMIN:
        log.warning(
            "Operator '%s' (%s) attempted admin-only action: %s",
            context.settings.operator_id,
            context.settings.operator_role.value,
            action,
        )
        raise PermissionDeniedError(f"{action} requires admin access")


def identifier_manager(context: RuntimeContext) -> IdentifierManager:
    """Return the session's identifier manager, building it on first use.

    The used unique ID set is rebuilt from the products currently in the
    workbook and then kept up to date by the catalog operations below.
    """
    manager = context._cache.get("identifiers")
    if manager is None:
        manager = IdentifierManager.from_products(_products_cache(context)["all"])
        context._cache["identifiers"] = manager
    return manager


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return a copy of the cached product rows in sheet order."""
    return list(_products_cache(context)["all"])


def list_sales(context: RuntimeContext) -> List[data_manager.SaleRow]:
    return list(_sales_cache(context)["all"])


def list_purchases(context: RuntimeContext) -> List[data_manager.PurchaseRow]:
    return list(_purchases_cache(context)["all"])


def list_returns(context: RuntimeContext) -> List[data_manager.ReturnRow]:
    return list(_returns_cache(context)["all"])


def list_categories(context: RuntimeContext) -> List[data_manager.CategoryRow]:
    return list(_categories_cache(context)["all"])


def list_brands(context: RuntimeContext) -> List[data_manager.BrandRow]:
    """Return brands with duplicate names removed, first occurrence winning."""
    seen = set()
    unique = []
    for brand in _brands_cache(context)["all"]:
        if brand.name in seen:
            continue
        seen.add(brand.name)
        unique.append(brand)
    return unique


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the workbook.
    """
    try:
        return _products_cache(context)["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def get_sale(context: RuntimeContext, sale_id: str) -> data_manager.SaleRow:
    """Resolve a sale record by its identifier.

    Raises:
        MissingReferenceError: If the sales log lacks the supplied identifier.
    """
    try:
        return _sales_cache(context)["by_id"][sale_id]
    except KeyError as exc:
        log.warning("Sale lookup failed for id '%s'", sale_id)
        raise MissingReferenceError(f"Unknown sale id: {sale_id}") from exc


def filter_products(
    products: Iterable[data_manager.ProductRow], filters: ProductFilters
) -> List[data_manager.ProductRow]:
    """Apply the catalog filters used by the product listing.

    The search term matches product names case-insensitively; category and
    brand must match exactly when given; the price range applies to the sell
    price and is inclusive.
    """
    term = filters.search_term.strip().lower()
    result = []
    for product in products:
        if term and term not in product.product_name.lower():
            continue
        if filters.category and product.category != filters.category:
            continue
        if filters.brand and product.brand != filters.brand:
            continue
        if filters.availability is Availability.IN_STOCK and product.stock <= 0:
            continue
        if filters.availability is Availability.OUT_OF_STOCK and product.stock > 0:
            continue
        if filters.min_price is not None and product.sell_price < filters.min_price:
            continue
        if filters.max_price is not None and product.sell_price > filters.max_price:
            continue
        result.append(product)
    return result


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def _resolve_identifiers(
    context: RuntimeContext,
    common_id: str,
    unique_id: Optional[str],
    *,
    previous_unique_id: Optional[str] = None,
) -> Tuple[str, str]:
    """Validate (or generate) a product's IDs and return their formatted forms.

    Raises:
        IdentifierValidationError: If either ID is rejected or no free unique
            ID could be generated.
    """
    common_check = validate_common_id(common_id)
    if not common_check.is_valid:
        log.warning("Rejected common ID '%s': %s", common_id, common_check.message)
        raise IdentifierValidationError(f"Common ID Error: {common_check.message}")

    manager = identifier_manager(context)
    if unique_id is None or not unique_id.strip():
        try:
            unique_id = manager.generate_unique_id(common_id)
        except UniqueIdExhaustedError as exc:
            raise IdentifierValidationError(f"Unique ID Error: {exc}") from exc
        log.info("Generated unique ID '%s' for common ID '%s'", unique_id, common_id)

    unique_check = manager.validate_unique_id(unique_id, previous_unique_id, common_id=common_id)
    if not unique_check.is_valid:
        log.warning("Rejected unique ID '%s': %s", unique_id, unique_check.message)
        raise IdentifierValidationError(f"Unique ID Error: {unique_check.message}")

    return format_common_id(common_id), format_unique_id(unique_id)


def add_product(
    context: RuntimeContext,
    *,
    product_id: str,
    product_name: str,
    common_id: str,
    unique_id: Optional[str] = None,
    brand: str = "",
    category: str = "",
    supplier: str = "",
    unit: str = "pcs",
    buy_price: Decimal = Decimal("0.00"),
    sell_price: Decimal = Decimal("0.00"),
    stock: Decimal = Decimal("0"),
    description: str = "",
    added_date: Optional[date] = None,
) -> data_manager.ProductRow:
    """Validate and append a new product to the catalog.

    A unique ID is generated from ``common_id`` when none is supplied. Both IDs
    are stored in their formatted form and the unique ID is registered in the
    session's used set once the row is written.

    Returns:
        data_manager.ProductRow: The appended product.

    Raises:
        PermissionDeniedError: If the operator is not an admin.
        DuplicateRecordError: If ``product_id`` already exists.
        IdentifierValidationError: If the IDs are rejected.
        ValueError: If the name is blank or a price/stock value is negative.
    """
    require_admin(context, "Adding products")
    if not product_id.strip():
        raise ValueError("Product ID is required")
    if not product_name.strip():
        raise ValueError("Product name is required")
    if product_id in _products_cache(context)["by_id"]:
        raise DuplicateRecordError(f"Product '{product_id}' already exists")
    require_nonnegative_money(buy_price)
    require_nonnegative_money(sell_price)
    require_nonnegative_quantity(stock)

    formatted_common, formatted_unique = _resolve_identifiers(context, common_id, unique_id)
    product = data_manager.ProductRow(
        product_id=product_id,
        product_name=product_name.strip(),
        brand=brand,
        category=category,
        supplier=supplier,
        unit=unit,
        buy_price=buy_price,
        sell_price=sell_price,
        stock=stock,
        common_id=formatted_common,
        unique_id=formatted_unique,
        added_date=(added_date or _today()).isoformat(),
        description=description,
    )
    data_manager.append_product(context.workbook, product)
    identifier_manager(context).add_used_unique_id(formatted_unique)
    _invalidate_cache(context, "products")
    log.info(
        "Added product '%s' (%s) with IDs %s / %s",
        product.product_id,
        product.product_name,
        formatted_common,
        formatted_unique,
    )
    return product


def update_product(
    context: RuntimeContext, product_id: str, *, changes: Mapping[str, Any]
) -> data_manager.ProductRow:
    """Apply ``changes`` to an existing product.

    Keeping the product's current unique ID is always allowed. When the unique
    ID changes, the old value is released from the used set before the new one
    is registered.

    Raises:
        PermissionDeniedError: If the operator is not an admin.
        MissingReferenceError: If the product is unknown.
        KeyError: If ``changes`` names a field that cannot be edited.
        IdentifierValidationError: If the resulting IDs are rejected.
    """
    require_admin(context, "Editing products")
    unknown = set(changes) - set(PRODUCT_COLUMNS)
    if unknown:
        raise KeyError(f"Unknown product field(s): {', '.join(sorted(unknown))}")

    current = get_product(context, product_id)
    for money_field in ("buy_price", "sell_price"):
        if money_field in changes:
            require_nonnegative_money(changes[money_field])
    if "stock" in changes:
        require_nonnegative_quantity(changes["stock"])

    common_id = changes.get("common_id", current.common_id)
    unique_id = changes.get("unique_id", current.unique_id)
    formatted_common, formatted_unique = _resolve_identifiers(
        context, common_id, unique_id, previous_unique_id=current.unique_id
    )
    updated = replace(current, **changes)
    updated = replace(updated, common_id=formatted_common, unique_id=formatted_unique)

    data_manager.update_product(
        context.workbook,
        product_id,
        field_values={column: getattr(updated, attr) for attr, column in PRODUCT_COLUMNS.items()},
    )
    manager = identifier_manager(context)
    if current.unique_id and format_unique_id(current.unique_id) != formatted_unique:
        manager.remove_used_unique_id(current.unique_id)
    manager.add_used_unique_id(formatted_unique)
    _invalidate_cache(context, "products")
    log.info("Updated product '%s' fields: %s", product_id, ", ".join(sorted(changes)))
    return updated


def delete_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Remove a product from the catalog and release its unique ID.

    Raises:
        PermissionDeniedError: If the operator is not an admin.
        MissingReferenceError: If the product is unknown.
    """
    require_admin(context, "Deleting products")
    product = get_product(context, product_id)
    data_manager.delete_product(context.workbook, product_id)
    if product.unique_id:
        identifier_manager(context).remove_used_unique_id(product.unique_id)
    _invalidate_cache(context, "products")
    log.info("Deleted product '%s'", product_id)
    return product


def add_category(context: RuntimeContext, name: str, *, description: str = "") -> data_manager.CategoryRow:
    """Register a product category; names are unique ignoring case.

    Raises:
        PermissionDeniedError: If the operator is not an admin.
        DuplicateRecordError: If a category with the same name exists.
        ValueError: If ``name`` is blank.
    """
    require_admin(context, "Adding categories")
    name = name.strip()
    if not name:
        raise ValueError("Category name is required")
    if any(row.name.lower() == name.lower() for row in list_categories(context)):
        raise DuplicateRecordError(f"Category '{name}' already exists")

    timestamp = _resolve_timestamp(None)
    category = data_manager.CategoryRow(
        category_id=generate_transaction_id(prefix="C", when=timestamp),
        name=name,
        description=description,
        created_date=_local_date(timestamp).isoformat(),
    )
    data_manager.append_category(context.workbook, category)
    _invalidate_cache(context, "categories")
    log.info("Added category '%s'", name)
    return category


def add_brand(
    context: RuntimeContext, name: str, *, description: str = "", logo_url: str = ""
) -> data_manager.BrandRow:
    """Register a brand; names are unique ignoring case.

    Raises:
        PermissionDeniedError: If the operator is not an admin.
        DuplicateRecordError: If a brand with the same name exists.
        ValueError: If ``name`` is blank.
    """
    require_admin(context, "Adding brands")
    name = name.strip()
    if not name:
        raise ValueError("Brand name is required")
    if any(row.name.lower() == name.lower() for row in _brands_cache(context)["all"]):
        raise DuplicateRecordError(f"Brand '{name}' already exists")

    timestamp = _resolve_timestamp(None)
    brand = data_manager.BrandRow(
        brand_id=generate_transaction_id(prefix="B", when=timestamp),
        name=name,
        description=description,
        logo_url=logo_url,
        created_date=_local_date(timestamp).isoformat(),
    )
    data_manager.append_brand(context.workbook, brand)
    _invalidate_cache(context, "brands")
    log.info("Added brand '%s'", name)
    return brand


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def record_sale(context: RuntimeContext, command: SaleCommand) -> data_manager.SaleRow:
    """Validate and append a sale, decrementing the product's stock.

    The date of sale defaults to the local date of the sale timestamp and the
    warranty end date to the date of sale plus the configured number of
    warranty years. The product's common and unique IDs and the operator are
    copied onto the sale.

    Returns:
        data_manager.SaleRow: Newly appended sale.

    Raises:
        MissingReferenceError: If the product is unknown.
        BusinessRuleViolation: If there is not enough stock.
        ValueError: When quantity or price validations fail.
    """
    product = get_product(context, command.product_id)
    require_positive_quantity(command.quantity)
    price = command.sell_price_per_unit if command.sell_price_per_unit is not None else product.sell_price
    require_nonnegative_money(price)
    if product.stock < command.quantity:
        log.warning(
            "Insufficient stock for product '%s': requested %s, available %s",
            product.product_id,
            command.quantity,
            product.stock,
        )
        raise BusinessRuleViolation(
            f"Insufficient stock for '{product.product_name}': {product.stock} {product.unit} available"
        )

    timestamp = _resolve_timestamp(command.timestamp)
    date_of_sale = command.date_of_sale or _local_date(timestamp)
    warranty_end = command.warranty_end_date or sales_stats.add_years(
        date_of_sale, context.settings.warranty_years
    )
    customer = command.customer or CustomerDetails()
    sale = data_manager.SaleRow(
        sale_id=generate_transaction_id(prefix=TRANSACTION_PREFIXES[TransactionType.SALE], when=timestamp),
        timestamp_iso=timestamp.isoformat(),
        date_of_sale=date_of_sale.isoformat(),
        product_id=product.product_id,
        product_name=product.product_name,
        quantity=command.quantity,
        sell_price_per_unit=price,
        total_price=price * command.quantity,
        unit=product.unit,
        currency=context.settings.currency,
        warranty_end_date=warranty_end.isoformat(),
        common_id=product.common_id,
        unique_id=product.unique_id,
        seller_id=context.settings.operator_id,
        seller_name=context.settings.operator_name,
        seller_role=context.settings.operator_role.value,
        customer_name=customer.name,
        customer_mobile=customer.mobile,
        customer_email=customer.email,
        customer_address=customer.address,
    )
    data_manager.append_sale(context.workbook, sale)
    data_manager.update_product(
        context.workbook,
        product.product_id,
        field_values={"Stock": product.stock - command.quantity},
    )
    _invalidate_cache(context, "sales", "products")
    log.info(
        "Recorded SALE '%s' for product '%s' (quantity=%s, total=%s)",
        sale.sale_id,
        product.product_id,
        command.quantity,
        sale.total_price,
    )
    return sale


def record_purchase(context: RuntimeContext, command: PurchaseCommand) -> data_manager.PurchaseRow:
    """Validate and append a purchase, adding stock to the product.

    Custom buy or sell prices, when given, also become the product's new
    prices. The total cost is quantity times the buy price in effect.

    Raises:
        PermissionDeniedError: If the operator is not an admin.
        MissingReferenceError: If the product is unknown.
        ValueError: If quantity or price validations fail.
    """
    require_admin(context, "Purchasing stock")
    product = get_product(context, command.product_id)
    require_positive_quantity(command.quantity)
    buy_price = command.buy_price if command.buy_price is not None else product.buy_price
    require_nonnegative_money(buy_price)
    if command.sell_price is not None:
        require_nonnegative_money(command.sell_price)

    timestamp = _resolve_timestamp(command.timestamp)
    purchase = data_manager.PurchaseRow(
        purchase_id=generate_transaction_id(prefix=TRANSACTION_PREFIXES[TransactionType.PURCHASE], when=timestamp),
        timestamp_iso=timestamp.isoformat(),
        product_id=product.product_id,
        product_name=product.product_name,
        quantity_added=command.quantity,
        buy_price_per_unit=buy_price,
        total_cost=buy_price * command.quantity,
        admin_id=context.settings.operator_id,
        supplier=command.supplier or product.supplier or None,
        common_id=product.common_id,
        unique_id=product.unique_id,
    )
    data_manager.append_purchase(context.workbook, purchase)

    field_values: Dict[str, Any] = {"Stock": product.stock + command.quantity}
    if command.buy_price is not None:
        field_values["BuyPrice"] = command.buy_price
    if command.sell_price is not None:
        field_values["SellPrice"] = command.sell_price
    data_manager.update_product(context.workbook, product.product_id, field_values=field_values)
    _invalidate_cache(context, "purchases", "products")
    log.info(
        "Recorded PURCHASE '%s' for product '%s' (quantity=%s, cost=%s)",
        purchase.purchase_id,
        product.product_id,
        command.quantity,
        purchase.total_cost,
    )
    return purchase


def _digits(value: str) -> str:
    return _NON_DIGITS.sub("", value)


def returnable_quantity(
    context: RuntimeContext, product_id: str, *, customer_mobile: Optional[str] = None
) -> Decimal:
    """Quantity of ``product_id`` that may still be returned.

    Without ``customer_mobile`` this is everything sold minus everything
    already returned. With it, only sales to that mobile number (compared on
    digits) count; returns are not tracked per customer.
    """
    sales = [sale for sale in list_sales(context) if sale.product_id == product_id]
    if customer_mobile:
        wanted = _digits(customer_mobile)
        sold = sum(
            (sale.quantity for sale in sales if sale.customer_mobile and _digits(sale.customer_mobile) == wanted),
            Decimal("0"),
        )
        return sold
    sold = sum((sale.quantity for sale in sales), Decimal("0"))
    returned = sum(
        (row.quantity_returned for row in list_returns(context) if row.product_id == product_id),
        Decimal("0"),
    )
    return max(sold - returned, Decimal("0"))


def calculate_refund(
    base_refund: Decimal,
    compensation_type: Optional[CompensationType] = None,
    compensation_value: Optional[Decimal] = None,
) -> Decimal:
    """Apply an optional compensation to a full refund.

    A percentage keeps ``value`` percent of the refund; an amount is deducted
    from it.

    Raises:
        ValueError: If the percentage is outside ``(0, 100]`` or the amount is
            outside ``(0, base_refund]``.
    """
    if compensation_type is None:
        return base_refund
    value = compensation_value if compensation_value is not None else Decimal("0")
    if compensation_type is CompensationType.PERCENT:
        if not Decimal("0") < value <= Decimal("100"):
            raise ValueError("Compensation percentage must be between 0 and 100")
        return base_refund * value / Decimal("100")
    if not Decimal("0") < value <= base_refund:
        raise ValueError("Compensation amount must be positive and not exceed the refund")
    return base_refund - value


def record_return(context: RuntimeContext, command: ReturnCommand) -> data_manager.ReturnRow:
    """Validate and append a return, putting the units back in stock.

    Raises:
        PermissionDeniedError: If the operator is not an admin.
        MissingReferenceError: If the product is unknown.
        BusinessRuleViolation: If no reason is given or more units are returned
            than were bought.
        ValueError: If quantity or compensation validations fail.
    """
    require_admin(context, "Processing returns")
    product = get_product(context, command.product_id)
    require_positive_quantity(command.quantity)
    if not command.reason.strip():
        raise BusinessRuleViolation("Please provide a reason for return")

    allowed = returnable_quantity(context, product.product_id, customer_mobile=command.customer_mobile)
    if command.quantity > allowed:
        log.warning(
            "Return of %s x '%s' exceeds purchased quantity %s",
            command.quantity,
            product.product_id,
            allowed,
        )
        raise BusinessRuleViolation(f"You cannot return more than you purchased ({allowed}).")

    refund = calculate_refund(
        product.sell_price * command.quantity,
        command.compensation_type,
        command.compensation_value,
    )
    timestamp = _resolve_timestamp(command.timestamp)
    record = data_manager.ReturnRow(
        return_id=generate_transaction_id(prefix=TRANSACTION_PREFIXES[TransactionType.RETURN], when=timestamp),
        timestamp_iso=timestamp.isoformat(),
        product_id=product.product_id,
        product_name=product.product_name,
        quantity_returned=command.quantity,
        sell_price_per_unit=product.sell_price,
        total_refund=refund,
        unit=product.unit,
        admin_id=context.settings.operator_id,
        reason=command.reason.strip(),
        original_sale_date=command.original_sale_date,
    )
    data_manager.append_return(context.workbook, record)
    data_manager.update_product(
        context.workbook,
        product.product_id,
        field_values={"Stock": product.stock + command.quantity},
    )
    _invalidate_cache(context, "returns", "products")
    log.info(
        "Recorded RETURN '%s' for product '%s' (quantity=%s, refund=%s)",
        record.return_id,
        product.product_id,
        command.quantity,
        refund,
    )
    return record


def generate_transaction_id(*, prefix: str = "S", when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier ``{prefix}{YYYYMMDDHHMMSSffffff}``.

    Microseconds are included to avoid collisions when several records are
    written within the same second.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def require_positive_quantity(quantity: Decimal) -> None:
    """Raise ``ValueError`` unless ``quantity`` is strictly positive."""
    if quantity <= Decimal("0"):
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_quantity(quantity: Decimal) -> None:
    if quantity < Decimal("0"):
        log.error("Stock validation failed: %s", quantity)
        raise ValueError("Stock must be zero or positive")


def require_nonnegative_money(amount: Decimal) -> None:
    """Raise ``ValueError`` if a monetary value is negative."""
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def to_sale_record(row: data_manager.SaleRow) -> sales_stats.SaleRecord:
    """Convert a stored sale into the aggregator's record type."""
    return sales_stats.SaleRecord(
        product_id=row.product_id,
        product_name=row.product_name,
        quantity=row.quantity,
        total_price=row.total_price,
        date_of_sale=row.date_of_sale,
        timestamp=row.timestamp_iso or None,
        sell_price_per_unit=row.sell_price_per_unit,
        unit=row.unit,
        sale_id=row.sale_id,
        customer_name=row.customer_name,
        customer_mobile=row.customer_mobile,
        customer_email=row.customer_email,
        customer_address=row.customer_address,
        warranty_end_date=row.warranty_end_date,
    )


def sale_records(context: RuntimeContext) -> List[sales_stats.SaleRecord]:
    bucket = _get_cache_bucket(context, "sales")
    if "records" not in bucket:
        bucket["records"] = [to_sale_record(row) for row in _sales_cache(context)["all"]]
    return list(bucket["records"])


def sales_report(context: RuntimeContext, start_date: Any, end_date: Any) -> sales_stats.PeriodReport:
    """Build the period report for ``start_date..end_date`` (both inclusive)."""
    report = sales_stats.build_period_report(sale_records(context), start_date, end_date)
    log.info(
        "Built sales report %s..%s: %d sales, revenue=%s",
        report.start_date,
        report.end_date,
        report.stats.sales_count,
        report.stats.total_revenue,
    )
    return report


def todays_report(context: RuntimeContext, today: Optional[date] = None) -> sales_stats.PeriodReport:
    start, end = sales_stats.today_window(today or _today())
    return sales_report(context, start, end)


def monthly_report(context: RuntimeContext, today: Optional[date] = None) -> sales_stats.PeriodReport:
    """Report from the first of the current month up to and including today."""
    start, end = sales_stats.month_to_date_window(today or _today())
    return sales_report(context, start, end)


def export_report(
    report: sales_stats.PeriodReport,
    *,
    title: str,
    destination: Path,
    generated_at: Optional[datetime] = None,
) -> Path:
    """Write ``report`` as a JSON document and return the resolved path."""
    payload = sales_stats.report_to_dict(
        report,
        title=title,
        generated_at=_resolve_timestamp(generated_at),
    )
    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    log.info("Exported '%s' to '%s'", title, dest)
    return dest


def calculate_profit_report(context: RuntimeContext) -> ProfitReport:
    """Profit per sale against each product's current buy price, newest first."""
    buy_prices = {product.product_id: product.buy_price for product in list_products(context)}
    items = sales_stats.build_profit_items(sale_records(context), buy_prices)
    total = sales_stats.total_profit(items)
    log.debug("Calculated profit for %d sales: total=%s", len(items), total)
    return ProfitReport(items=items, total_profit=total)


def totals_overview(context: RuntimeContext) -> Dict[str, Decimal]:
    """Produce the all-time revenue, purchase cost and refund totals.

    Returns:
        dict[str, Decimal]: ``total_revenue``, ``total_purchases``,
            ``total_refunds`` and ``net_revenue`` (revenue minus refunds).
    """
    total_revenue = sum((sale.total_price for sale in list_sales(context)), Decimal("0"))
    total_purchases = sum((row.total_cost for row in list_purchases(context)), Decimal("0"))
    total_refunds = sum((row.total_refund for row in list_returns(context)), Decimal("0"))
    return {
        "total_revenue": total_revenue,
        "total_purchases": total_purchases,
        "total_refunds": total_refunds,
        "net_revenue": total_revenue - total_refunds,
    }


def list_warranties(
    context: RuntimeContext,
    *,
    today: Optional[date] = None,
    status: Optional[WarrantyStatus] = None,
) -> List[WarrantyItem]:
    """List sales with their warranty state, optionally filtered by status."""
    today = today or _today()
    items = []
    for sale in list_sales(context):
        info = sales_stats.warranty_status(sale.warranty_end_date, today)
        if status is not None and info.status is not status:
            continue
        items.append(
            WarrantyItem(
                sale_id=sale.sale_id,
                product_id=sale.product_id,
                product_name=sale.product_name,
                customer_name=sale.customer_name,
                customer_mobile=sale.customer_mobile,
                date_of_sale=sale.date_of_sale,
                warranty_end_date=sale.warranty_end_date,
                status=info.status,
                days_remaining=info.days_remaining,
                common_id=sale.common_id,
                unique_id=sale.unique_id,
            )
        )
    return items


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    A new :class:`RuntimeContext` is produced, so caches and the used unique ID
    set of the previous context are discarded.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)
