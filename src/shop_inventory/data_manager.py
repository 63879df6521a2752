"""Data access layer for the shop inventory workbook.

This module provides low-level helpers that read from and write to the
master workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, updating or
   deleting individual rows.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import DEFAULT_CURRENCY, DEFAULT_WARRANTY_YEARS, SheetName, UserRole


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
CATEGORIES_SHEET = SheetName.CATEGORIES.value
BRANDS_SHEET = SheetName.BRANDS.value
SALES_SHEET = SheetName.SALES.value
PURCHASES_SHEET = SheetName.PURCHASES.value
RETURNS_SHEET = SheetName.RETURNS.value


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    operator_id: str
    operator_name: str
    operator_role: UserRole
    currency: str = DEFAULT_CURRENCY
    warranty_years: int = DEFAULT_WARRANTY_YEARS


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    product_name: str
    brand: str
    category: str
    supplier: str
    unit: str
    buy_price: Decimal
    sell_price: Decimal
    stock: Decimal
    common_id: str
    unique_id: str
    added_date: str
    description: str


@dataclass(frozen=True)
class CategoryRow:
    """In-memory view of a row from the ``Categories`` sheet."""

    category_id: str
    name: str
    description: str
    created_date: str


@dataclass(frozen=True)
class BrandRow:
    """In-memory view of a row from the ``Brands`` sheet."""

    brand_id: str
    name: str
    description: str
    logo_url: str
    created_date: str


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet."""

    sale_id: str
    timestamp_iso: str
    date_of_sale: str
    product_id: str
    product_name: str
    quantity: Decimal
    sell_price_per_unit: Decimal
    total_price: Decimal
    unit: str
    currency: str
    warranty_end_date: Optional[str]
    common_id: str
    unique_id: str
    seller_id: Optional[str]
    seller_name: Optional[str]
    seller_role: Optional[str]
    customer_name: Optional[str]
    customer_mobile: Optional[str]
    customer_email: Optional[str]
    customer_address: Optional[str]


@dataclass(frozen=True)
class PurchaseRow:
    """In-memory view of a row from the ``Purchases`` sheet."""

    purchase_id: str
    timestamp_iso: str
    product_id: str
    product_name: str
    quantity_added: Decimal
    buy_price_per_unit: Decimal
    total_cost: Decimal
    admin_id: Optional[str]
    supplier: Optional[str]
    common_id: str
    unique_id: str


@dataclass(frozen=True)
class ReturnRow:
    """In-memory view of a row from the ``Returns`` sheet."""

    return_id: str
    timestamp_iso: str
    product_id: str
    product_name: str
    quantity_returned: Decimal
    sell_price_per_unit: Decimal
    total_refund: Decimal
    unit: str
    admin_id: Optional[str]
    reason: Optional[str]
    original_sale_date: Optional[str]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback.
    ``Currency`` and ``WarrantyYears`` are optional.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If ``Role`` is not a known role or ``WarrantyYears`` is not
            a non-negative integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
        operator_id = parser.get("Operator", "OperatorID")
        operator_name = parser.get("Operator", "OperatorName")
        role_raw = parser.get("Operator", "Role")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    currency = parser.get("System", "Currency", fallback=DEFAULT_CURRENCY)
    warranty_years = parser.getint("Defaults", "WarrantyYears", fallback=DEFAULT_WARRANTY_YEARS)
    if warranty_years < 0:
        raise ValueError(f"WarrantyYears must not be negative: {warranty_years}")

    try:
        role = UserRole(role_raw.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unknown operator role: {role_raw}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        operator_id=operator_id,
        operator_name=operator_name,
        operator_role=role,
        currency=currency,
        warranty_years=warranty_years,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet.

    The header row and fully empty rows are skipped; each remaining row is
    converted by :func:`deserialize_product`.
    """

    for raw in _iter_sheet(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_categories(workbook: Workbook) -> Iterable[CategoryRow]:
    for raw in _iter_sheet(workbook, CATEGORIES_SHEET):
        yield deserialize_category(raw)


def iter_brands(workbook: Workbook) -> Iterable[BrandRow]:
    for raw in _iter_sheet(workbook, BRANDS_SHEET):
        yield deserialize_brand(raw)


def iter_sales(workbook: Workbook) -> Iterable[SaleRow]:
    """Stream sale records from the ``Sales`` worksheet in sheet order."""

    for raw in _iter_sheet(workbook, SALES_SHEET):
        yield deserialize_sale(raw)


def iter_purchases(workbook: Workbook) -> Iterable[PurchaseRow]:
    for raw in _iter_sheet(workbook, PURCHASES_SHEET):
        yield deserialize_purchase(raw)


def iter_returns(workbook: Workbook) -> Iterable[ReturnRow]:
    for raw in _iter_sheet(workbook, RETURNS_SHEET):
        yield deserialize_return(raw)


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_category(workbook: Workbook, record: CategoryRow) -> None:
    workbook[CATEGORIES_SHEET].append(serialize_category(record))


def append_brand(workbook: Workbook, record: BrandRow) -> None:
    workbook[BRANDS_SHEET].append(serialize_brand(record))


def append_sale(workbook: Workbook, record: SaleRow) -> None:
    """Append a sale record to the ``Sales`` worksheet.

    Numerical fields remain :class:`~decimal.Decimal` instances after
    serialization so Excel keeps their precision when the workbook is saved.
    """

    workbook[SALES_SHEET].append(serialize_sale(record))


def append_purchase(workbook: Workbook, record: PurchaseRow) -> None:
    workbook[PURCHASES_SHEET].append(serialize_purchase(record))


def append_return(workbook: Workbook, record: ReturnRow) -> None:
    workbook[RETURNS_SHEET].append(serialize_return(record))


def _header_map(workbook: Workbook, sheet_name: str) -> dict[Any, int]:
    headers = list(workbook[sheet_name][1])
    return {cell.value: idx + 1 for idx, cell in enumerate(headers)}


def update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    *,
    field_values: dict[str, Any],
) -> None:
    """Update selected columns of the row whose ``key_column`` equals ``key_value``.

    Only the specified fields are modified, leaving other columns untouched.

    Raises:
        KeyError: If the row or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")

    sheet = workbook[sheet_name]
    header_map = _header_map(workbook, sheet_name)
    for field, value in field_values.items():
        if field not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {field}")
        sheet.cell(row=row_index, column=header_map[field], value=value)


def update_product(workbook: Workbook, product_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing product.

    Raises:
        KeyError: If the product or any referenced column cannot be found.
    """

    update_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, field_values=field_values)


def delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> None:
    """Remove the row whose ``key_column`` equals ``key_value``.

    Raises:
        KeyError: If no row matches.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")
    workbook[sheet_name].delete_rows(row_index)
    log.debug("Deleted %s row %d (%s=%s)", sheet_name, row_index, key_column, key_value)


def delete_product(workbook: Workbook, product_id: str) -> None:
    delete_row(workbook, PRODUCTS_SHEET, "ProductID", product_id)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the ``Products`` column ordering."""

    return [
        record.product_id,
        record.product_name,
        record.brand,
        record.category,
        record.supplier,
        record.unit,
        record.buy_price,
        record.sell_price,
        record.stock,
        record.common_id,
        record.unique_id,
        record.added_date,
        record.description,
    ]


def serialize_category(record: CategoryRow) -> list[object]:
    return [record.category_id, record.name, record.description, record.created_date]


def serialize_brand(record: BrandRow) -> list[object]:
    return [record.brand_id, record.name, record.description, record.logo_url, record.created_date]


def serialize_sale(record: SaleRow) -> list[object]:
    """Convert a sale dataclass into the ``Sales`` column ordering."""

    return [
        record.sale_id,
        record.timestamp_iso,
        record.date_of_sale,
        record.product_id,
        record.product_name,
        record.quantity,
        record.sell_price_per_unit,
        record.total_price,
        record.unit,
        record.currency,
        record.warranty_end_date,
        record.common_id,
        record.unique_id,
        record.seller_id,
        record.seller_name,
        record.seller_role,
        record.customer_name,
        record.customer_mobile,
        record.customer_email,
        record.customer_address,
    ]


def serialize_purchase(record: PurchaseRow) -> list[object]:
    return [
        record.purchase_id,
        record.timestamp_iso,
        record.product_id,
        record.product_name,
        record.quantity_added,
        record.buy_price_per_unit,
        record.total_cost,
        record.admin_id,
        record.supplier,
        record.common_id,
        record.unique_id,
    ]


def serialize_return(record: ReturnRow) -> list[object]:
    return [
        record.return_id,
        record.timestamp_iso,
        record.product_id,
        record.product_name,
        record.quantity_returned,
        record.sell_price_per_unit,
        record.total_refund,
        record.unit,
        record.admin_id,
        record.reason,
        record.original_sale_date,
    ]


def _decimal(raw: object, default: str = "0") -> Decimal:
    """Read a numeric cell; blank, malformed or non-finite cells give ``default``."""
    if raw is None or str(raw).strip() == "":
        return Decimal(default)
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        log.warning("Unreadable numeric cell %r, using %s", raw, default)
        return Decimal(default)
    if not value.is_finite():
        log.warning("Non-finite numeric cell %r, using %s", raw, default)
        return Decimal(default)
    return value


def _text(raw: object) -> str:
    return str(raw) if raw is not None else ""


def _optional_text(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Prices and stock become :class:`~decimal.Decimal` instances; text fields
    are coerced to ``str`` so numbers Excel guessed at stay identifiers.
    """

    (
        product_id,
        product_name,
        brand,
        category,
        supplier,
        unit,
        buy_raw,
        sell_raw,
        stock_raw,
        common_id,
        unique_id,
        added_date,
        description,
    ) = raw_row[:13]

    return ProductRow(
        product_id=_text(product_id),
        product_name=_text(product_name),
        brand=_text(brand),
        category=_text(category),
        supplier=_text(supplier),
        unit=_text(unit),
        buy_price=_decimal(buy_raw, "0.00"),
        sell_price=_decimal(sell_raw, "0.00"),
        stock=_decimal(stock_raw),
        common_id=_text(common_id),
        unique_id=_text(unique_id),
        added_date=_text(added_date),
        description=_text(description),
    )


def deserialize_category(raw_row: Sequence[object]) -> CategoryRow:
    category_id, name, description, created_date = raw_row[:4]
    return CategoryRow(
        category_id=_text(category_id),
        name=_text(name),
        description=_text(description),
        created_date=_text(created_date),
    )


def deserialize_brand(raw_row: Sequence[object]) -> BrandRow:
    brand_id, name, description, logo_url, created_date = raw_row[:5]
    return BrandRow(
        brand_id=_text(brand_id),
        name=_text(name),
        description=_text(description),
        logo_url=_text(logo_url),
        created_date=_text(created_date),
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    """Convert a raw worksheet row into a strongly typed sale record.

    Optional columns remain ``None`` when the sheet leaves them blank.
    """

    (
        sale_id,
        timestamp_iso,
        date_of_sale,
        product_id,
        product_name,
        quantity_raw,
        sell_price_raw,
        total_price_raw,
        unit,
        currency,
        warranty_end_date,
        common_id,
        unique_id,
        seller_id,
        seller_name,
        seller_role,
        customer_name,
        customer_mobile,
        customer_email,
        customer_address,
    ) = raw_row[:20]

    return SaleRow(
        sale_id=_text(sale_id),
        timestamp_iso=_text(timestamp_iso),
        date_of_sale=_text(date_of_sale),
        product_id=_text(product_id),
        product_name=_text(product_name),
        quantity=_decimal(quantity_raw),
        sell_price_per_unit=_decimal(sell_price_raw, "0.00"),
        total_price=_decimal(total_price_raw, "0.00"),
        unit=_text(unit),
        currency=_text(currency),
        warranty_end_date=_optional_text(warranty_end_date),
        common_id=_text(common_id),
        unique_id=_text(unique_id),
        seller_id=_optional_text(seller_id),
        seller_name=_optional_text(seller_name),
        seller_role=_optional_text(seller_role),
        customer_name=_optional_text(customer_name),
        customer_mobile=_optional_text(customer_mobile),
        customer_email=_optional_text(customer_email),
        customer_address=_optional_text(customer_address),
    )


def deserialize_purchase(raw_row: Sequence[object]) -> PurchaseRow:
    (
        purchase_id,
        timestamp_iso,
        product_id,
        product_name,
        quantity_raw,
        buy_price_raw,
        total_cost_raw,
        admin_id,
        supplier,
        common_id,
        unique_id,
    ) = raw_row[:11]

    return PurchaseRow(
        purchase_id=_text(purchase_id),
        timestamp_iso=_text(timestamp_iso),
        product_id=_text(product_id),
        product_name=_text(product_name),
        quantity_added=_decimal(quantity_raw),
        buy_price_per_unit=_decimal(buy_price_raw, "0.00"),
        total_cost=_decimal(total_cost_raw, "0.00"),
        admin_id=_optional_text(admin_id),
        supplier=_optional_text(supplier),
        common_id=_text(common_id),
        unique_id=_text(unique_id),
    )


def deserialize_return(raw_row: Sequence[object]) -> ReturnRow:
    (
        return_id,
        timestamp_iso,
        product_id,
        product_name,
        quantity_raw,
        sell_price_raw,
        total_refund_raw,
        unit,
        admin_id,
        reason,
        original_sale_date,
    ) = raw_row[:11]

    return ReturnRow(
        return_id=_text(return_id),
        timestamp_iso=_text(timestamp_iso),
        product_id=_text(product_id),
        product_name=_text(product_name),
        quantity_returned=_decimal(quantity_raw),
        sell_price_per_unit=_decimal(sell_price_raw, "0.00"),
        total_refund=_decimal(total_refund_raw, "0.00"),
        unit=_text(unit),
        admin_id=_optional_text(admin_id),
        reason=_optional_text(reason),
        original_sale_date=_optional_text(original_sale_date),
    )
