"""Bootstrap an empty shop inventory workbook.

Used both as the ``shop-setup`` script and by the test suite, which builds a
fresh workbook for every test.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font
from openpyxl.worksheet.worksheet import Worksheet

from . import data_manager, log
from .constants import SheetName

# Column order must match the data_manager serializers.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: [
        "ProductID",
        "ProductName",
        "Brand",
        "Category",
        "Supplier",
        "Unit",
        "BuyPrice",
        "SellPrice",
        "Stock",
        "CommonID",
        "UniqueID",
        "AddedDate",
        "Description",
    ],
    SheetName.CATEGORIES.value: [
        "CategoryID",
        "Name",
        "Description",
        "CreatedDate",
    ],
    SheetName.BRANDS.value: [
        "BrandID",
        "Name",
        "Description",
        "LogoUrl",
        "CreatedDate",
    ],
    SheetName.SALES.value: [
        "SaleID",
        "Timestamp",
        "DateOfSale",
        "ProductID",
        "ProductName",
        "Quantity",
        "SellPricePerUnit",
        "TotalPrice",
        "Unit",
        "Currency",
        "WarrantyEndDate",
        "CommonID",
        "UniqueID",
        "SellerID",
        "SellerName",
        "SellerRole",
        "CustomerName",
        "CustomerMobile",
        "CustomerEmail",
        "CustomerAddress",
    ],
    SheetName.PURCHASES.value: [
        "PurchaseID",
        "Timestamp",
        "ProductID",
        "ProductName",
        "QuantityAdded",
        "BuyPricePerUnit",
        "TotalCost",
        "AdminID",
        "Supplier",
        "CommonID",
        "UniqueID",
    ],
    SheetName.RETURNS.value: [
        "ReturnID",
        "Timestamp",
        "ProductID",
        "ProductName",
        "QuantityReturned",
        "SellPricePerUnit",
        "TotalRefund",
        "Unit",
        "AdminID",
        "Reason",
        "OriginalSaleDate",
    ],
}

DEFAULT_CONFIG = Path("config.ini")
HEADER_FONT = Font(bold=True)
# Minimum width keeps short headers such as "Unit" readable.
MIN_COLUMN_WIDTH = 12


@dataclass(frozen=True)
class SetupSettings:
    """The only configuration the bootstrap needs: where the workbook goes."""

    data_file: Path


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``DataFile`` from ``config_path``.

    Unlike :func:`data_manager.parse_settings` this ignores the operator
    section, so the workbook can be created before anyone is configured.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        KeyError: If ``[System] DataFile`` is missing.
    """

    parser = data_manager.read_config(config_path)
    try:
        data_file = Path(parser.get("System", "DataFile"))
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    if not data_file.is_absolute():
        data_file = config_path.expanduser().resolve().parent / data_file
    return SetupSettings(data_file=data_file.resolve())


def _write_header(worksheet: Worksheet, columns: Sequence[str]) -> None:
    worksheet.append(list(columns))
    for cell in worksheet[1]:
        cell.font = HEADER_FONT
        worksheet.column_dimensions[cell.column_letter].width = max(MIN_COLUMN_WIDTH, len(str(cell.value)) + 2)
    worksheet.freeze_panes = "A2"


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create an empty master workbook with one header row per sheet.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is false.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing master workbook: {destination}")

    workbook = openpyxl.Workbook()
    first, *rest = sheet_columns.items()
    workbook.active.title = first[0]
    _write_header(workbook.active, first[1])
    for sheet_name, columns in rest:
        _write_header(workbook.create_sheet(title=sheet_name), columns)

    data_manager.save_workbook(workbook, destination)
    log.info("Created master workbook '%s' with sheets %s", destination, ", ".join(sheet_columns))
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    settings = load_settings(config_path)
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="shop-setup",
        description="Create the empty shop inventory workbook named in config.ini.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to configuration file (default: ./config.ini).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Replace the workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for ``shop-setup``; returns a process exit code."""

    args = parse_args(argv)
    config_path = args.config.expanduser().resolve()
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileExistsError as exc:
        print(f"[ERROR] {exc}")
        print("Pass --force to replace it.")
        return 1
    except (FileNotFoundError, KeyError) as exc:
        print(f"[ERROR] {exc}")
        return 1
    except OSError as exc:
        print(f"[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
