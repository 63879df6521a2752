"""Shared pytest fixtures and utilities for shop inventory tests."""

from __future__ import annotations

import argparse
import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

from shop_inventory import cli, constants, core_logic, data_manager
from shop_inventory.setup_excel import create_master_workbook

# ``src`` and ``tests`` are put on sys.path by the pytest settings in pyproject.toml.
PROJECT_ROOT = Path(__file__).resolve().parents[1]

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_OPERATOR_ID = "U-ADMIN"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n"
    "Currency = BDT\n\n"
    "[Defaults]\n"
    "WarrantyYears = {warranty_years}\n\n"
    "[Operator]\n"
    "OperatorID = {operator_id}\n"
    "OperatorName = Test Operator\n"
    "Role = {role}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    operator_id: str
    role: str
    schema_version: str
    shop_name: str


@pytest.fixture(autouse=True)
def _utc_local_time(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Run every test with local time equal to UTC so calendar days are stable."""

    if not hasattr(time, "tzset"):
        yield
        return
    monkeypatch.setenv("TZ", "UTC")
    time.tzset()
    try:
        yield
    finally:
        monkeypatch.undo()
        time.tzset()


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the repository root path."""

    return PROJECT_ROOT


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "master_workbook.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Test Shop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        operator_id: str = DEFAULT_OPERATOR_ID,
        role: str = "admin",
        warranty_years: int = 1,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}")
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                operator_id=operator_id,
                role=role,
                warranty_years=warranty_years,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            operator_id=operator_id,
            role=role,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="shop-cli", description="Shop CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


def make_settings(tmp_path: Path, role: constants.UserRole = constants.UserRole.ADMIN) -> data_manager.ConfigSettings:
    return data_manager.ConfigSettings(
        data_file=tmp_path / "master_workbook.xlsx",
        shop_name="Test Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        operator_id="U-1",
        operator_name="Test Operator",
        operator_role=role,
    )


def make_product(
    product_id: str = "P1",
    *,
    name: str = "Camera",
    stock: str = "10",
    buy_price: str = "80.00",
    sell_price: str = "100.00",
    common_id: str = "CAM-1001",
    unique_id: str = "CAM-1001-A1",
    category: str = "Cameras",
    brand: str = "Canon",
) -> data_manager.ProductRow:
    """Build a product row with sensible defaults for unit tests."""

    return data_manager.ProductRow(
        product_id=product_id,
        product_name=name,
        brand=brand,
        category=category,
        supplier="Acme",
        unit="pcs",
        buy_price=Decimal(buy_price),
        sell_price=Decimal(sell_price),
        stock=Decimal(stock),
        common_id=common_id,
        unique_id=unique_id,
        added_date="2024-06-01",
        description="",
    )


def make_sale(
    sale_id: str = "S1",
    *,
    product_id: str = "P1",
    quantity: str = "1",
    price: str = "100.00",
    date_of_sale: str = "2024-06-15",
    timestamp_iso: str = "",
    customer_mobile: str | None = None,
    warranty_end_date: str | None = None,
) -> data_manager.SaleRow:
    return data_manager.SaleRow(
        sale_id=sale_id,
        timestamp_iso=timestamp_iso,
        date_of_sale=date_of_sale,
        product_id=product_id,
        product_name="Camera",
        quantity=Decimal(quantity),
        sell_price_per_unit=Decimal(price),
        total_price=Decimal(price) * Decimal(quantity),
        unit="pcs",
        currency="BDT",
        warranty_end_date=warranty_end_date,
        common_id="CAM-1001",
        unique_id="CAM-1001-A1",
        seller_id="U-1",
        seller_name="Test Operator",
        seller_role="admin",
        customer_name=None,
        customer_mobile=customer_mobile,
        customer_email=None,
        customer_address=None,
    )


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default admin settings for runtime context tests."""

    return make_settings(tmp_path)


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def seller_context(tmp_path: Path, workbook: Mock) -> core_logic.RuntimeContext:
    """Runtime context whose operator only has the seller role."""

    return core_logic.RuntimeContext(
        settings=make_settings(tmp_path, constants.UserRole.SELLER),
        workbook=workbook,
    )


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
