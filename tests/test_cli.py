"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping

import pytest

from shop_inventory import cli, constants, core_logic


WRITE_COMMANDS = {
    "add-product",
    "edit-product",
    "delete-product",
    "add-category",
    "add-brand",
    "sale",
    "purchase",
    "return",
}

READ_COMMANDS = {
    "products",
    "categories",
    "brands",
    "stats",
    "profit",
    "totals",
    "warranties",
    "generate-id",
    "check-id",
}

# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    parser = cli.build_parser()

    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "shop-cli"
    assert "shop inventory" in (parser.description or "")


def test_configure_subcommands_registers_all_commands(cli_parser):
    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(cli_parser) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_mark_specs_as_mutating(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)

    assert set(specs) == WRITE_COMMANDS
    assert all(isinstance(spec, cli.CommandSpec) and spec.mutates for spec in specs.values())


def test_register_read_commands_mark_specs_as_read_only(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)

    assert set(specs) == READ_COMMANDS
    assert not any(spec.mutates for spec in specs.values())


def test_sale_command_parses_customer_options():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    args = parser.parse_args(
        [
            "sale",
            "--product-id",
            "P1",
            "--quantity",
            "2",
            "--customer-mobile",
            "01700-000000",
            "--date",
            "2024-06-15",
        ]
    )

    assert args.command == "sale"
    assert args.customer_mobile == "01700-000000"
    assert args.date_of_sale == "2024-06-15"
    assert args.price is None


def test_return_command_restricts_compensation_type():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    with pytest.raises(SystemExit):
        parser.parse_args(
            ["return", "--product-id", "P1", "--quantity", "1", "--reason", "x", "--compensation-type", "gift"]
        )


def test_stats_command_rejects_today_and_month_together():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    with pytest.raises(SystemExit):
        parser.parse_args(["stats", "--today", "--month"])


# ---------------------------------------------------------------------------
# Runtime context helpers
# ---------------------------------------------------------------------------


def test_load_runtime_context_uses_provided_path(config_file, monkeypatch):
    sentinel_context = object()

    def fake_loader(path: Path | None) -> object:
        assert path == config_file
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    assert cli.load_runtime_context(config_file) is sentinel_context


def test_load_runtime_context_leaves_discovery_to_data_layer(monkeypatch):
    """Without --config no path is passed on, so config.ini is searched for upward."""

    sentinel_context = object()

    def fake_loader(path: Path | None) -> object:
        assert path is None
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    assert cli.load_runtime_context() is sentinel_context


def test_main_finds_config_in_parent_directory(config_factory, monkeypatch, capsys):
    bundle = config_factory()
    nested = bundle.directory / "reports" / "june"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert cli.main(["products"]) == 0
    assert "0 product(s)" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------


def test_dispatch_command_invokes_executor(runtime_context):
    called = {}

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        called["context"] = context
        return 0

    spec = cli.CommandSpec("catalog-test", "help", lambda s: s.add_parser("catalog-test"), execute)

    result = cli.dispatch_command(runtime_context, argparse.Namespace(command="catalog-test"), {"catalog-test": spec})

    assert result == 0
    assert called["context"] is runtime_context


def test_dispatch_command_handles_unknown_commands(runtime_context):
    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, argparse.Namespace(command="unknown"), {})


def test_build_command_table_indexes_specs(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)

    assert set(table) == {spec.name for spec in command_spec_iterable}


def test_build_command_table_detects_duplicate_commands():
    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]

    with pytest.raises(ValueError):
        cli.build_command_table(specs)


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


def _parse(argv: list[str]) -> argparse.Namespace:
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    return parser.parse_args(argv)


def test_translate_add_product_returns_payload():
    args = _parse(
        [
            "add-product",
            "--product-id",
            "P1",
            "--product-name",
            "Camera",
            "--common-id",
            "cam-1001",
            "--sell-price",
            "149.99",
            "--stock",
            "3",
        ]
    )

    payload = cli.translate_add_product(args)

    assert payload == {
        "product_id": "P1",
        "product_name": "Camera",
        "common_id": "cam-1001",
        "unique_id": None,
        "sell_price": Decimal("149.99"),
        "stock": Decimal("3"),
    }


def test_translate_product_changes_only_includes_given_options():
    args = _parse(["edit-product", "--product-id", "P1", "--unique-id", "CAM-1001-B2"])

    assert cli.translate_product_changes(args) == {"unique_id": "CAM-1001-B2"}


def test_translate_sale_returns_sale_command():
    args = _parse(
        [
            "sale",
            "--product-id",
            "P1",
            "--quantity",
            "2",
            "--price",
            "95",
            "--date",
            "2024-06-15",
            "--customer-name",
            "Rahim",
        ]
    )

    command = cli.translate_sale(args)

    assert command.product_id == "P1"
    assert command.quantity == Decimal("2")
    assert command.sell_price_per_unit == Decimal("95")
    assert command.date_of_sale == date(2024, 6, 15)
    assert command.warranty_end_date is None
    assert command.customer == core_logic.CustomerDetails(name="Rahim")


def test_translate_purchase_returns_purchase_command():
    args = _parse(["purchase", "--product-id", "P1", "--quantity", "5", "--buy-price", "75"])

    command = cli.translate_purchase(args)

    assert command == core_logic.PurchaseCommand(product_id="P1", quantity=Decimal("5"), buy_price=Decimal("75"))


def test_translate_return_returns_return_command():
    args = _parse(
        [
            "return",
            "--product-id",
            "P1",
            "--quantity",
            "1",
            "--reason",
            "Faulty",
            "--compensation-type",
            "percent",
            "--compensation-value",
            "90",
        ]
    )

    command = cli.translate_return(args)

    assert command.compensation_type is constants.CompensationType.PERCENT
    assert command.compensation_value == Decimal("90")
    assert command.customer_mobile is None


def test_translate_filters_parses_availability_and_prices():
    args = _parse(["products", "--availability", "in-stock", "--min-price", "10"])

    filters = cli.translate_filters(args)

    assert filters.availability is constants.Availability.IN_STOCK
    assert filters.min_price == Decimal("10")
    assert filters.max_price is None


# ---------------------------------------------------------------------------
# Command execution helpers
# ---------------------------------------------------------------------------


def test_run_add_product_invokes_bll(runtime_context, monkeypatch, capsys):
    payload = {"product_id": "P1001"}
    monkeypatch.setattr(cli, "translate_add_product", lambda value: payload)
    called: dict[str, object] = {}

    def fake_add_product(context: core_logic.RuntimeContext, **data: object):
        called["context"] = context
        called["data"] = data
        return argparse.Namespace(
            product_id="P1001", product_name="Camera", common_id="CAM-1001", unique_id="CAM-1001-A1"
        )

    monkeypatch.setattr(cli.core_logic, "add_product", fake_add_product)

    result = cli.run_add_product(runtime_context, argparse.Namespace())

    assert result == 0
    assert called["context"] is runtime_context
    assert called["data"] == payload
    assert "CAM-1001-A1" in capsys.readouterr().out


def test_run_edit_product_without_changes_fails(runtime_context, monkeypatch):
    monkeypatch.setattr(cli, "translate_product_changes", lambda value: {})
    monkeypatch.setattr(
        cli.core_logic,
        "update_product",
        lambda *_, **__: pytest.fail("update_product should not be called"),
    )

    assert cli.run_edit_product(runtime_context, argparse.Namespace(product_id="P1")) == 1


def test_run_sale_invokes_bll(runtime_context, monkeypatch):
    command = core_logic.SaleCommand(product_id="P1001", quantity=Decimal("1"))
    monkeypatch.setattr(cli, "translate_sale", lambda value: command)
    called = {}

    def fake_record(context: core_logic.RuntimeContext, cmd: core_logic.SaleCommand):
        called["context"] = context
        called["cmd"] = cmd
        return argparse.Namespace(
            sale_id="S1", quantity=Decimal("1"), product_name="Camera", total_price=Decimal("5"), currency="BDT"
        )

    monkeypatch.setattr(cli.core_logic, "record_sale", fake_record)

    assert cli.run_sale(runtime_context, argparse.Namespace()) == 0
    assert called["context"] is runtime_context
    assert called["cmd"] is command


def test_run_stats_prints_report_and_exports(runtime_context, tmp_path, capsys):
    args = argparse.Namespace(
        start="2024-06-01",
        end="2024-06-30",
        today=False,
        month=False,
        export=tmp_path / "report.json",
    )

    assert cli.run_stats(runtime_context, args) == 0

    out = capsys.readouterr().out
    assert "Custom Range Report" in out
    assert "Sales: 0" in out
    assert (tmp_path / "report.json").exists()


def test_resolve_report_requires_both_range_ends(runtime_context):
    args = argparse.Namespace(start="2024-06-01", end=None, today=False, month=False)

    with pytest.raises(ValueError):
        cli.resolve_report(runtime_context, args)


def test_run_check_id_reports_duplicates(runtime_context, capsys):
    core_logic.identifier_manager(runtime_context).add_used_unique_id("CAM-1001-A1")
    args = argparse.Namespace(common_id="CAM-1001", unique_id="CAM-1001-A1", previous_unique_id=None)

    assert cli.run_check_id(runtime_context, args) == 2
    assert "already in use" in capsys.readouterr().out


def test_run_check_id_accepts_unchanged_value(runtime_context, capsys):
    core_logic.identifier_manager(runtime_context).add_used_unique_id("CAM-1001-A1")
    args = argparse.Namespace(common_id="CAM-1001", unique_id="CAM-1001-A1", previous_unique_id="CAM-1001-A1")

    assert cli.run_check_id(runtime_context, args) == 0
    assert "Unique ID unchanged" in capsys.readouterr().out


def test_run_generate_id_prints_candidate(runtime_context, capsys):
    assert cli.run_generate_id(runtime_context, argparse.Namespace(common_id="cam-1001")) == 0
    assert capsys.readouterr().out.startswith("CAM-1001-")


# ---------------------------------------------------------------------------
# Error handling and persistence
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (core_logic.BusinessRuleViolation("invalid"), 2),
        (core_logic.PermissionDeniedError("admin only"), 2),
        (FileNotFoundError("missing"), 3),
        (ValueError("bad value"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    caplog.set_level("ERROR")

    assert cli.handle_cli_error(error) == expected
    assert any(str(error) in record.getMessage() for record in caplog.records)


def test_persist_workbook_handles_read_only_workbooks(runtime_context, monkeypatch):
    def fake_persist(_: core_logic.RuntimeContext) -> None:
        raise PermissionError("read-only")

    monkeypatch.setattr(cli.core_logic, "persist_context", fake_persist)

    with pytest.raises(RuntimeError, match="read-only"):
        cli.persist_workbook(runtime_context)


# ---------------------------------------------------------------------------
# Program entry point
# ---------------------------------------------------------------------------


def _patch_main(monkeypatch, runtime_context, command: str, *, mutates: bool) -> dict:
    parser = _stub_parser(command=command)
    command_table = {command: cli.CommandSpec(command, "help", lambda _: parser, lambda *_: 0, mutates=mutates)}
    called: dict = {}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)
    monkeypatch.setattr(cli, "persist_workbook", lambda ctx: called.setdefault("persisted", ctx))
    return called


def test_main_persists_after_write_command(monkeypatch, runtime_context):
    called = _patch_main(monkeypatch, runtime_context, "sale", mutates=True)

    def fake_dispatch(context: core_logic.RuntimeContext, args: argparse.Namespace, table: Mapping[str, cli.CommandSpec]) -> int:
        called["args"] = args
        return 0

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)

    assert cli.main(["sale"]) == 0
    assert called["persisted"] is runtime_context
    assert called["args"].command == "sale"


def test_main_does_not_persist_read_command(monkeypatch, runtime_context):
    called = _patch_main(monkeypatch, runtime_context, "profit", mutates=False)
    monkeypatch.setattr(cli, "dispatch_command", lambda *_: 0)

    assert cli.main(["profit"]) == 0
    assert "persisted" not in called


def test_main_handles_bll_errors(monkeypatch, runtime_context):
    called = _patch_main(monkeypatch, runtime_context, "sale", mutates=True)

    def fake_dispatch(*_: object) -> int:
        raise core_logic.BusinessRuleViolation("invalid")

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)

    assert cli.main(["sale"]) == 2
    assert "persisted" not in called


def test_main_rejects_schema_mismatch(config_factory):
    bundle = config_factory(schema_version="0.1.0")

    assert cli.main(["--config", str(bundle.config_path), "products"]) == 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stub_parser(command: str) -> argparse.ArgumentParser:
    """Create a stub parser that always returns the supplied command."""

    class _Stub(argparse.ArgumentParser):
        def parse_args(self, args: Iterable[str] | None = None, namespace: argparse.Namespace | None = None):  # type: ignore[override]
            return argparse.Namespace(command=command)

    return _Stub(prog="test")


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    """Return the set of registered sub-command names for assertion helpers."""

    actions = getattr(parser, "_subparsers", None)
    if not actions:
        return set()
    group_actions = actions._group_actions  # type: ignore[attr-defined]
    if not group_actions:
        return set()
    return set(group_actions[0].choices)  # type: ignore[index]
