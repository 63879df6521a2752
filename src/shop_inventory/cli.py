"""Command-line entry points for the shop inventory toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer and printing the results of read-only commands. The same parser
configuration can be reused by tests or scripts.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, sales_stats
from .constants import Availability, CompensationType, WarrantyStatus
from .identifiers import validate_common_id


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="shop-cli",
        description="Command-line tools for the shop inventory workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.ini (searched for from the working directory upward when omitted).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and purchases."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "edit-product": register_edit_product_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "add-category": register_add_category_command(subparsers),
        "add-brand": register_add_brand_command(subparsers),
        "sale": register_sale_command(subparsers),
        "purchase": register_purchase_command(subparsers),
        "return": register_return_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "products": register_products_command(subparsers),
        "categories": register_categories_command(subparsers),
        "brands": register_brands_command(subparsers),
        "stats": register_stats_command(subparsers),
        "profit": register_profit_command(subparsers),
        "totals": register_totals_command(subparsers),
        "warranties": register_warranties_command(subparsers),
        "generate-id": register_generate_id_command(subparsers),
        "check-id": register_check_id_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_product_fields(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--product-name", required=required)
    parser.add_argument("--common-id", required=required)
    parser.add_argument("--unique-id", default=None, help="Generated from --common-id when omitted.")
    parser.add_argument("--brand", default=None)
    parser.add_argument("--category", default=None)
    parser.add_argument("--supplier", default=None)
    parser.add_argument("--unit", default=None)
    parser.add_argument("--buy-price", default=None)
    parser.add_argument("--sell-price", default=None)
    parser.add_argument("--stock", default=None)
    parser.add_argument("--description", default=None)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the Products sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        _add_product_fields(parser, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_edit_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-product``."""
    name = "edit-product"
    help_text = "Change selected fields of an existing product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        _add_product_fields(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_product)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "delete-product"
    help_text = "Remove a product from the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_product)


def register_add_category_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "add-category"
    help_text = "Register a product category."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--description", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_category)


def register_add_brand_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "add-brand"
    help_text = "Register a brand."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--description", default="")
        parser.add_argument("--logo-url", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_brand)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale transaction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", required=True)
        parser.add_argument("--price", default=None, help="Sell price per unit (defaults to the product's).")
        parser.add_argument("--date", dest="date_of_sale", default=None, help="Date of sale (YYYY-MM-DD).")
        parser.add_argument("--warranty-end", default=None, help="Warranty end date (YYYY-MM-DD).")
        parser.add_argument("--customer-name", default=None)
        parser.add_argument("--customer-mobile", default=None)
        parser.add_argument("--customer-email", default=None)
        parser.add_argument("--customer-address", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase``."""
    name = "purchase"
    help_text = "Record a stock purchase."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", required=True)
        parser.add_argument("--buy-price", default=None)
        parser.add_argument("--sell-price", default=None)
        parser.add_argument("--supplier", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase)


def register_return_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``return``."""
    name = "return"
    help_text = "Record a customer return."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", required=True)
        parser.add_argument("--reason", required=True)
        parser.add_argument("--customer-mobile", default=None)
        parser.add_argument(
            "--compensation-type",
            choices=[member.value for member in CompensationType],
            default=None,
        )
        parser.add_argument("--compensation-value", default=None)
        parser.add_argument("--sale-date", dest="original_sale_date", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_return)


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""
    name = "products"
    help_text = "List products, optionally filtered."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.add_argument("--category", default="")
        parser.add_argument("--brand", default="")
        parser.add_argument(
            "--availability",
            choices=[member.value for member in Availability],
            default=Availability.ALL.value,
        )
        parser.add_argument("--min-price", default=None)
        parser.add_argument("--max-price", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_products, mutates=False)


def register_categories_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "categories"
    help_text = "List product categories."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_categories, mutates=False)


def register_brands_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "brands"
    help_text = "List brands."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_brands, mutates=False)


def register_stats_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stats``."""
    name = "stats"
    help_text = "Display sales statistics for a period."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        period = parser.add_mutually_exclusive_group()
        period.add_argument("--today", action="store_true", help="Report on today's sales (default).")
        period.add_argument("--month", action="store_true", help="Report on this month up to today.")
        parser.add_argument("--start", default=None, help="First day of a custom range (YYYY-MM-DD).")
        parser.add_argument("--end", default=None, help="Last day of a custom range (YYYY-MM-DD).")
        parser.add_argument("--export", type=Path, default=None, help="Also write the report as JSON.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stats, mutates=False)


def register_profit_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``profit``."""
    name = "profit"
    help_text = "Display profit per sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_profit, mutates=False)


def register_totals_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "totals"
    help_text = "Display all-time revenue, purchase and refund totals."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_totals, mutates=False)


def register_warranties_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "warranties"
    help_text = "List sold units with their warranty status."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--status",
            choices=[member.value for member in WarrantyStatus],
            default=None,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_warranties, mutates=False)


def register_generate_id_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "generate-id"
    help_text = "Suggest an unused unique ID for a common ID."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--common-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_generate_id, mutates=False)


def register_check_id_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "check-id"
    help_text = "Validate a common ID and, optionally, a unique ID."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--common-id", required=True)
        parser.add_argument("--unique-id", default=None)
        parser.add_argument("--previous-unique-id", default=None, help="Unique ID the product has today.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_check_id, mutates=False)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def _decimal_or_none(raw: Optional[str]) -> Optional[Decimal]:
    return Decimal(raw) if raw is not None else None


def _date_or_none(raw: Optional[str]) -> Optional[date]:
    return date.fromisoformat(raw) if raw else None


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    payload: Dict[str, Any] = {"product_id": args.product_id, "unique_id": None}
    payload.update(translate_product_changes(args))
    return payload


def translate_product_changes(args: argparse.Namespace) -> Mapping[str, Any]:
    """Collect the product fields given on the command line.

    Options left out are not included, so an edit only touches what the
    operator asked to change.
    """
    changes: Dict[str, Any] = {}
    for attr in ("product_name", "common_id", "unique_id", "brand", "category", "supplier", "unit", "description"):
        value = getattr(args, attr, None)
        if value is not None:
            changes[attr] = value
    for attr in ("buy_price", "sell_price", "stock"):
        value = getattr(args, attr, None)
        if value is not None:
            changes[attr] = Decimal(value)
    return changes


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    customer = core_logic.CustomerDetails(
        name=args.customer_name,
        mobile=args.customer_mobile,
        email=args.customer_email,
        address=args.customer_address,
    )
    return core_logic.SaleCommand(
        product_id=args.product_id,
        quantity=Decimal(args.quantity),
        sell_price_per_unit=_decimal_or_none(args.price),
        customer=customer,
        date_of_sale=_date_or_none(args.date_of_sale),
        warranty_end_date=_date_or_none(args.warranty_end),
    )


def translate_purchase(args: argparse.Namespace) -> core_logic.PurchaseCommand:
    """Translate CLI args into a purchase command object."""
    return core_logic.PurchaseCommand(
        product_id=args.product_id,
        quantity=Decimal(args.quantity),
        buy_price=_decimal_or_none(args.buy_price),
        sell_price=_decimal_or_none(args.sell_price),
        supplier=args.supplier,
    )


def translate_return(args: argparse.Namespace) -> core_logic.ReturnCommand:
    """Translate CLI args into a return command object."""
    compensation = CompensationType(args.compensation_type) if args.compensation_type else None
    return core_logic.ReturnCommand(
        product_id=args.product_id,
        quantity=Decimal(args.quantity),
        reason=args.reason,
        customer_mobile=args.customer_mobile,
        compensation_type=compensation,
        compensation_value=_decimal_or_none(args.compensation_value),
        original_sale_date=args.original_sale_date,
    )


def translate_filters(args: argparse.Namespace) -> core_logic.ProductFilters:
    return core_logic.ProductFilters(
        search_term=args.search,
        category=args.category,
        brand=args.brand,
        availability=Availability(args.availability),
        min_price=_decimal_or_none(args.min_price),
        max_price=_decimal_or_none(args.max_price),
    )


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    payload = translate_add_product(args)
    product = core_logic.add_product(context, **payload)
    print(f"Added {product.product_id}: {product.product_name} [{product.common_id} / {product.unique_id}]")
    return 0


def run_edit_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the edit-product workflow in the BLL."""
    changes = translate_product_changes(args)
    if not changes:
        print("Nothing to change.")
        return 1
    product = core_logic.update_product(context, args.product_id, changes=changes)
    print(f"Updated {product.product_id}: {product.product_name} [{product.common_id} / {product.unique_id}]")
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = core_logic.delete_product(context, args.product_id)
    print(f"Deleted {product.product_id}: {product.product_name}")
    return 0


def run_add_category(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    category = core_logic.add_category(context, args.name, description=args.description)
    print(f"Added category {category.name} ({category.category_id})")
    return 0


def run_add_brand(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    brand = core_logic.add_brand(context, args.name, description=args.description, logo_url=args.logo_url)
    print(f"Added brand {brand.name} ({brand.brand_id})")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    command = translate_sale(args)
    sale = core_logic.record_sale(context, command)
    print(f"Recorded sale {sale.sale_id}: {sale.quantity} x {sale.product_name} = {sale.total_price} {sale.currency}")
    return 0


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase workflow via the BLL."""
    command = translate_purchase(args)
    purchase = core_logic.record_purchase(context, command)
    print(f"Recorded purchase {purchase.purchase_id}: {purchase.quantity_added} x {purchase.product_name}")
    return 0


def run_return(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the return workflow via the BLL."""
    command = translate_return(args)
    record = core_logic.record_return(context, command)
    print(f"Recorded return {record.return_id}: refund {record.total_refund}")
    return 0


def run_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the filtered product list."""
    products = core_logic.filter_products(core_logic.list_products(context), translate_filters(args))
    for product in products:
        print(
            f"{product.product_id}\t{product.product_name}\t{product.unique_id}\t"
            f"{product.stock} {product.unit}\t{product.sell_price}"
        )
    print(f"{len(products)} product(s)")
    return 0


def run_categories(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for category in core_logic.list_categories(context):
        print(f"{category.category_id}\t{category.name}")
    return 0


def run_brands(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for brand in core_logic.list_brands(context):
        print(f"{brand.brand_id}\t{brand.name}")
    return 0


def resolve_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> tuple[str, sales_stats.PeriodReport]:
    """Pick the report requested by the ``stats`` options.

    Raises:
        ValueError: If only one end of a custom range is given.
    """
    if args.start or args.end:
        if not (args.start and args.end):
            raise ValueError("--start and --end must be given together")
        return "Custom Range Report", core_logic.sales_report(context, args.start, args.end)
    if args.month:
        return "Monthly Sales Report", core_logic.monthly_report(context)
    return "Daily Sales Report", core_logic.todays_report(context)


def run_stats(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print a period report and optionally export it."""
    title, report = resolve_report(context, args)
    stats = report.stats
    print(f"{title} ({report.start_date.isoformat()} .. {report.end_date.isoformat()})")
    print(f"Sales: {stats.sales_count}")
    print(f"Products sold: {stats.total_products}")
    print(f"Unique products: {stats.unique_product_count}")
    print(f"Revenue: {stats.total_revenue} {context.settings.currency}")
    print(f"Average sale: {sales_stats.average_sale_value(stats):.2f}")
    for stat in report.product_stats:
        print(f"  {stat.product_name}\t{stat.quantity}\t{stat.total}\t{', '.join(stat.dates)}")
    if args.export is not None:
        path = core_logic.export_report(report, title=title, destination=args.export)
        print(f"Exported to {path}")
    return 0


def run_profit(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print profit per sale and the overall total."""
    report = core_logic.calculate_profit_report(context)
    for item in report.items:
        when = sales_stats.format_display_date(item.sale_date) if item.sale_date else "-"
        print(f"{when}\t{item.product_name}\t{item.quantity}\t{item.profit}\t{item.total_profit}")
    print(f"Total profit: {report.total_profit} {context.settings.currency}")
    return 0


def run_totals(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for label, amount in core_logic.totals_overview(context).items():
        print(f"{label}: {amount}")
    return 0


def run_warranties(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    status = WarrantyStatus(args.status) if args.status else None
    for item in core_logic.list_warranties(context, status=status):
        print(
            f"{item.unique_id or item.product_id}\t{item.product_name}\t{item.customer_name or '-'}\t"
            f"{item.warranty_end_date or '-'}\t{item.status.value}\t{item.days_remaining}"
        )
    return 0


def run_generate_id(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    print(core_logic.identifier_manager(context).generate_unique_id(args.common_id))
    return 0


def run_check_id(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print validation feedback; exits non-zero when either ID is rejected."""
    common = validate_common_id(args.common_id)
    print(f"Common ID: {common.message}")
    if not common.is_valid:
        return 2
    if args.unique_id is None:
        return 0
    unique = core_logic.identifier_manager(context).validate_unique_id(
        args.unique_id,
        args.previous_unique_id,
        common_id=args.common_id,
    )
    print(f"Unique ID: {unique.message}")
    return 0 if unique.is_valid else 2


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
