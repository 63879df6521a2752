"""Period-based sales rollups.

The helpers in this module reduce a flat list of sale records into the figures
shown on the sales dashboard and in the period reports: overall statistics for
a date window, a per-product breakdown, report summaries, profit per sale and
warranty status. Every function is a pure computation over a snapshot that the
caller already loaded; nothing here performs I/O or keeps state between calls.

Each :class:`SaleRecord` resolves its *effective date* once, when it is
built. The precise ``timestamp`` wins when present, otherwise the coarser
``date_of_sale`` is used. Dates are compared as local calendar days: offset
aware timestamps are converted to local time, date-only values mean local
midnight.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from . import log
from .constants import WarrantyStatus


DateLike = Union[date, datetime, str]

ZERO = Decimal("0")


def _to_decimal(value: Any, *, field_name: str = "value") -> Decimal:
    """Coerce loosely typed numeric input into a :class:`Decimal`.

    Missing values become zero. Unparsable and non-finite values (NaN,
    Infinity) are logged and also become zero so a single bad record never aborts an aggregation.
    """

    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        text = str(value).strip()
        if not text:
            return ZERO
        try:
            result = Decimal(text)
        except InvalidOperation:
            log.warning("Treating unparsable %s %r as 0", field_name, value)
            return ZERO
    if not result.is_finite():
        log.warning("Treating non-finite %s %r as 0", field_name, value)
        return ZERO
    return result


def _parse_moment(raw: Any) -> Optional[datetime]:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, date):
        parsed = datetime.combine(raw, time.min)
    else:
        text = str(raw).strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            log.warning("Ignoring unparsable sale date %r", raw)
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def effective_datetime(timestamp: Any, date_of_sale: Any) -> Optional[datetime]:
    """Resolve the effective date of a sale as a naive local datetime.

    ``timestamp`` is preferred; ``date_of_sale`` is used when the timestamp is
    missing or cannot be parsed. ``None`` means neither value is usable.
    """

    return _parse_moment(timestamp) or _parse_moment(date_of_sale)


def _coerce_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        return datetime.fromisoformat(text).date()


def format_display_date(moment: Union[date, datetime]) -> str:
    """Format a date the way report tables show it (``M/D/YYYY``)."""

    return f"{moment.month}/{moment.day}/{moment.year}"


@dataclass(frozen=True)
class SaleRecord:
    """A persisted sale as consumed by the aggregator.

    Numeric fields are normalized to :class:`Decimal` and ``effective_at`` is
    derived on construction; records are never mutated afterwards.
    """

    product_id: str
    product_name: str = ""
    quantity: Decimal = ZERO
    total_price: Decimal = ZERO
    date_of_sale: str = ""
    timestamp: Optional[str] = None
    sell_price_per_unit: Decimal = ZERO
    unit: str = ""
    sale_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_mobile: Optional[str] = None
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None
    warranty_end_date: Optional[str] = None
    effective_at: Optional[datetime] = field(init=False, default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "product_id", "" if self.product_id is None else str(self.product_id))
        object.__setattr__(self, "product_name", "" if self.product_name is None else str(self.product_name))
        object.__setattr__(self, "quantity", _to_decimal(self.quantity, field_name="quantity"))
        object.__setattr__(self, "total_price", _to_decimal(self.total_price, field_name="totalPrice"))
        object.__setattr__(
            self,
            "sell_price_per_unit",
            _to_decimal(self.sell_price_per_unit, field_name="sellpricePerUnit"),
        )
        object.__setattr__(self, "effective_at", effective_datetime(self.timestamp, self.date_of_sale))

    @property
    def group_key(self) -> str:
        """Key used to group records per product."""

        return self.product_id.strip() or self.product_name


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def sale_record_from_mapping(raw: Mapping[str, Any]) -> SaleRecord:
    """Build a :class:`SaleRecord` from a sale object as returned by the shop API.

    Both the sold-products shape (``productId``/``quantity``) and the sales log
    shape (``productID``/``quantitySold``) are accepted. Customer details may
    be flat (``customerMobile``) or nested under ``customer``.
    """

    customer = raw.get("customer") or {}
    if not isinstance(customer, Mapping):
        customer = {}

    def _text(value: Any) -> Optional[str]:
        return None if value is None else str(value)

    return SaleRecord(
        product_id=_first(raw, "productId", "productID") or "",
        product_name=_first(raw, "productName") or "",
        quantity=_first(raw, "quantity", "quantitySold"),
        total_price=_first(raw, "totalPrice"),
        date_of_sale=_first(raw, "dateOfSale") or "",
        timestamp=_text(_first(raw, "timestamp")),
        sell_price_per_unit=_first(raw, "sellpricePerUnit", "sellPricePerUnit"),
        unit=_first(raw, "unit") or "",
        sale_id=_text(_first(raw, "saleId")),
        customer_name=_text(_first(raw, "customerName") or customer.get("name")),
        customer_mobile=_text(_first(raw, "customerMobile") or customer.get("mobile")),
        customer_email=_text(_first(raw, "customerEmail") or customer.get("email")),
        customer_address=_text(_first(raw, "customerAddress") or customer.get("address")),
        warranty_end_date=_text(_first(raw, "warrantyEndDate")),
    )


@dataclass(frozen=True)
class SalesStats:
    """Summary statistics of the sales inside a date window."""

    total_products: Decimal
    total_revenue: Decimal
    unique_product_count: int
    sales_count: int

    @classmethod
    def empty(cls) -> "SalesStats":
        return cls(total_products=ZERO, total_revenue=ZERO, unique_product_count=0, sales_count=0)


@dataclass(frozen=True)
class ProductStat:
    """Per-product rollup of quantity, revenue and the distinct sale dates."""

    product_id: str
    product_name: str
    quantity: Decimal
    total: Decimal
    dates: Tuple[str, ...]


@dataclass(frozen=True)
class SalesSummary:
    total_products: Decimal
    total_revenue: Decimal


@dataclass(frozen=True)
class PeriodReport:
    """Everything a period report shows: header stats plus the detail table."""

    start_date: date
    end_date: date
    stats: SalesStats
    product_stats: List[ProductStat]
    summary: SalesSummary


def date_window(start_date: DateLike, end_date: DateLike) -> Tuple[datetime, datetime]:
    """Return the ``[start, end)`` bounds covering two local calendar days.

    The lower bound is ``start_date`` at midnight. The upper bound is the
    midnight following ``end_date`` and is exclusive, so a sale at
    ``end_date 23:59:59.999`` is inside the window and one a millisecond later
    is not.

    Raises:
        ValueError: If the dates cannot be parsed or ``start_date`` falls after
            ``end_date``.
    """

    start = _coerce_date(start_date)
    end = _coerce_date(end_date)
    if start > end:
        raise ValueError(f"Start date {start.isoformat()} is after end date {end.isoformat()}")
    return datetime.combine(start, time.min), datetime.combine(end + timedelta(days=1), time.min)


def today_window(today: date) -> Tuple[date, date]:
    return today, today


def month_to_date_window(today: date) -> Tuple[date, date]:
    return today.replace(day=1), today


def filter_by_window(records: Iterable[SaleRecord], start_date: DateLike, end_date: DateLike) -> List[SaleRecord]:
    """Keep the records whose effective date falls inside the window.

    Records without a usable effective date cannot be placed in any window and
    are left out.
    """

    lower, upper = date_window(start_date, end_date)
    return [
        record
        for record in records
        if record.effective_at is not None and lower <= record.effective_at < upper
    ]


def _reduce_stats(records: Iterable[SaleRecord]) -> SalesStats:
    total_products = ZERO
    total_revenue = ZERO
    products = set()
    count = 0
    for record in records:
        total_products += record.quantity
        total_revenue += record.total_price
        products.add(record.group_key)
        count += 1
    return SalesStats(
        total_products=total_products,
        total_revenue=total_revenue,
        unique_product_count=len(products),
        sales_count=count,
    )


def calculate_stats(records: Iterable[SaleRecord], start_date: DateLike, end_date: DateLike) -> SalesStats:
    """Compute unit count, revenue, distinct products and sale count for a window.

    Args:
        records (Iterable[SaleRecord]): Sales to consider, in any order.
        start_date (date | datetime | str): First calendar day of the window.
        end_date (date | datetime | str): Last calendar day of the window,
            included in full.

    Returns:
        SalesStats: All zeros when no record falls inside the window.
    """

    stats = _reduce_stats(filter_by_window(records, start_date, end_date))
    log.debug(
        "Calculated stats for %s..%s: %d sales, revenue=%s",
        start_date,
        end_date,
        stats.sales_count,
        stats.total_revenue,
    )
    return stats


def build_product_stats(records: Iterable[SaleRecord]) -> List[ProductStat]:
    """Group sales per product and sort the groups by quantity, largest first.

    Records are grouped by ``product_id`` (``product_name`` when the identifier
    is blank). Each group keeps the name of its first record and the distinct
    display dates in the order they were first encountered, so callers wanting
    chronological dates must pre-sort their input. Groups with equal quantities
    keep their first-seen order.
    """

    groups: Dict[str, Dict[str, Any]] = {}
    for record in records:
        key = record.group_key
        group = groups.get(key)
        if group is None:
            group = {
                "product_id": record.product_id,
                "product_name": record.product_name,
                "quantity": ZERO,
                "total": ZERO,
                "dates": [],
            }
            groups[key] = group
        group["quantity"] += record.quantity
        group["total"] += record.total_price
        if record.effective_at is not None:
            label = format_display_date(record.effective_at)
            if label not in group["dates"]:
                group["dates"].append(label)

    stats = [
        ProductStat(
            product_id=group["product_id"],
            product_name=group["product_name"],
            quantity=group["quantity"],
            total=group["total"],
            dates=tuple(group["dates"]),
        )
        for group in groups.values()
    ]
    stats.sort(key=lambda stat: stat.quantity, reverse=True)
    return stats


def summary_of(product_stats: Iterable[ProductStat]) -> SalesSummary:
    """Re-reduce grouped output so report headers match the detail table."""

    total_products = ZERO
    total_revenue = ZERO
    for stat in product_stats:
        total_products += stat.quantity
        total_revenue += stat.total
    return SalesSummary(total_products=total_products, total_revenue=total_revenue)


def average_sale_value(stats: SalesStats) -> Decimal:
    """Revenue per sale, or zero when there were no sales."""

    if stats.sales_count == 0:
        return ZERO
    return stats.total_revenue / Decimal(stats.sales_count)


def build_period_report(records: Iterable[SaleRecord], start_date: DateLike, end_date: DateLike) -> PeriodReport:
    """Filter once and derive the stats, product table and summary for a window."""

    window = filter_by_window(records, start_date, end_date)
    product_stats = build_product_stats(window)
    return PeriodReport(
        start_date=_coerce_date(start_date),
        end_date=_coerce_date(end_date),
        stats=_reduce_stats(window),
        product_stats=product_stats,
        summary=summary_of(product_stats),
    )


def report_to_dict(report: PeriodReport, *, title: str, generated_at: datetime) -> Dict[str, Any]:
    """Serialize a report into JSON-friendly primitives.

    Decimal amounts are written as strings to keep their exact value.
    """

    return {
        "title": title,
        "generatedAt": generated_at.isoformat(),
        "dateRange": {
            "startDate": report.start_date.isoformat(),
            "endDate": report.end_date.isoformat(),
        },
        "stats": {
            "totalProducts": str(report.stats.total_products),
            "totalRevenue": str(report.stats.total_revenue),
            "uniqueProductCount": report.stats.unique_product_count,
            "salesCount": report.stats.sales_count,
        },
        "summary": {
            "totalProducts": str(report.summary.total_products),
            "totalRevenue": str(report.summary.total_revenue),
        },
        "productStats": [
            {
                "productId": stat.product_id,
                "productName": stat.product_name,
                "quantity": str(stat.quantity),
                "total": str(stat.total),
                "dates": list(stat.dates),
            }
            for stat in report.product_stats
        ],
    }


# ---------------------------------------------------------------------------
# Profit
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProfitItem:
    """Profit made on one sale, using the product's current buy price."""

    sale_id: Optional[str]
    product_id: str
    product_name: str
    customer_name: str
    customer_mobile: str
    sold_price: Decimal
    purchase_price: Decimal
    profit: Decimal
    quantity: Decimal
    total_profit: Decimal
    sale_date: Optional[datetime]


def build_profit_items(records: Iterable[SaleRecord], buy_prices: Mapping[str, Decimal]) -> List[ProfitItem]:
    """Compute per-sale profit, newest sale first.

    Products missing from ``buy_prices`` count with a purchase price of zero.
    Sales without an effective date are listed last.
    """

    items = []
    for record in records:
        purchase_price = buy_prices.get(record.product_id, ZERO)
        profit = record.sell_price_per_unit - purchase_price
        items.append(
            ProfitItem(
                sale_id=record.sale_id,
                product_id=record.product_id,
                product_name=record.product_name,
                customer_name=record.customer_name or "N/A",
                customer_mobile=record.customer_mobile or "N/A",
                sold_price=record.sell_price_per_unit,
                purchase_price=purchase_price,
                profit=profit,
                quantity=record.quantity,
                total_profit=profit * record.quantity,
                sale_date=record.effective_at,
            )
        )
    items.sort(key=lambda item: (item.sale_date is not None, item.sale_date or datetime.min), reverse=True)
    return items


def total_profit(items: Sequence[ProfitItem]) -> Decimal:
    return sum((item.total_profit for item in items), ZERO)


# ---------------------------------------------------------------------------
# Warranty
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WarrantyInfo:
    status: WarrantyStatus
    days_remaining: int


def add_years(start: date, years: int) -> date:
    """Shift ``start`` by whole years, mapping 29 February to 28 February."""

    try:
        return start.replace(year=start.year + years)
    except ValueError:
        return start.replace(year=start.year + years, day=28)


def warranty_status(warranty_end_date: Any, today: date) -> WarrantyInfo:
    """Classify a warranty as active, expired or unknown.

    The end date itself is still covered. ``days_remaining`` is zero unless the
    warranty is active.
    """

    end = _parse_moment(warranty_end_date)
    if end is None:
        return WarrantyInfo(status=WarrantyStatus.UNKNOWN, days_remaining=0)
    remaining = (end.date() - today).days
    if remaining < 0:
        return WarrantyInfo(status=WarrantyStatus.EXPIRED, days_remaining=0)
    return WarrantyInfo(status=WarrantyStatus.ACTIVE, days_remaining=remaining)


__all__ = [
    "SaleRecord",
    "SalesStats",
    "ProductStat",
    "SalesSummary",
    "PeriodReport",
    "ProfitItem",
    "WarrantyInfo",
    "effective_datetime",
    "sale_record_from_mapping",
    "format_display_date",
    "date_window",
    "today_window",
    "month_to_date_window",
    "filter_by_window",
    "calculate_stats",
    "build_product_stats",
    "summary_of",
    "average_sale_value",
    "build_period_report",
    "report_to_dict",
    "build_profit_items",
    "total_profit",
    "add_years",
    "warranty_status",
]
