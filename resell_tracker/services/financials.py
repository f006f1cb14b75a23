"""Derived money figures for inventory items and sales.

Nothing in here raises on bad data. Missing or junk quantities and fees count
as 0; a missing sale price stays ``None`` all the way through so "no estimate"
never masquerades as "zero profit".

Aggregates always convert each record into the display currency first and
then add, never the other way round; mixed-currency pence are not summable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping

from ..core.choices import PLATFORM_OTHER, PRICED_BY_LISTING, STATUS_LISTED, STATUS_UNLISTED, normalize_currency
from ..core.clock import parse_iso
from ..core.money import as_minor, convert_minor, format_minor
from . import item_meta

RECENT_SALES_LIMIT = 6


def _get(record: Any, *names: str) -> Any:
    """Read the first present attribute/key among ``names`` (snake or camel case)."""

    for name in names:
        if isinstance(record, Mapping):
            if name in record:
                return record[name]
        elif hasattr(record, name):
            return getattr(record, name)
    return None


def _count(value: Any) -> int:
    return max(0, as_minor(value))


@dataclass
class ItemFinancials:
    currency: str
    status: str
    quantity: int
    purchase_total_per_unit: int
    purchase_total: int
    sale_price_per_unit: int | None
    sale_total: int | None
    profit_per_unit: int | None
    profit_total: int | None
    plain_notes: str = ""
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass
class SaleFinancials:
    currency: str
    quantity: int
    gross: int
    net: int
    cost_total: int
    profit: int


def derive_item(item: Any) -> ItemFinancials:
    decoded = item_meta.decode(_get(item, "notes"))
    meta = item_meta.normalize(decoded.meta)
    quantity = _count(_get(item, "quantity"))

    per_unit = meta["purchaseTotalPence"]
    if per_unit <= 0:
        per_unit = _count(_get(item, "cost_pence", "costPence", "purchaseSubtotalPence"))

    status = meta["status"]
    if status in PRICED_BY_LISTING:
        listings = meta["listings"]
        sale_price = listings[0]["pricePence"] if listings else None
    else:
        sale_price = meta["estimatedSalePence"]

    profit_per_unit = None if sale_price is None else sale_price - per_unit
    return ItemFinancials(
        currency=meta["currency"],
        status=status,
        quantity=quantity,
        purchase_total_per_unit=per_unit,
        purchase_total=per_unit * quantity,
        sale_price_per_unit=sale_price,
        sale_total=None if sale_price is None else sale_price * quantity,
        profit_per_unit=profit_per_unit,
        profit_total=None if profit_per_unit is None else profit_per_unit * quantity,
        plain_notes=decoded.notes,
        meta=meta,
    )


def derive_sale(sale: Any) -> SaleFinancials:
    quantity = _count(_get(sale, "quantity_sold", "quantitySold"))
    price = as_minor(_get(sale, "sale_price_per_unit_pence", "salePricePerUnitPence"))
    fees = _count(_get(sale, "fees_pence", "feesPence"))
    gross = quantity * price

    supplied_net = _get(sale, "net_pence", "netPence")
    net = as_minor(supplied_net) if supplied_net is not None else max(0, gross - fees)

    cost_total_raw = _get(sale, "cost_total_pence", "costTotalPence")
    cost_per_unit_raw = _get(sale, "cost_per_unit_pence", "costPerUnitPence")
    if cost_total_raw is not None:
        cost_total = as_minor(cost_total_raw)
    elif cost_per_unit_raw is not None:
        cost_total = as_minor(cost_per_unit_raw) * quantity
    else:
        cost_total = 0

    return SaleFinancials(
        currency=normalize_currency(_get(sale, "currency")),
        quantity=quantity,
        gross=gross,
        net=net,
        cost_total=cost_total,
        profit=net - cost_total,
    )


def to_display(
    amounts: Mapping[str, int | None],
    native_currency: str,
    display_currency: str,
    rates: Mapping[str, float] | None,
) -> tuple[dict[str, int | None], bool]:
    """Convert every amount in ``amounts``; ``None`` passes through untouched."""

    converted: dict[str, int | None] = {}
    ok = True
    for key, value in amounts.items():
        if value is None:
            converted[key] = None
            continue
        result = convert_minor(value, native_currency, display_currency, rates)
        converted[key] = result.value
        ok = ok and result.ok
    return converted, ok


# ---------- aggregation ----------


@dataclass
class InventorySummary:
    currency: str
    inventory_value: int = 0
    potential_profit: int = 0
    total_units: int = 0
    listed_count: int = 0
    unlisted_count: int = 0
    fx_ok: bool = True


@dataclass
class SalesSummary:
    currency: str
    revenue: int = 0
    profit: int = 0
    sale_count: int = 0
    units: int = 0
    margin_pct: float = 0.0
    profit_by_platform: list[dict[str, Any]] = field(default_factory=list)
    recent: list[dict[str, Any]] = field(default_factory=list)
    fx_ok: bool = True


def summarize_inventory(
    items: Iterable[Any],
    display_currency: str,
    rates: Mapping[str, float] | None,
) -> InventorySummary:
    target = normalize_currency(display_currency)
    summary = InventorySummary(currency=target)
    for item in items:
        derived = derive_item(item)
        if derived.quantity <= 0:
            continue
        value = convert_minor(derived.purchase_total, derived.currency, target, rates)
        summary.inventory_value += value.value
        summary.fx_ok = summary.fx_ok and value.ok
        if derived.profit_total is not None:
            profit = convert_minor(derived.profit_total, derived.currency, target, rates)
            summary.potential_profit += profit.value
            summary.fx_ok = summary.fx_ok and profit.ok
        summary.total_units += derived.quantity
        if derived.status == STATUS_LISTED:
            summary.listed_count += 1
        elif derived.status == STATUS_UNLISTED:
            summary.unlisted_count += 1
    return summary


def _sold_at(sale: Any) -> datetime | None:
    return parse_iso(_get(sale, "sold_at", "soldAt"))


def _in_range(moment: datetime | None, start: datetime | None, end: datetime | None) -> bool:
    if moment is None:
        return False
    if start is not None and moment < start:
        return False
    if end is not None and moment > end:
        return False
    return True


def summarize_sales(
    sales: Iterable[Any],
    display_currency: str,
    rates: Mapping[str, float] | None,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    recent_limit: int = RECENT_SALES_LIMIT,
) -> SalesSummary:
    target = normalize_currency(display_currency)
    summary = SalesSummary(currency=target)
    by_platform: dict[str, int] = {}
    rows: list[tuple[datetime | None, Any, SaleFinancials, int, int]] = []

    for sale in sales:
        derived = derive_sale(sale)
        net = convert_minor(derived.net, derived.currency, target, rates)
        profit = convert_minor(derived.profit, derived.currency, target, rates)
        summary.fx_ok = summary.fx_ok and net.ok and profit.ok
        sold_at = _sold_at(sale)
        rows.append((sold_at, sale, derived, net.value, profit.value))
        if not _in_range(sold_at, start, end):
            continue
        summary.revenue += net.value
        summary.profit += profit.value
        summary.sale_count += 1
        summary.units += derived.quantity
        platform = str(_get(sale, "platform") or PLATFORM_OTHER).upper()
        by_platform[platform] = by_platform.get(platform, 0) + profit.value

    if summary.revenue > 0:
        try:
            summary.margin_pct = round(summary.profit / summary.revenue * 100, 1)
        except OverflowError:
            # Only reachable with absurd stored amounts; the margin stays 0.
            pass
    summary.profit_by_platform = [
        {"platform": platform, "profit": value, "profitDisplay": format_minor(target, value)}
        for platform, value in sorted(by_platform.items(), key=lambda pair: pair[1], reverse=True)
    ]

    rows.sort(key=lambda row: row[0] or datetime.min, reverse=True)
    for sold_at, sale, derived, net_value, profit_value in rows[:recent_limit]:
        summary.recent.append(
            {
                "id": _get(sale, "id"),
                "itemName": _get(sale, "item_name", "itemName") or "",
                "platform": str(_get(sale, "platform") or PLATFORM_OTHER).upper(),
                "soldAt": sold_at,
                "net": net_value,
                "profit": profit_value,
                "netDisplay": format_minor(target, net_value),
                "profitDisplay": format_minor(target, profit_value),
            }
        )
    return summary


def range_bounds(name: str | None, now: datetime) -> tuple[datetime, datetime]:
    """Inclusive bounds for ``today``, ``week`` (Monday start), ``month`` or ``year``."""

    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    day_end = now.replace(hour=23, minute=59, second=59, microsecond=999999)
    key = (name or "").strip().lower()
    if key == "today":
        return day_start, day_end
    if key == "week":
        return day_start - timedelta(days=day_start.weekday()), day_end
    if key == "month":
        return day_start.replace(day=1), day_end
    return day_start.replace(month=1, day=1), day_end
