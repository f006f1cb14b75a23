"""The subscription-gated area: access summary and the dashboard."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..core.choices import CURRENCIES, normalize_currency
from ..core.clock import utcnow
from ..core.errors import ProviderError
from ..core.money import format_minor
from ..core.security import Identity
from ..crud.inventory import list_items
from ..crud.sales import list_sales
from ..db.session import get_db
from ..deps.access import require_program_access
from ..deps.auth import require_identity
from ..schemas.billing import SubscriptionStatusOut
from ..schemas.program import (
    BannerOut,
    DashboardOut,
    InventoryStatsOut,
    ProgramAccessOut,
    SalesStatsOut,
)
from ..services.financials import range_bounds, summarize_inventory, summarize_sales
from ..services.fx import FxRateCache, get_fx_cache
from ..services.subscriptions import AccessDecision, status_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/program", tags=["program"])

RANGES = ("today", "week", "month", "year")


def _banners(decision: AccessDecision) -> list[BannerOut]:
    return [
        BannerOut(kind=banner.kind, message=banner.message, days_remaining=banner.days_remaining)
        for banner in decision.banners
    ]


@router.get("", response_model=ProgramAccessOut)
def program_home(
    identity: Identity = Depends(require_identity),
    decision: AccessDecision = Depends(require_program_access),
    db: Session = Depends(get_db),
):
    return ProgramAccessOut(
        owner_id=identity.id,
        subscription=SubscriptionStatusOut(**status_summary(db, identity.id)),
        banners=_banners(decision),
    )


@router.get("/dashboard", response_model=DashboardOut)
async def program_dashboard(
    currency: str = Query(default="GBP"),
    range_name: str = Query(default="year", alias="range"),
    identity: Identity = Depends(require_identity),
    decision: AccessDecision = Depends(require_program_access),
    db: Session = Depends(get_db),
    fx: FxRateCache = Depends(get_fx_cache),
):
    display = normalize_currency(currency)
    if display not in CURRENCIES:
        raise HTTPException(status_code=400, detail=f"currency: unsupported currency {currency!r}")
    range_key = (range_name or "year").strip().lower()
    if range_key not in RANGES:
        raise HTTPException(status_code=400, detail=f"range: must be one of {', '.join(RANGES)}")

    fx_error = None
    rates = None
    fetched_at = None
    try:
        lookup = await fx.get_rates()
        rates = lookup.rates
        fetched_at = lookup.snapshot.fetched_at_datetime
    except ProviderError as exc:
        # Keep rendering with whatever table we last had.
        fx_error = exc.message
        stale = fx.snapshot
        if stale is not None:
            rates = stale.rates
            fetched_at = stale.fetched_at_datetime
        logger.warning("dashboard rendering without fresh rates: %s", exc.message)

    items = await run_in_threadpool(list_items, db, identity.id, 10000)
    sales = await run_in_threadpool(list_sales, db, identity.id, limit=100000)
    start, end = range_bounds(range_key, utcnow())
    inventory = summarize_inventory(items, display, rates)
    sales_summary = summarize_sales(sales, display, rates, start=start, end=end)

    return DashboardOut(
        currency=display,
        inventory=InventoryStatsOut(
            inventory_value=inventory.inventory_value,
            inventory_value_display=format_minor(display, inventory.inventory_value),
            potential_profit=inventory.potential_profit,
            potential_profit_display=format_minor(display, inventory.potential_profit),
            total_units=inventory.total_units,
            listed_count=inventory.listed_count,
            unlisted_count=inventory.unlisted_count,
        ),
        sales=SalesStatsOut(
            range=range_key,
            start=start,
            end=end,
            revenue=sales_summary.revenue,
            revenue_display=format_minor(display, sales_summary.revenue),
            profit=sales_summary.profit,
            profit_display=format_minor(display, sales_summary.profit),
            sale_count=sales_summary.sale_count,
            units=sales_summary.units,
            margin_pct=sales_summary.margin_pct,
            profit_by_platform=sales_summary.profit_by_platform,
            recent=sales_summary.recent,
        ),
        fx_ok=inventory.fx_ok and sales_summary.fx_ok,
        fx_error=fx_error,
        rates_fetched_at=fetched_at,
        banners=_banners(decision),
    )
