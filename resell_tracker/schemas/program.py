from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from .base import ApiModel
from .billing import SubscriptionStatusOut


class BannerOut(ApiModel):
    kind: str
    message: str
    days_remaining: Optional[int] = None


class ProgramAccessOut(ApiModel):
    owner_id: str
    subscription: SubscriptionStatusOut
    banners: list[BannerOut] = Field(default_factory=list)


class InventoryStatsOut(ApiModel):
    inventory_value: int
    inventory_value_display: str
    potential_profit: int
    potential_profit_display: str
    total_units: int
    listed_count: int
    unlisted_count: int


class PlatformProfitOut(ApiModel):
    platform: str
    profit: int
    profit_display: str


class RecentSaleOut(ApiModel):
    id: Optional[str] = None
    item_name: str
    platform: str
    sold_at: Optional[datetime] = None
    net: int
    profit: int
    net_display: str
    profit_display: str


class SalesStatsOut(ApiModel):
    range: str
    start: datetime
    end: datetime
    revenue: int
    revenue_display: str
    profit: int
    profit_display: str
    sale_count: int
    units: int
    margin_pct: float
    profit_by_platform: list[PlatformProfitOut] = Field(default_factory=list)
    recent: list[RecentSaleOut] = Field(default_factory=list)


class DashboardOut(ApiModel):
    currency: str
    inventory: InventoryStatsOut
    sales: SalesStatsOut
    fx_ok: bool
    fx_error: Optional[str] = None
    rates_fetched_at: Optional[datetime] = None
    banners: list[BannerOut] = Field(default_factory=list)
