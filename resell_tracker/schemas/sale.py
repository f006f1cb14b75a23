from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import Field, field_validator, model_validator

from ..core.choices import CURRENCIES, PLATFORMS
from ..core.clock import to_naive_utc
from ..services.financials import derive_sale
from .base import ApiModel


class SaleCreate(ApiModel):
    item_id: str = Field(min_length=1)
    quantity_sold: int = Field(ge=1)
    sale_price_per_unit_pence: int = Field(gt=0)
    fees_pence: int = Field(default=0, ge=0)
    net_pence: Optional[int] = Field(default=None, ge=0)
    cost_per_unit_pence: Optional[int] = Field(default=None, ge=0)
    cost_total_pence: Optional[int] = Field(default=None, ge=0)
    platform: str
    currency: Optional[str] = None
    sold_at: Optional[datetime] = None
    item_name: Optional[str] = None
    sku: Optional[str] = None
    notes: Optional[str] = None
    inventory_action: Literal["none", "decrement", "delete"] = "none"

    @field_validator("platform")
    @classmethod
    def check_platform(cls, value: str) -> str:
        cleaned = value.strip().upper()
        if cleaned not in PLATFORMS:
            raise ValueError(f"unknown platform {value!r}")
        return cleaned

    @field_validator("currency")
    @classmethod
    def check_currency(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip().upper()
        if cleaned not in CURRENCIES:
            raise ValueError(f"unknown currency {value!r}")
        return cleaned

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude={"inventory_action"}, exclude_none=True)


class SaleOut(ApiModel):
    id: str
    item_id: Optional[str] = None
    item_name: str
    sku: Optional[str] = None
    platform: str
    currency: str
    sold_at: datetime
    quantity_sold: int
    sale_price_per_unit_pence: int
    fees_pence: int
    net_pence: int
    cost_per_unit_pence: Optional[int] = None
    cost_total_pence: Optional[int] = None
    gross_pence: int
    profit_pence: int
    notes: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_sale(cls, sale) -> "SaleOut":
        derived = derive_sale(sale)
        return cls(
            id=sale.id,
            item_id=sale.item_id,
            item_name=sale.item_name or "",
            sku=sale.sku,
            platform=sale.platform,
            currency=derived.currency,
            sold_at=sale.sold_at,
            quantity_sold=sale.quantity_sold,
            sale_price_per_unit_pence=sale.sale_price_per_unit_pence,
            fees_pence=sale.fees_pence or 0,
            net_pence=derived.net,
            cost_per_unit_pence=sale.cost_per_unit_pence,
            cost_total_pence=sale.cost_total_pence,
            gross_pence=derived.gross,
            profit_pence=derived.profit,
            notes=sale.notes,
            created_at=sale.created_at,
        )


class SaleNotesUpdate(ApiModel):
    notes: Optional[str] = None


class SaleBulkDelete(ApiModel):
    ids: Optional[list[str]] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def as_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return None if value is None else to_naive_utc(value)

    @model_validator(mode="after")
    def require_filter(self) -> "SaleBulkDelete":
        if not self.ids and self.start is None and self.end is None:
            raise ValueError("ids or a date range is required")
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError("start must not be after end")
        return self
