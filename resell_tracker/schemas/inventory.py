from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import Field, field_validator

from ..core.choices import CURRENCIES, LISTING_STATUSES, PLATFORMS
from ..services.financials import derive_item
from .base import ApiModel


def _upper_in(value: Optional[str], allowed, label: str) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip().upper()
    if cleaned not in allowed:
        raise ValueError(f"unknown {label} {value!r}")
    return cleaned


class ListingIn(ApiModel):
    platform: str = "OTHER"
    url: str = ""
    price_pence: Optional[int] = Field(default=None, ge=0)

    @field_validator("platform")
    @classmethod
    def check_platform(cls, value: str) -> str:
        return _upper_in(value, PLATFORMS, "platform")


class ItemMetaIn(ApiModel):
    currency: Optional[str] = None
    status: Optional[str] = None
    category: Optional[str] = None
    condition: Optional[str] = None
    purchase_total_pence: Optional[int] = Field(default=None, ge=0)
    estimated_sale_pence: Optional[int] = Field(default=None, ge=0)
    listings: Optional[list[ListingIn]] = None

    @field_validator("currency")
    @classmethod
    def check_currency(cls, value: Optional[str]) -> Optional[str]:
        return _upper_in(value, CURRENCIES, "currency")

    @field_validator("status")
    @classmethod
    def check_status(cls, value: Optional[str]) -> Optional[str]:
        return _upper_in(value, LISTING_STATUSES, "status")

    def as_meta(self) -> dict[str, Any]:
        """Only the fields the caller sent, keyed the way the notes envelope stores them."""

        return self.model_dump(by_alias=True, exclude_unset=True)


class ItemCreate(ApiModel):
    name: str = Field(min_length=1)
    sku: Optional[str] = None
    quantity: int = Field(default=0, ge=0)
    cost_pence: int = Field(default=0, ge=0)
    notes: Optional[str] = None
    plain_notes: Optional[str] = None
    meta: Optional[ItemMetaIn] = None

    def to_payload(self) -> dict[str, Any]:
        data = self.model_dump(exclude_unset=True, exclude={"meta"})
        if self.meta is not None:
            data["meta"] = self.meta.as_meta()
        return data


class ItemUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1)
    sku: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    cost_pence: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None
    plain_notes: Optional[str] = None
    meta: Optional[ItemMetaIn] = None

    def to_payload(self) -> dict[str, Any]:
        data = self.model_dump(exclude_unset=True, exclude={"meta"})
        if "quantity" in data and data["quantity"] is None:
            data.pop("quantity")
        if "cost_pence" in data and data["cost_pence"] is None:
            data.pop("cost_pence")
        if "name" in data and data["name"] is None:
            data.pop("name")
        if self.meta is not None:
            data["meta"] = self.meta.as_meta()
        return data


class ItemFinancialsOut(ApiModel):
    currency: str
    status: str
    purchase_total_per_unit: int
    purchase_total: int
    sale_price_per_unit: Optional[int] = None
    sale_total: Optional[int] = None
    profit_per_unit: Optional[int] = None
    profit_total: Optional[int] = None


class ItemOut(ApiModel):
    id: str
    name: str
    sku: Optional[str] = None
    quantity: int
    cost_pence: int
    notes: Optional[str] = None
    plain_notes: str = ""
    meta: dict[str, Any] = Field(default_factory=dict)
    financials: ItemFinancialsOut
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_item(cls, item) -> "ItemOut":
        derived = derive_item(item)
        return cls(
            id=item.id,
            name=item.name,
            sku=item.sku,
            quantity=item.quantity,
            cost_pence=item.cost_pence or 0,
            notes=item.notes,
            plain_notes=derived.plain_notes,
            meta=derived.meta,
            financials=ItemFinancialsOut(
                currency=derived.currency,
                status=derived.status,
                purchase_total_per_unit=derived.purchase_total_per_unit,
                purchase_total=derived.purchase_total,
                sale_price_per_unit=derived.sale_price_per_unit,
                sale_total=derived.sale_total,
                profit_per_unit=derived.profit_per_unit,
                profit_total=derived.profit_total,
            ),
            created_at=item.created_at,
            updated_at=item.updated_at,
        )


class IdList(ApiModel):
    ids: list[str] = Field(min_length=1)


class DeletedCount(ApiModel):
    deleted: int
