"""Owner-scoped sales persistence.

``create_sale`` writes the sale and, optionally, the matching inventory change
in one transaction so a failure cannot leave history and stock out of step.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import delete, desc, select
from sqlalchemy.orm import Session
from starlette import status

from ..core.choices import CURRENCIES, PLATFORMS, STATUS_LISTED, STATUS_SOLD, normalize_currency
from ..core.clock import parse_iso, utcnow
from ..core.errors import SaleRejected
from ..core.money import as_minor, round_half_away
from ..models.inventory import InventoryItem
from ..models.sale import Sale
from ..services import item_meta
from ..services.financials import derive_item, derive_sale

INVENTORY_ACTIONS = ("none", "decrement", "delete")


def list_sales(
    db: Session,
    owner_id: str,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 1000,
    offset: int = 0,
) -> list[Sale]:
    stmt = select(Sale).where(Sale.owner_id == owner_id)
    if start is not None:
        stmt = stmt.where(Sale.sold_at >= start)
    if end is not None:
        stmt = stmt.where(Sale.sold_at <= end)
    stmt = stmt.order_by(desc(Sale.sold_at), desc(Sale.created_at)).limit(limit).offset(offset)
    return list(db.execute(stmt).scalars())


def get_sale(db: Session, owner_id: str, sale_id: str) -> Sale | None:
    stmt = select(Sale).where(Sale.id == sale_id, Sale.owner_id == owner_id)
    return db.execute(stmt).scalar_one_or_none()


def _validated_quantity(payload: dict[str, Any]) -> int:
    raw = payload.get("quantity_sold")
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 1:
        raise SaleRejected("quantity_sold: must be an integer of at least 1")
    return raw


def _validated_price(payload: dict[str, Any]) -> int:
    raw = payload.get("sale_price_per_unit_pence")
    if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
        raise SaleRejected("sale_price_per_unit_pence: must be a positive integer")
    return raw


def _optional_pence(payload: dict[str, Any], key: str) -> int | None:
    raw = payload.get(key)
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        raise SaleRejected(f"{key}: must be a non-negative integer")
    return raw


def _apply_inventory_action(db: Session, item: InventoryItem, action: str, quantity_sold: int, price: int, platform: str) -> None:
    if action == "delete":
        db.delete(item)
        return
    if action != "decrement":
        return

    remaining = max(0, as_minor(item.quantity) - quantity_sold)
    decoded = item_meta.decode(item.notes)
    meta = item_meta.normalize(decoded.meta)
    if remaining == 0:
        meta["status"] = STATUS_SOLD
        listings = meta["listings"]
        if listings:
            listings[0]["pricePence"] = price
        else:
            listings.append({"platform": platform, "url": "", "pricePence": price})
    else:
        meta["status"] = STATUS_LISTED
    item.quantity = remaining
    item.notes = item_meta.encode(decoded.notes, meta)


def create_sale(db: Session, owner_id: str, payload: dict[str, Any], inventory_action: str = "none") -> Sale:
    """Validate and record a sale against one of the owner's items."""

    if inventory_action not in INVENTORY_ACTIONS:
        raise SaleRejected(f"inventory_action: must be one of {', '.join(INVENTORY_ACTIONS)}")
    quantity_sold = _validated_quantity(payload)
    price = _validated_price(payload)
    fees = _optional_pence(payload, "fees_pence") or 0
    net_supplied = _optional_pence(payload, "net_pence")
    cost_per_unit = _optional_pence(payload, "cost_per_unit_pence")
    cost_total = _optional_pence(payload, "cost_total_pence")

    platform = str(payload.get("platform") or "").strip().upper()
    if platform not in PLATFORMS:
        raise SaleRejected("platform: unknown platform")

    item_id = payload.get("item_id")
    item = db.get(InventoryItem, item_id) if item_id else None
    if item is None or item.owner_id != owner_id:
        raise SaleRejected("Item not found", status_code=status.HTTP_404_NOT_FOUND)

    available = as_minor(item.quantity)
    if available <= 0:
        raise SaleRejected("Item has no stock left to sell")
    if available < quantity_sold:
        raise SaleRejected(f"quantity_sold: only {available} available")

    derived = derive_item(item)
    currency = normalize_currency(payload.get("currency") or derived.currency)
    if currency not in CURRENCIES:
        raise SaleRejected("currency: unsupported currency")
    if cost_per_unit is None:
        if currency == derived.currency:
            cost_per_unit = derived.purchase_total_per_unit
        elif cost_total is not None:
            cost_per_unit = round_half_away(cost_total / quantity_sold)
        else:
            # The item's cost is in its own currency; no rates are at hand here.
            raise SaleRejected(
                f"cost_per_unit_pence: required when selling in {currency} an item costed in {derived.currency}"
            )
    if cost_total is None:
        cost_total = cost_per_unit * quantity_sold

    sold_at = parse_iso(payload.get("sold_at")) or utcnow()
    sale = Sale(
        owner_id=owner_id,
        item_id=item.id,
        item_name=str(payload.get("item_name") or item.name),
        sku=payload.get("sku") or item.sku,
        platform=platform,
        currency=currency,
        sold_at=sold_at,
        quantity_sold=quantity_sold,
        sale_price_per_unit_pence=price,
        fees_pence=fees,
        net_pence=net_supplied,
        cost_per_unit_pence=cost_per_unit,
        cost_total_pence=cost_total,
        notes=(payload.get("notes") or None),
    )
    sale.net_pence = derive_sale(sale).net

    try:
        db.add(sale)
        _apply_inventory_action(db, item, inventory_action, quantity_sold, price, platform)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(sale)
    return sale


def update_sale_notes(db: Session, sale: Sale, notes: str | None) -> Sale:
    sale.notes = (notes or "").strip() or None
    db.commit()
    db.refresh(sale)
    return sale


def delete_sale(db: Session, sale: Sale) -> None:
    db.delete(sale)
    db.commit()


def delete_sales(
    db: Session,
    owner_id: str,
    *,
    ids: Iterable[str] | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> int:
    """Bulk delete by id set and/or inclusive ``sold_at`` range.

    With both filters a sale must match both. At least one filter is required.
    """

    wanted = [sale_id for sale_id in (ids or []) if sale_id]
    if not wanted and start is None and end is None:
        raise ValueError("Provide ids or a date range")
    stmt = delete(Sale).where(Sale.owner_id == owner_id)
    if wanted:
        stmt = stmt.where(Sale.id.in_(wanted))
    if start is not None:
        stmt = stmt.where(Sale.sold_at >= start)
    if end is not None:
        stmt = stmt.where(Sale.sold_at <= end)
    result = db.execute(stmt)
    db.commit()
    return int(result.rowcount or 0)
