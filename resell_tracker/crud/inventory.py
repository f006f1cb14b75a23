"""Owner-scoped inventory item persistence."""

from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import delete, desc, select
from sqlalchemy.orm import Session

from ..core.money import as_minor
from ..models.inventory import InventoryItem
from ..services import item_meta


def _clamp_count(value: object) -> int:
    return max(0, as_minor(value))


def _clean_name(value: object) -> str:
    name = str(value or "").strip()
    if not name:
        raise ValueError("name: must not be empty")
    return name


def _clean_sku(value: object) -> str | None:
    sku = str(value or "").strip()
    return sku or None


def _compose_notes(existing: str | None, payload: dict[str, Any]) -> str | None:
    """Return the notes column after applying ``notes`` / ``plain_notes`` / ``meta``.

    A raw ``notes`` string replaces the column. ``meta`` is merged over the
    decoded metadata and the envelope re-encoded; ``plain_notes`` swaps the
    text and keeps the metadata. When raw ``notes`` arrives together with
    either of the structured fields it becomes the base they apply to, so its
    text survives as the plain notes unless ``plain_notes`` overrides it.
    """

    base = payload["notes"] if "notes" in payload else existing
    if "meta" not in payload and "plain_notes" not in payload:
        return base

    current = item_meta.decode(base)
    meta = item_meta.normalize(current.meta) if current.meta else {}
    patch = payload.get("meta")
    if isinstance(patch, dict):
        meta.update(patch)
    plain = payload.get("plain_notes", current.notes)
    return item_meta.encode(plain, item_meta.normalize(meta))


def list_items(db: Session, owner_id: str, limit: int = 500, offset: int = 0) -> list[InventoryItem]:
    stmt = (
        select(InventoryItem)
        .where(InventoryItem.owner_id == owner_id)
        .order_by(desc(InventoryItem.updated_at), desc(InventoryItem.created_at))
        .limit(limit)
        .offset(offset)
    )
    return list(db.execute(stmt).scalars())


def get_item(db: Session, owner_id: str, item_id: str) -> InventoryItem | None:
    stmt = select(InventoryItem).where(InventoryItem.id == item_id, InventoryItem.owner_id == owner_id)
    return db.execute(stmt).scalar_one_or_none()


def create_item(db: Session, owner_id: str, payload: dict[str, Any]) -> InventoryItem:
    item = InventoryItem(
        owner_id=owner_id,
        name=_clean_name(payload.get("name")),
        sku=_clean_sku(payload.get("sku")),
        quantity=_clamp_count(payload.get("quantity", 0)),
        cost_pence=_clamp_count(payload.get("cost_pence", 0)),
        notes=_compose_notes(None, payload),
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


def update_item(db: Session, item: InventoryItem, payload: dict[str, Any]) -> InventoryItem:
    """Apply a partial patch; keys absent from ``payload`` are left alone."""

    if "name" in payload:
        item.name = _clean_name(payload["name"])
    if "sku" in payload:
        item.sku = _clean_sku(payload["sku"])
    if "quantity" in payload:
        item.quantity = _clamp_count(payload["quantity"])
    if "cost_pence" in payload:
        item.cost_pence = _clamp_count(payload["cost_pence"])
    item.notes = _compose_notes(item.notes, payload)
    db.commit()
    db.refresh(item)
    return item


def delete_item(db: Session, item: InventoryItem) -> None:
    db.delete(item)
    db.commit()


def delete_items(db: Session, owner_id: str, ids: Iterable[str]) -> int:
    wanted = [item_id for item_id in ids if item_id]
    if not wanted:
        return 0
    stmt = delete(InventoryItem).where(InventoryItem.owner_id == owner_id, InventoryItem.id.in_(wanted))
    result = db.execute(stmt)
    db.commit()
    return int(result.rowcount or 0)
