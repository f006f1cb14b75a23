"""Inventory items owned by a reseller.

Structured metadata (status, listings, pricing) lives inside ``notes`` as a
versioned JSON envelope; see ``services.item_meta``.
"""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text

from ..core.clock import utcnow
from ..db.session import Base


def new_id() -> str:
    return uuid4().hex


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(String(32), primary_key=True, default=new_id)
    owner_id = Column(String(255), nullable=False, index=True)
    name = Column(Text, nullable=False)
    sku = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    # Legacy per-unit cost; superseded by ``purchaseTotalPence`` in the envelope.
    cost_pence = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
