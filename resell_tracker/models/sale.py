from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, String, Text

from ..core.clock import utcnow
from ..db.session import Base
from .inventory import new_id


class Sale(Base):
    """A completed sale.

    ``item_name`` and ``sku`` are captured at sale time so history survives
    deletion of the originating item (``item_id`` may dangle).
    """

    __tablename__ = "sales"

    id = Column(String(32), primary_key=True, default=new_id)
    owner_id = Column(String(255), nullable=False, index=True)
    item_id = Column(String(32), nullable=True, index=True)
    item_name = Column(Text, nullable=False, default="")
    sku = Column(Text, nullable=True)
    platform = Column(String(32), nullable=False, default="OTHER")
    currency = Column(String(3), nullable=False, default="GBP")
    sold_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    quantity_sold = Column(Integer, nullable=False)
    sale_price_per_unit_pence = Column(Integer, nullable=False)
    fees_pence = Column(Integer, nullable=False, default=0)
    net_pence = Column(Integer, nullable=True)
    cost_per_unit_pence = Column(Integer, nullable=True)
    cost_total_pence = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
