from __future__ import annotations

from datetime import datetime
from typing import Optional

from .base import ApiModel


class FxRatesOut(ApiModel):
    ok: bool = True
    base: str
    rates: dict[str, float]
    cached: bool
    fetched_at: datetime
    next_update_utc: Optional[str] = None
    attribution_html: str
