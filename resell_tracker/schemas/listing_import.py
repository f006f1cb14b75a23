from __future__ import annotations

from typing import Optional

from .base import ApiModel


class ImportedListingOut(ApiModel):
    title: str
    price_pence: Optional[int] = None
    currency: str
    platform: str
    url: str


class ListingImportOut(ApiModel):
    ok: bool = True
    data: ImportedListingOut
