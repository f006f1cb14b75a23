from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.security import Identity
from ..deps.auth import require_identity
from ..schemas.listing_import import ImportedListingOut, ListingImportOut
from ..services.listing_import import ListingImporter, ListingImportRejected, get_listing_importer

router = APIRouter(prefix="/api/listing-import", tags=["listing-import"])


@router.get("", response_model=ListingImportOut)
async def api_import_listing(
    url: Optional[str] = Query(default=None),
    identity: Identity = Depends(require_identity),
    importer: ListingImporter = Depends(get_listing_importer),
):
    try:
        listing = await importer.import_listing(url)
    except ListingImportRejected as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    # ProviderError falls through to the 502 handler.
    return ListingImportOut(ok=True, data=ImportedListingOut.model_validate(listing))
