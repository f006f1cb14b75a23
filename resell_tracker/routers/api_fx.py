from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from ..schemas.fx import FxRatesOut
from ..services.fx import ATTRIBUTION_HTML, FxRateCache, UnsupportedBase, get_fx_cache

router = APIRouter(prefix="/api/fx", tags=["fx"])


@router.get("", response_model=FxRatesOut)
async def api_rates(base: str = Query(default="USD"), cache: FxRateCache = Depends(get_fx_cache)):
    try:
        lookup = await cache.get_rates(base)
    except UnsupportedBase as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    # ProviderError falls through to the 502 handler.
    return FxRatesOut(
        ok=True,
        base=lookup.snapshot.base,
        rates=lookup.rates,
        cached=lookup.cached,
        fetched_at=lookup.snapshot.fetched_at_datetime,
        next_update_utc=lookup.snapshot.next_update_utc,
        attribution_html=ATTRIBUTION_HTML,
    )
