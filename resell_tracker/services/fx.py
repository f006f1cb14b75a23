"""Process-wide cache of the daily USD exchange-rate table.

The open rate endpoint only refreshes once a day, so a snapshot is served for
``FX_CACHE_TTL_HOURS`` before anyone asks upstream again. There is no lock:
two requests that miss at the same time both fetch and the later write wins,
which is harmless because both wrote the same table.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from ..core.config import settings
from ..core.errors import ProviderError

logger = logging.getLogger(__name__)

SUPPORTED_BASE = "USD"
ATTRIBUTION_HTML = '<a href="https://www.exchangerate-api.com">Rates By Exchange Rate API</a>'


class UnsupportedBase(ValueError):
    """Only USD-based tables are fetched; cross rates are derived locally."""


@dataclass(frozen=True)
class RateSnapshot:
    fetched_at: float
    rates: dict[str, float] = field(default_factory=dict)
    base: str = SUPPORTED_BASE
    next_update_utc: str | None = None

    @property
    def fetched_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.fetched_at, tz=timezone.utc)


@dataclass(frozen=True)
class RateLookup:
    snapshot: RateSnapshot
    cached: bool

    @property
    def rates(self) -> dict[str, float]:
        return self.snapshot.rates


def _clean_rates(raw: dict[str, Any]) -> dict[str, float]:
    cleaned: dict[str, float] = {}
    for code, value in raw.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if not math.isfinite(value) or value <= 0:
            continue
        cleaned[str(code).upper()] = float(value)
    return cleaned


class FxRateCache:
    def __init__(
        self,
        *,
        url: str,
        ttl_seconds: float,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.url = url
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self._transport = transport
        self._clock = clock
        self._snapshot: RateSnapshot | None = None

    @classmethod
    def from_settings(cls) -> "FxRateCache":
        return cls(
            url=settings.FX_PROVIDER_URL,
            ttl_seconds=settings.FX_CACHE_TTL_HOURS * 3600,
            timeout=settings.FX_TIMEOUT_SECONDS,
        )

    @property
    def snapshot(self) -> RateSnapshot | None:
        return self._snapshot

    def is_fresh(self, snapshot: RateSnapshot | None, now: float) -> bool:
        return snapshot is not None and now - snapshot.fetched_at < self.ttl_seconds

    async def get_rates(self, base: str | None = SUPPORTED_BASE) -> RateLookup:
        requested = (base or SUPPORTED_BASE).strip().upper()
        if requested != SUPPORTED_BASE:
            raise UnsupportedBase(f"Only base={SUPPORTED_BASE} supported")

        snapshot = self._snapshot
        now = self._clock()
        if self.is_fresh(snapshot, now):
            return RateLookup(snapshot=snapshot, cached=True)  # type: ignore[arg-type]

        logger.info("fx cache miss, fetching %s", self.url)
        fresh = await self._fetch(now)
        # A failed fetch raises above, so the previous snapshot is never cleared.
        self._snapshot = fresh
        return RateLookup(snapshot=fresh, cached=False)

    async def _fetch(self, now: float) -> RateSnapshot:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.url, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            logger.warning("fx fetch failed: %s", exc)
            raise ProviderError("FX fetch failed", details={"message": str(exc)}) from exc

        try:
            data = response.json()
        except ValueError:
            data = None

        rates = data.get("rates") if isinstance(data, dict) else None
        if response.is_error or not isinstance(data, dict) or data.get("result") != "success" or not isinstance(rates, dict):
            logger.warning("fx provider error status=%s", response.status_code)
            raise ProviderError("FX provider error", details=data if isinstance(data, dict) else None)

        cleaned = _clean_rates(rates)
        next_update = data.get("time_next_update_utc")
        if not cleaned:
            raise ProviderError("FX provider error", details={"message": "empty rate table"})
        return RateSnapshot(
            fetched_at=now,
            rates=cleaned,
            next_update_utc=next_update if isinstance(next_update, str) else None,
        )


fx_cache = FxRateCache.from_settings()


def get_fx_cache() -> FxRateCache:
    """FastAPI dependency returning the process-wide cache."""

    return fx_cache
