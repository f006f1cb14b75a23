import asyncio
import os
import sys
from pathlib import Path

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from resell_tracker.core.errors import ProviderError
from resell_tracker.services.fx import FxRateCache, UnsupportedBase

URL = "https://rates.example/v6/latest/USD"
GOOD = {
    "result": "success",
    "base_code": "USD",
    "time_next_update_utc": "Fri, 17 May 2024 00:02:31 +0000",
    "rates": {"USD": 1, "GBP": 0.79, "EUR": 0.92, "BAD": "x"},
}


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class Upstream:
    """Serves queued responses and counts calls."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        # Fresh object per call; a Response is single-use once a client has read it.
        return httpx.Response(response.status_code, content=response.content, headers=response.headers)


def _cache(upstream, clock):
    return FxRateCache(url=URL, ttl_seconds=12 * 3600, transport=httpx.MockTransport(upstream), clock=clock)


def test_second_call_within_window_is_served_from_cache():
    upstream = Upstream(httpx.Response(200, json=GOOD))
    clock = FakeClock()
    cache = _cache(upstream, clock)

    first = asyncio.run(cache.get_rates())
    clock.now += 11 * 3600
    second = asyncio.run(cache.get_rates())

    assert first.cached is False
    assert second.cached is True
    assert second.snapshot.fetched_at == first.snapshot.fetched_at
    assert second.rates == first.rates
    assert upstream.calls == 1


def test_expired_snapshot_is_refetched():
    upstream = Upstream(httpx.Response(200, json=GOOD))
    clock = FakeClock()
    cache = _cache(upstream, clock)

    asyncio.run(cache.get_rates())
    clock.now += 12 * 3600 + 1
    again = asyncio.run(cache.get_rates())

    assert again.cached is False
    assert again.snapshot.fetched_at == clock.now
    assert upstream.calls == 2


def test_rates_are_cleaned_and_metadata_kept():
    cache = _cache(Upstream(httpx.Response(200, json=GOOD)), FakeClock())
    lookup = asyncio.run(cache.get_rates("usd"))
    assert lookup.rates == {"USD": 1.0, "GBP": 0.79, "EUR": 0.92}
    assert lookup.snapshot.base == "USD"
    assert lookup.snapshot.next_update_utc == GOOD["time_next_update_utc"]


def test_only_usd_base_is_supported():
    upstream = Upstream(httpx.Response(200, json=GOOD))
    cache = _cache(upstream, FakeClock())
    with pytest.raises(UnsupportedBase):
        asyncio.run(cache.get_rates("EUR"))
    assert upstream.calls == 0


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"result": "error"}),
        httpx.Response(200, json={"result": "error", "error-type": "invalid-key"}),
        httpx.Response(200, json={"result": "success"}),
        httpx.Response(200, text="<html>maintenance</html>"),
        httpx.Response(200, json={"result": "success", "rates": {}}),
    ],
)
def test_bad_upstream_answers_are_provider_errors(response):
    cache = _cache(Upstream(response), FakeClock())
    with pytest.raises(ProviderError):
        asyncio.run(cache.get_rates())
    assert cache.snapshot is None


def test_failed_refresh_keeps_previous_snapshot():
    upstream = Upstream(
        httpx.Response(200, json=GOOD),
        httpx.ConnectError("upstream down"),
    )
    clock = FakeClock()
    cache = _cache(upstream, clock)

    first = asyncio.run(cache.get_rates())
    clock.now += 13 * 3600
    with pytest.raises(ProviderError):
        asyncio.run(cache.get_rates())

    assert cache.snapshot is first.snapshot
    assert cache.snapshot.rates["GBP"] == 0.79


def test_non_string_next_update_is_dropped():
    body = dict(GOOD, time_next_update_utc=1715904151)
    cache = _cache(Upstream(httpx.Response(200, json=body)), FakeClock())
    lookup = asyncio.run(cache.get_rates())
    assert lookup.snapshot.next_update_utc is None
    assert lookup.rates["GBP"] == 0.79
