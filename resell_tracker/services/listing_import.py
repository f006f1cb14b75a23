"""Prefill a listing from a marketplace page.

Only https links on known marketplace domains are fetched, redirects included.
The page is read for a title, a price and a currency, trying in order: eBay's
own markup, JSON-LD ``Product`` offers, OpenGraph / product meta tags and
finally the bare page title.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Any, Iterable, Iterator
from urllib.parse import urlsplit

import httpx

from ..core.choices import DEFAULT_CURRENCY, PLATFORM_OTHER
from ..core.config import settings
from ..core.errors import ProviderError
from ..core.money import round_half_away

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
)
REQUEST_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-GB,en;q=0.9",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

ALLOWED_HOSTS = (
    "ebay.co.uk",
    "ebay.com",
    "ebay.ie",
    "ebay.de",
    "ebay.fr",
    "ebay.it",
    "vinted.co.uk",
    "vinted.com",
    "vinted.fr",
    "vinted.de",
    "depop.com",
    "stockx.com",
    "goat.com",
    "grailed.com",
    "etsy.com",
    "facebook.com",
)

# Substring of the URL -> platform, first match wins.
PLATFORM_MARKERS = (
    ("ebay.", "EBAY"),
    ("vinted.", "VINTED"),
    ("depop.", "DEPOP"),
    ("stockx.", "STOCKX"),
    ("goat.", "GOAT"),
    ("grailed.", "GRAILED"),
    ("etsy.", "ETSY"),
    ("facebook.com/marketplace", "FACEBOOK"),
    ("fb.com/marketplace", "FACEBOOK"),
)

TITLE_MAX_LENGTH = 160
MAX_PAGE_CHARS = 2_000_000
_CURRENCY_CODE = re.compile(r"^[A-Za-z]{3}$")
_EBAY_PRICE_JSON = re.compile(r'"price"\s*:\s*"([^"]+)"', re.IGNORECASE)
_EBAY_CURRENCY_JSON = re.compile(r'"priceCurrency"\s*:\s*"([^"]+)"', re.IGNORECASE)


class ListingImportRejected(ValueError):
    """The URL is not one we are willing to fetch."""


@dataclass
class ImportedListing:
    title: str
    price_pence: int | None
    currency: str
    platform: str
    url: str


def platform_from_url(url: str | None) -> str:
    lowered = str(url or "").lower()
    for marker, platform in PLATFORM_MARKERS:
        if marker in lowered:
            return platform
    return PLATFORM_OTHER


def _host_allowed(host: str) -> bool:
    host = host.lower().rstrip(".")
    return any(host == allowed or host.endswith("." + allowed) for allowed in ALLOWED_HOSTS)


def validate_url(raw: str | None) -> str:
    """Return the URL to fetch or raise :class:`ListingImportRejected`."""

    text = str(raw or "").strip()
    if not text:
        raise ListingImportRejected("Missing url")
    try:
        parts = urlsplit(text)
        host = parts.hostname or ""
    except ValueError as exc:
        raise ListingImportRejected("Invalid url") from exc
    if not parts.scheme or not host:
        raise ListingImportRejected("Invalid url")
    if parts.scheme.lower() != "https":
        raise ListingImportRejected("Only https links supported")
    if not _host_allowed(host):
        raise ListingImportRejected("Domain not allowed")
    return text


# ---------- page scanning ----------


def _classes(attrs: dict[str, str]) -> str:
    return attrs.get("class") or ""


class _PageScanner(HTMLParser):
    """Collects the handful of things the extractors look at in one pass."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.meta: dict[str, str] = {}
        self.title = ""
        self.json_ld: list[str] = []
        self.ebay_title = ""
        self.ebay_price = ""
        self._in_title = False
        self._json_ld_buffer: list[str] | None = None
        self._capture: str | None = None

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        values = {key.lower(): value or "" for key, value in attrs}
        if tag == "meta":
            key = values.get("property") or values.get("name") or values.get("itemprop")
            content = values.get("content", "").strip()
            if key and content:
                self.meta.setdefault(key.lower(), content)
        elif tag == "title":
            self._in_title = True
        elif tag == "script" and values.get("type", "").lower() == "application/ld+json":
            self._json_ld_buffer = []
        elif tag == "h1" and "x-item-title__mainTitle" in _classes(values) and not self.ebay_title:
            self._capture = "ebay_title"
        elif tag == "div" and "x-price-primary" in _classes(values) and not self.ebay_price:
            self._capture = "ebay_price"

    def handle_endtag(self, tag: str) -> None:
        if tag == "title":
            self._in_title = False
        elif tag == "script" and self._json_ld_buffer is not None:
            self.json_ld.append("".join(self._json_ld_buffer))
            self._json_ld_buffer = None
        elif tag in ("h1", "div") and self._capture:
            self._capture = None

    def handle_data(self, data: str) -> None:
        if self._json_ld_buffer is not None:
            self._json_ld_buffer.append(data)
            return
        if self._in_title and not self.title:
            self.title = data.strip()
        text = data.strip()
        if self._capture and text:
            setattr(self, self._capture, text)
            self._capture = None


def _scan(page: str) -> _PageScanner:
    scanner = _PageScanner()
    scanner.feed(page)
    scanner.close()
    return scanner


# ---------- value helpers ----------


def _first(*values: Any) -> str:
    for value in values:
        text = str(value or "").strip()
        if text:
            return text
    return ""


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        digits = re.sub(r"[^\d.]", "", str(value))
        if not digits:
            return None
        try:
            number = float(digits)
        except ValueError:
            return None
    return number if math.isfinite(number) else None


def _to_pence(value: float | None) -> int | None:
    return None if value is None else round_half_away(value * 100)


def _currency(*candidates: Any) -> str:
    for candidate in candidates:
        text = str(candidate or "").strip()
        if _CURRENCY_CODE.match(text):
            return text.upper()
    return DEFAULT_CURRENCY


def _clip_title(value: str) -> str:
    return value.strip()[:TITLE_MAX_LENGTH]


@dataclass
class _Parsed:
    title: str = ""
    price_pence: int | None = None
    currency: str = DEFAULT_CURRENCY
    sources: list[str] = field(default_factory=list)


# ---------- extractors ----------


def extract_ebay(scanner: _PageScanner, page: str) -> _Parsed:
    price_match = _EBAY_PRICE_JSON.search(page)
    currency_match = _EBAY_CURRENCY_JSON.search(page)
    title = _first(scanner.ebay_title, scanner.meta.get("og:title"), scanner.title)
    price = _first(scanner.ebay_price, scanner.meta.get("og:price:amount"), price_match and price_match.group(1))
    return _Parsed(
        title=_clip_title(title),
        price_pence=_to_pence(_as_number(price)),
        currency=_currency(scanner.meta.get("og:price:currency"), currency_match and currency_match.group(1)),
    )


def _json_ld_nodes(blocks: Iterable[str]) -> Iterator[dict[str, Any]]:
    for raw in blocks:
        text = raw.strip().replace("\u2028", "").replace("\u2029", "")
        if not text:
            continue
        try:
            parsed = json.loads(text)
        except ValueError:
            continue
        yield from _walk(parsed)


def _walk(node: Any) -> Iterator[dict[str, Any]]:
    if isinstance(node, list):
        for child in node:
            yield from _walk(child)
        return
    if not isinstance(node, dict):
        return
    yield node
    for key in ("@graph", "itemListElement", "offers", "mainEntity", "subjectOf", "hasPart"):
        if key in node:
            yield from _walk(node[key])


def _is_product(node: dict[str, Any]) -> bool:
    kind = node.get("@type")
    kinds = kind if isinstance(kind, list) else [kind]
    return any(str(value).lower() == "product" for value in kinds)


def _parse_offer(offer: Any) -> tuple[float | None, str]:
    if not isinstance(offer, dict):
        return None, ""
    price_block = offer.get("priceSpecification")
    price_block = price_block if isinstance(price_block, dict) else {}
    price = None
    for candidate in (offer.get("price"), offer.get("lowPrice"), offer.get("highPrice"), price_block.get("price")):
        price = _as_number(candidate)
        if price is not None:
            break
    return price, _first(offer.get("priceCurrency"), price_block.get("priceCurrency"), offer.get("currency"))


def extract_json_ld(scanner: _PageScanner) -> _Parsed | None:
    title = ""
    price: float | None = None
    currency = ""
    for node in _json_ld_nodes(scanner.json_ld):
        if not _is_product(node):
            continue
        if not title:
            title = _first(node.get("name"), node.get("headline"))
        offers = node.get("offers")
        for offer in offers if isinstance(offers, list) else [offers]:
            if price is not None:
                break
            offer_price, offer_currency = _parse_offer(offer)
            if offer_price is not None:
                price, currency = offer_price, offer_currency
    if not title and price is None:
        return None
    return _Parsed(title=_clip_title(title), price_pence=_to_pence(price), currency=_currency(currency))


def extract_open_graph(scanner: _PageScanner) -> _Parsed | None:
    meta = scanner.meta
    title = _first(meta.get("og:title"), meta.get("twitter:title"), meta.get("title"))
    price = _as_number(
        _first(
            meta.get("og:price:amount"),
            meta.get("product:price:amount"),
            meta.get("product:price"),
            meta.get("twitter:data2"),
        )
    )
    if not title and price is None:
        return None
    return _Parsed(
        title=_clip_title(title),
        price_pence=_to_pence(price),
        currency=_currency(
            meta.get("og:price:currency"),
            meta.get("product:price:currency"),
            meta.get("twitter:data1"),
        ),
    )


def parse_listing_page(page: str, platform: str) -> _Parsed:
    scanner = _scan(page)
    parsed = extract_ebay(scanner, page) if platform == "EBAY" else None
    if parsed is None:
        parsed = extract_json_ld(scanner)
    if parsed is None:
        parsed = extract_open_graph(scanner)
    if parsed is None:
        parsed = _Parsed(title=_clip_title(_first(scanner.meta.get("og:title"), scanner.meta.get("twitter:title"), scanner.title)))
    return parsed


# ---------- fetching ----------


class ListingImporter:
    def __init__(
        self,
        *,
        timeout: float = 10.0,
        max_redirects: int = 5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_redirects = max_redirects
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "ListingImporter":
        return cls(
            timeout=settings.LISTING_IMPORT_TIMEOUT_SECONDS,
            max_redirects=settings.LISTING_IMPORT_MAX_REDIRECTS,
        )

    async def _fetch(self, url: str, platform: str) -> httpx.Response:
        # Redirects are followed by hand so every hop passes the domain check.
        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            headers=REQUEST_HEADERS,
            follow_redirects=False,
        ) as client:
            current = url
            for _ in range(self.max_redirects + 1):
                response = await client.get(current)
                if not response.is_redirect:
                    return response
                location = response.headers.get("location", "")
                current = validate_url(str(response.url.join(location)))
        raise ProviderError("Too many redirects", details={"platform": platform})

    async def import_listing(self, raw_url: str | None) -> ImportedListing:
        url = validate_url(raw_url)
        platform = platform_from_url(url)
        try:
            response = await self._fetch(url, platform)
        except httpx.HTTPError as exc:
            logger.warning("listing fetch failed for %s: %s", url, exc)
            raise ProviderError("Failed to fetch listing", details={"platform": platform}) from exc

        if response.is_error:
            logger.warning("listing upstream returned %s for %s", response.status_code, url)
            raise ProviderError(
                f"Upstream returned {response.status_code}",
                details={"status": response.status_code, "platform": platform},
            )

        parsed = parse_listing_page(response.text[:MAX_PAGE_CHARS], platform)
        logger.info(
            "listing imported",
            extra={"extra_data": {"platform": platform, "priced": parsed.price_pence is not None}},
        )
        return ImportedListing(
            title=parsed.title,
            price_pence=parsed.price_pence,
            currency=parsed.currency,
            platform=platform,
            url=url,
        )


listing_importer = ListingImporter.from_settings()


def get_listing_importer() -> ListingImporter:
    """FastAPI dependency returning the shared importer."""

    return listing_importer
