"""Versioned metadata envelope stored in ``InventoryItem.notes``.

The notes column is free text. Structured item metadata rides along in it as
``{"v": <version>, "notes": <plain text>, "meta": {...}}`` so the item shape can
evolve without a schema migration. Four envelope versions exist in the wild:

* v1: purchase cost as ``purchasePence``; sale estimate as
  ``expectedBestPence`` / ``expectedWorstPence``.
* v2: purchase cost renamed to ``purchaseTotalPence`` (all-in, per unit).
* v3: one ``estimatedSalePence`` replaces the best/worst pair.
* v4: ``listings`` (platform, url, price) added; first listing is the live price.

Decoding never raises. Anything that is not a recognised envelope is treated
as plain text with empty metadata.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from ..core.choices import DEFAULT_CURRENCY, PLATFORM_OTHER, STATUS_UNLISTED
from ..core.money import round_half_away

__all__ = [
    "CURRENT_VERSION",
    "DecodedNotes",
    "decode",
    "encode",
    "normalize",
    "upgrade",
]

CURRENT_VERSION = 4
KNOWN_VERSIONS = frozenset({1, 2, 3, 4})


@dataclass
class DecodedNotes:
    notes: str = ""
    meta: dict[str, Any] = field(default_factory=dict)


def _version_of(value: Any) -> int | None:
    # bool is an int subclass; ``true`` is not a version tag.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or int(value) != value:
        return None
    version = int(value)
    return version if version in KNOWN_VERSIONS else None


def encode(plain_notes: str | None, meta: Mapping[str, Any] | None) -> str:
    """Wrap plain notes and metadata in a current-version envelope.

    ``meta`` is passed through untouched; run it through :func:`normalize` first.
    """

    payload = {
        "v": CURRENT_VERSION,
        "notes": str(plain_notes or "").strip(),
        "meta": dict(meta) if isinstance(meta, Mapping) else {},
    }
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def decode(notes: str | None) -> DecodedNotes:
    raw = "" if notes is None else str(notes)
    if not raw:
        return DecodedNotes()
    try:
        parsed = json.loads(raw)
    except (ValueError, RecursionError):
        return DecodedNotes(notes=raw)
    if not isinstance(parsed, dict) or _version_of(parsed.get("v")) is None:
        return DecodedNotes(notes=raw)
    text = parsed.get("notes")
    meta = parsed.get("meta")
    return DecodedNotes(
        notes=str(text) if text else "",
        meta=dict(meta) if isinstance(meta, dict) else {},
    )


# ---------- version upgrades ----------
# Each step only fills fields that are absent, so running the whole chain over
# already-current metadata changes nothing.


def _v1_to_v2(meta: dict[str, Any]) -> dict[str, Any]:
    if meta.get("purchaseTotalPence") is None and meta.get("purchasePence") is not None:
        meta["purchaseTotalPence"] = meta["purchasePence"]
    return meta


def _v2_to_v3(meta: dict[str, Any]) -> dict[str, Any]:
    if _finite(meta.get("estimatedSalePence")) is None:
        for legacy in ("expectedBestPence", "expectedWorstPence"):
            value = _finite(meta.get(legacy))
            if value is not None:
                meta["estimatedSalePence"] = value
                break
    return meta


def _v3_to_v4(meta: dict[str, Any]) -> dict[str, Any]:
    meta.setdefault("listings", [])
    return meta


UPGRADES: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _v1_to_v2,
    2: _v2_to_v3,
    3: _v3_to_v4,
}


def upgrade(meta: Mapping[str, Any] | None, from_version: int = 1) -> dict[str, Any]:
    """Walk ``meta`` forward from ``from_version`` to the current shape."""

    upgraded = dict(meta) if isinstance(meta, Mapping) else {}
    version = from_version if from_version in KNOWN_VERSIONS else 1
    while version < CURRENT_VERSION:
        upgraded = UPGRADES[version](upgraded)
        version += 1
    return upgraded


# ---------- normalisation ----------


def _finite(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _pence_or_none(value: Any) -> int | None:
    number = _finite(value)
    return None if number is None else round_half_away(number)


def _upper_or(value: Any, default: str) -> str:
    text = str(value).strip().upper() if value not in (None, "") else ""
    return text or default


def _optional_text(value: Any) -> str | None:
    if value in (None, ""):
        return None
    return str(value)


def _listing(raw: Any) -> dict[str, Any]:
    entry = raw if isinstance(raw, Mapping) else {}
    url = entry.get("url")
    return {
        "platform": _upper_or(entry.get("platform"), PLATFORM_OTHER),
        "url": str(url).strip() if url else "",
        "pricePence": _pence_or_none(entry.get("pricePence")),
    }


def normalize(meta: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return metadata with every field present and sanely typed.

    Legacy fields are folded in (``estimatedSalePence`` falls back to
    ``expectedBestPence`` then ``expectedWorstPence``), listings without a URL
    or a finite price are dropped.
    """

    current = upgrade(meta, 1)
    listings = current.get("listings")
    normalized_listings = []
    if isinstance(listings, list):
        for raw in listings:
            listing = _listing(raw)
            if listing["url"] or listing["pricePence"] is not None:
                normalized_listings.append(listing)
    return {
        "currency": _upper_or(current.get("currency"), DEFAULT_CURRENCY),
        "status": _upper_or(current.get("status"), STATUS_UNLISTED),
        "category": _optional_text(current.get("category")),
        "condition": _optional_text(current.get("condition")),
        "purchaseTotalPence": _pence_or_none(current.get("purchaseTotalPence")) or 0,
        "estimatedSalePence": _pence_or_none(current.get("estimatedSalePence")),
        "listings": normalized_listings,
    }
