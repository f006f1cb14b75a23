"""Timestamp helpers. Everything is stored as naive UTC."""

from __future__ import annotations

import math
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso(value: object) -> datetime | None:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into naive UTC, or ``None``."""

    if isinstance(value, datetime):
        return to_naive_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return to_naive_utc(parsed)


def from_unix(value: object) -> datetime | None:
    """Billing payloads carry unix seconds; anything else is ignored."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


def isoformat_z(value: datetime | None) -> str | None:
    if value is None:
        return None
    return to_naive_utc(value).isoformat(timespec="seconds") + "Z"
