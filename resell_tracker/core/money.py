"""Minor-unit money helpers.

Every stored amount is an integer number of minor units (pence, cents). Rate
tables map a currency code to "units per USD", exactly as the FX provider
publishes them, so any pair converts through USD.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Mapping, NamedTuple

from .choices import CURRENCY_SYMBOLS, DEFAULT_CURRENCY, normalize_currency

__all__ = ["Conversion", "as_minor", "convert_minor", "format_minor", "round_half_away"]


class Conversion(NamedTuple):
    value: int
    ok: bool


def round_half_away(value: float) -> int:
    """Round a finite float to the nearest integer, halves away from zero."""

    exact = Decimal(repr(value))
    with localcontext() as ctx:
        # Enough digits for the integer part, however large.
        ctx.prec = max(ctx.prec, exact.adjusted() + 2)
        return int(exact.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def as_minor(value: object, default: int = 0) -> int:
    """Coerce anything number-like into integer minor units; junk becomes ``default``."""

    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, int):
        return value
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return int(number)


def format_minor(currency: str | None, minor_units: object) -> str:
    symbol = CURRENCY_SYMBOLS.get(normalize_currency(currency), CURRENCY_SYMBOLS[DEFAULT_CURRENCY])
    amount = as_minor(minor_units)
    sign = "-" if amount < 0 else ""
    major, minor = divmod(abs(amount), 100)
    return f"{sign}{symbol}{major}.{minor:02d}"


def _rate(rates: Mapping[str, float] | None, currency: str) -> float | None:
    if not rates:
        return None
    raw = rates.get(currency)
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    if not math.isfinite(raw) or raw <= 0:
        return None
    return float(raw)


def convert_minor(
    minor_units: object,
    from_currency: str | None,
    to_currency: str | None,
    rates: Mapping[str, float] | None,
) -> Conversion:
    """Convert ``minor_units`` between currencies via USD.

    Never raises: an unknown currency on either side, or an amount too large
    to convert, returns the original amount with ``ok=False``.
    """

    amount = as_minor(minor_units)
    source = normalize_currency(from_currency)
    target = normalize_currency(to_currency)
    if source == target:
        return Conversion(amount, True)
    source_rate = _rate(rates, source)
    target_rate = _rate(rates, target)
    if source_rate is None or target_rate is None:
        return Conversion(amount, False)
    try:
        amount_usd = amount / 100 / source_rate
        converted = amount_usd * target_rate * 100
    except OverflowError:
        return Conversion(amount, False)
    if not math.isfinite(converted):
        return Conversion(amount, False)
    return Conversion(round_half_away(converted), True)
