import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from resell_tracker.core.money import as_minor, convert_minor, format_minor, round_half_away


def test_format_minor_uses_currency_symbol_and_sign():
    assert format_minor("GBP", 1234) == "£12.34"
    assert format_minor("usd", -500) == "-$5.00"
    assert format_minor("JPY", 7) == "¥0.07"


def test_format_minor_unknown_currency_falls_back_to_pound():
    assert format_minor("XYZ", 5) == "£0.05"
    assert format_minor(None, 0) == "£0.00"


@pytest.mark.parametrize("currency", ["GBP", "USD", "EUR", "CAD", "AUD", "JPY", "ZZZ"])
def test_convert_to_same_currency_is_identity(currency):
    result = convert_minor(1234, currency, currency, None)
    assert result.value == 1234
    assert result.ok is True


def test_convert_with_missing_rate_fails_soft():
    result = convert_minor(100, "GBP", "ZZZ", {"GBP": 1, "USD": 1.27})
    assert result == (100, False)


def test_convert_with_unusable_rate_fails_soft():
    assert convert_minor(100, "GBP", "USD", {"GBP": 0, "USD": 1}).ok is False
    assert convert_minor(100, "GBP", "USD", {"GBP": float("nan"), "USD": 1}).ok is False
    assert convert_minor(100, "GBP", "USD", {}).ok is False


def test_convert_goes_through_usd():
    rates = {"USD": 1.0, "GBP": 0.8, "EUR": 0.9}
    assert convert_minor(1000, "USD", "GBP", rates) == (800, True)
    # 800p GBP -> $10.00 -> 9.00 EUR
    assert convert_minor(800, "GBP", "EUR", rates) == (900, True)


def test_conversion_rounds_half_away_from_zero():
    rates = {"USD": 1, "EUR": 0.5}
    assert convert_minor(1, "USD", "EUR", rates).value == 1
    assert convert_minor(-1, "USD", "EUR", rates).value == -1
    assert round_half_away(2.5) == 3
    assert round_half_away(-2.5) == -3
    assert round_half_away(2.4) == 2


def test_as_minor_never_raises():
    assert as_minor("12.9") == 12
    assert as_minor(float("nan")) == 0
    assert as_minor(float("inf")) == 0
    assert as_minor(True) == 0
    assert as_minor("abc") == 0
    assert as_minor(None, default=5) == 5


def test_rounding_handles_values_beyond_decimal_precision():
    assert round_half_away(1e30) == 10**30
    assert round_half_away(-1e300) == -(10**300)


def test_conversion_of_huge_amounts_never_raises():
    rates = {"USD": 1, "GBP": 0.8}
    converted = convert_minor(10**40, "GBP", "USD", rates)
    assert converted.ok is True
    assert converted.value > 10**40

    overflow = convert_minor(10**400, "GBP", "USD", rates)
    assert overflow.ok is False
    assert overflow.value == 10**400


def test_format_minor_handles_huge_amounts():
    assert format_minor("GBP", 10**30 + 5) == "£" + str(10**28) + ".05"
