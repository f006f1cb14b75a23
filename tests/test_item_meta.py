import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from resell_tracker.services import item_meta


def test_round_trip_trims_notes_and_keeps_meta():
    meta = item_meta.normalize(
        {
            "currency": "usd",
            "status": "listed",
            "category": "SHOES",
            "purchaseTotalPence": 4500,
            "listings": [{"platform": "ebay", "url": " https://ebay.example/1 ", "pricePence": 9000}],
        }
    )
    decoded = item_meta.decode(item_meta.encode("  box damaged  ", meta))
    assert decoded.notes == "box damaged"
    assert decoded.meta == meta
    assert meta["listings"][0] == {"platform": "EBAY", "url": "https://ebay.example/1", "pricePence": 9000}


def test_encode_always_writes_current_version():
    raw = item_meta.encode(None, {})
    assert raw.startswith('{"v":4')


def test_legacy_best_estimate_is_picked_up():
    decoded = item_meta.decode('{"v":2,"notes":"x","meta":{"expectedBestPence":500}}')
    assert decoded.notes == "x"
    assert item_meta.normalize(decoded.meta)["estimatedSalePence"] == 500


def test_legacy_estimate_prefers_best_then_worst():
    assert item_meta.normalize({"expectedWorstPence": 300})["estimatedSalePence"] == 300
    both = {"expectedBestPence": 700, "expectedWorstPence": 300}
    assert item_meta.normalize(both)["estimatedSalePence"] == 700
    current = {"estimatedSalePence": 100, "expectedBestPence": 700}
    assert item_meta.normalize(current)["estimatedSalePence"] == 100


def test_v1_purchase_field_is_upgraded():
    meta = item_meta.normalize({"purchasePence": 700})
    assert meta["purchaseTotalPence"] == 700


@pytest.mark.parametrize(
    "raw",
    [
        "plain text note",
        "[1, 2, 3]",
        '"just a string"',
        '{"v": 9, "notes": "future", "meta": {}}',
        '{"v": true, "meta": {}}',
        '{"notes": "no version"}',
        "{not json",
        "[" * 100000,
    ],
)
def test_decode_never_raises_and_keeps_raw_text(raw):
    decoded = item_meta.decode(raw)
    assert decoded.notes == raw
    assert decoded.meta == {}


def test_decode_empty_values():
    assert item_meta.decode("").notes == ""
    assert item_meta.decode(None).meta == {}


def test_decode_tolerates_non_object_meta():
    decoded = item_meta.decode('{"v":3,"notes":"hi","meta":[1,2]}')
    assert decoded.notes == "hi"
    assert decoded.meta == {}


def test_normalize_fills_defaults():
    assert item_meta.normalize(None) == {
        "currency": "GBP",
        "status": "UNLISTED",
        "category": None,
        "condition": None,
        "purchaseTotalPence": 0,
        "estimatedSalePence": None,
        "listings": [],
    }


def test_normalize_coerces_bad_numbers():
    meta = item_meta.normalize({"purchaseTotalPence": "abc", "estimatedSalePence": float("inf")})
    assert meta["purchaseTotalPence"] == 0
    assert meta["estimatedSalePence"] is None


def test_normalize_drops_empty_listings():
    meta = item_meta.normalize(
        {
            "listings": [
                {"platform": "VINTED"},
                {"url": "https://vinted.example/2"},
                {"pricePence": 1500},
                "garbage",
            ]
        }
    )
    assert meta["listings"] == [
        {"platform": "OTHER", "url": "https://vinted.example/2", "pricePence": None},
        {"platform": "OTHER", "url": "", "pricePence": 1500},
    ]


def test_upgrade_is_a_no_op_on_current_meta():
    current = item_meta.normalize({"estimatedSalePence": 100, "purchaseTotalPence": 50})
    assert item_meta.upgrade(current, 1) == current
    assert item_meta.upgrade(current, item_meta.CURRENT_VERSION) == current


def test_normalize_accepts_amounts_beyond_decimal_precision():
    meta = item_meta.normalize({"purchaseTotalPence": 1e30, "estimatedSalePence": "1e40"})
    assert meta["purchaseTotalPence"] == 10**30
    assert meta["estimatedSalePence"] == 10**40
