import os
import sys
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from resell_tracker.core.errors import SaleRejected
from resell_tracker.crud import sales as sales_crud
from resell_tracker.crud.inventory import create_item, get_item
from resell_tracker.db.session import Base
from resell_tracker.services.financials import derive_item, derive_sale

# Ensure models are imported so metadata is populated
from resell_tracker.models import inventory as inventory_model  # noqa: F401
from resell_tracker.models import sale as sale_model  # noqa: F401


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def _item(db, owner="owner_a", quantity=3, purchase=1000, listings=None):
    meta = {"purchaseTotalPence": purchase, "status": "LISTED" if listings else "UNLISTED"}
    if listings:
        meta["listings"] = listings
    return create_item(db, owner, {"name": "Dunk Low", "sku": "DL-42", "quantity": quantity, "meta": meta})


def _sale(item, **overrides):
    payload = {
        "item_id": item.id,
        "quantity_sold": 1,
        "sale_price_per_unit_pence": 2500,
        "fees_pence": 300,
        "platform": "EBAY",
    }
    payload.update(overrides)
    return payload


def test_sale_defaults_cost_from_item(db_session):
    item = _item(db_session)
    sale = sales_crud.create_sale(db_session, "owner_a", _sale(item, quantity_sold=2, platform="ebay"))

    assert sale.item_name == "Dunk Low"
    assert sale.sku == "DL-42"
    assert sale.platform == "EBAY"
    assert sale.currency == "GBP"
    assert sale.cost_per_unit_pence == 1000
    assert sale.cost_total_pence == 2000
    assert sale.net_pence == 4700
    assert derive_sale(sale).profit == 2700
    # "none" leaves stock alone
    assert get_item(db_session, "owner_a", item.id).quantity == 3


def test_supplied_net_and_cost_win(db_session):
    item = _item(db_session)
    sale = sales_crud.create_sale(
        db_session,
        "owner_a",
        _sale(item, net_pence=2000, cost_per_unit_pence=400, sold_at="2024-03-01T09:30:00Z"),
    )
    assert sale.net_pence == 2000
    assert sale.cost_total_pence == 400
    assert sale.sold_at == datetime(2024, 3, 1, 9, 30)


@pytest.mark.parametrize(
    "overrides",
    [
        {"quantity_sold": 0},
        {"quantity_sold": True},
        {"quantity_sold": 1.5},
        {"sale_price_per_unit_pence": 0},
        {"fees_pence": -1},
        {"platform": "MYSPACE"},
        {"currency": "XYZ"},
    ],
)
def test_invalid_sales_are_rejected(db_session, overrides):
    item = _item(db_session)
    with pytest.raises(SaleRejected) as excinfo:
        sales_crud.create_sale(db_session, "owner_a", _sale(item, **overrides))
    assert excinfo.value.status_code == 400
    assert sales_crud.list_sales(db_session, "owner_a") == []


def test_cannot_sell_more_than_in_stock(db_session):
    item = _item(db_session, quantity=3)
    with pytest.raises(SaleRejected) as excinfo:
        sales_crud.create_sale(db_session, "owner_a", _sale(item, quantity_sold=4))
    assert str(excinfo.value) == "quantity_sold: only 3 available"

    empty = _item(db_session, quantity=0)
    with pytest.raises(SaleRejected) as excinfo:
        sales_crud.create_sale(db_session, "owner_a", _sale(empty))
    assert str(excinfo.value) == "Item has no stock left to sell"


def test_other_owners_item_is_not_found(db_session):
    item = _item(db_session, owner="owner_b")
    with pytest.raises(SaleRejected) as excinfo:
        sales_crud.create_sale(db_session, "owner_a", _sale(item))
    assert excinfo.value.status_code == 404

    with pytest.raises(SaleRejected):
        sales_crud.create_sale(db_session, "owner_a", _sale(item, item_id="missing"))


def test_unknown_inventory_action(db_session):
    item = _item(db_session)
    with pytest.raises(SaleRejected):
        sales_crud.create_sale(db_session, "owner_a", _sale(item), inventory_action="archive")


def test_decrement_keeps_item_listed(db_session):
    item = _item(db_session, quantity=3)
    sales_crud.create_sale(db_session, "owner_a", _sale(item), inventory_action="decrement")
    item = get_item(db_session, "owner_a", item.id)
    assert item.quantity == 2
    assert derive_item(item).status == "LISTED"


def test_decrement_to_zero_marks_sold_and_adds_listing(db_session):
    item = _item(db_session, quantity=2)
    sales_crud.create_sale(db_session, "owner_a", _sale(item, quantity_sold=2, platform="VINTED"), inventory_action="decrement")
    derived = derive_item(get_item(db_session, "owner_a", item.id))
    assert derived.quantity == 0
    assert derived.status == "SOLD"
    assert derived.meta["listings"] == [{"platform": "VINTED", "url": "", "pricePence": 2500}]
    assert derived.sale_price_per_unit == 2500


def test_decrement_to_zero_reprices_first_listing(db_session):
    listings = [
        {"platform": "EBAY", "url": "https://ebay.example/1", "pricePence": 3000},
        {"platform": "DEPOP", "url": "https://depop.example/1", "pricePence": 3200},
    ]
    item = _item(db_session, quantity=1, listings=listings)
    sales_crud.create_sale(db_session, "owner_a", _sale(item), inventory_action="decrement")
    derived = derive_item(get_item(db_session, "owner_a", item.id))
    assert derived.status == "SOLD"
    assert [listing["pricePence"] for listing in derived.meta["listings"]] == [2500, 3200]


def test_delete_action_keeps_sale_history(db_session):
    item = _item(db_session)
    sale = sales_crud.create_sale(db_session, "owner_a", _sale(item), inventory_action="delete")
    assert get_item(db_session, "owner_a", item.id) is None
    stored = sales_crud.get_sale(db_session, "owner_a", sale.id)
    assert stored.item_id == item.id
    assert stored.item_name == "Dunk Low"


def test_inventory_failure_rolls_back_sale(db_session, monkeypatch):
    item = _item(db_session, quantity=3)

    def boom(*args, **kwargs):
        raise RuntimeError("inventory write failed")

    monkeypatch.setattr(sales_crud, "_apply_inventory_action", boom)
    with pytest.raises(RuntimeError):
        sales_crud.create_sale(db_session, "owner_a", _sale(item), inventory_action="decrement")

    assert sales_crud.list_sales(db_session, "owner_a") == []
    assert get_item(db_session, "owner_a", item.id).quantity == 3


def _dated_sales(db):
    item = _item(db, quantity=10)
    return [
        sales_crud.create_sale(db, "owner_a", _sale(item, sold_at=moment))
        for moment in ("2024-01-01T10:00:00Z", "2024-01-10T10:00:00Z", "2024-01-20T10:00:00Z")
    ]


def test_list_sales_filters_by_range_newest_first(db_session):
    first, second, third = _dated_sales(db_session)
    assert [s.id for s in sales_crud.list_sales(db_session, "owner_a")] == [third.id, second.id, first.id]
    ranged = sales_crud.list_sales(db_session, "owner_a", start=datetime(2024, 1, 5), end=datetime(2024, 1, 20, 10))
    assert [s.id for s in ranged] == [third.id, second.id]
    assert sales_crud.list_sales(db_session, "owner_b") == []


def test_bulk_delete_by_range(db_session):
    first, second, third = _dated_sales(db_session)
    deleted = sales_crud.delete_sales(db_session, "owner_a", start=datetime(2024, 1, 5), end=datetime(2024, 1, 15))
    assert deleted == 1
    assert sales_crud.get_sale(db_session, "owner_a", second.id) is None


def test_bulk_delete_intersects_ids_and_range(db_session):
    first, second, third = _dated_sales(db_session)
    deleted = sales_crud.delete_sales(db_session, "owner_a", ids=[first.id, second.id], start=datetime(2024, 1, 5))
    assert deleted == 1
    remaining = {s.id for s in sales_crud.list_sales(db_session, "owner_a")}
    assert remaining == {first.id, third.id}


def test_bulk_delete_needs_a_filter(db_session):
    _dated_sales(db_session)
    with pytest.raises(ValueError):
        sales_crud.delete_sales(db_session, "owner_a")
    assert sales_crud.delete_sales(db_session, "owner_b", ids=["anything"]) == 0
    assert len(sales_crud.list_sales(db_session, "owner_a")) == 3


def test_notes_patch(db_session):
    item = _item(db_session)
    sale = sales_crud.create_sale(db_session, "owner_a", _sale(item, notes="first"))
    assert sales_crud.update_sale_notes(db_session, sale, "  buyer paid fast ").notes == "buyer paid fast"
    assert sales_crud.update_sale_notes(db_session, sale, "   ").notes is None


def test_foreign_currency_sale_needs_its_own_cost(db_session):
    item = _item(db_session)
    with pytest.raises(SaleRejected) as excinfo:
        sales_crud.create_sale(db_session, "owner_a", _sale(item, currency="USD"))
    assert str(excinfo.value).startswith("cost_per_unit_pence: required")

    with_cost = sales_crud.create_sale(db_session, "owner_a", _sale(item, currency="USD", cost_per_unit_pence=1300))
    assert with_cost.currency == "USD"
    assert with_cost.cost_total_pence == 1300

    with_total = sales_crud.create_sale(
        db_session, "owner_a", _sale(item, currency="EUR", quantity_sold=2, cost_total_pence=2401)
    )
    assert with_total.cost_per_unit_pence == 1201
    assert with_total.cost_total_pence == 2401
