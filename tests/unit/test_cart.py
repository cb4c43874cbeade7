from decimal import Decimal

import pytest

from grocery.errors import ValidationError
from grocery.orders import cart

PRODUCTS = {
    "p1": {"id": "p1", "name": "Rice", "price": "10.00", "quantity": 5, "in_stock": True, "images": ["a.png"]},
    "p2": {"id": "p2", "name": "Oil", "price": 4.5, "quantity": 1, "in_stock": True},
    "p3": {"id": "p3", "name": "Chips", "price": "2.00", "quantity": 10, "in_stock": False},
    "p4": {"id": "p4", "name": "Free", "price": None, "quantity": 10, "in_stock": True},
}


def test_aggregate_quantities_merges_lines_and_skips_invalid():
    items = [
        {"productId": "p1", "quantity": 1},
        {"product_id": "p1", "quantity": 2},
        {"id": "p2", "quantity": "1"},
        {"productId": "", "quantity": 3},
        {"productId": "p3", "quantity": 0},
    ]
    assert cart.aggregate_quantities(items) == {"p1": 3, "p2": 1}


def test_aggregate_quantities_empty_cart():
    with pytest.raises(ValidationError) as exc:
        cart.aggregate_quantities([])
    assert exc.value.code == "empty_cart"


def test_build_snapshot_freezes_catalog_price():
    snapshot = cart.build_snapshot(PRODUCTS, {"p1": 2})
    assert snapshot == [{
        "productId": "p1",
        "name": "Rice",
        "category": None,
        "image": "a.png",
        "quantity": 2,
        "unitPriceAtCheckout": "10.00",
        "total": "20.00",
    }]


@pytest.mark.parametrize("quantities,code", [
    ({"nope": 1}, "unknown_product"),
    ({"p3": 1}, "out_of_stock"),
    ({"p2": 2}, "out_of_stock"),
    ({"p4": 1}, "invalid_price"),
])
def test_build_snapshot_rejects_unsellable_lines(quantities, code):
    with pytest.raises(ValidationError) as exc:
        cart.build_snapshot(PRODUCTS, quantities)
    assert exc.value.code == code


def test_compute_totals_applies_discount_and_credits():
    snapshot = cart.build_snapshot(PRODUCTS, {"p1": 2, "p2": 1})
    totals = cart.compute_totals(snapshot, discount="2.50", credits=1)
    assert totals == {
        "subtotal": Decimal("24.50"),
        "discount": Decimal("2.50"),
        "credits": Decimal("1.00"),
        "total": Decimal("21.00"),
    }


def test_compute_totals_rejects_non_positive_total_and_negative_adjustments():
    snapshot = cart.build_snapshot(PRODUCTS, {"p1": 1})
    with pytest.raises(ValidationError):
        cart.compute_totals(snapshot, discount=10)
    with pytest.raises(ValidationError):
        cart.compute_totals(snapshot, discount=-1)


def test_validate_address_requires_street_city_phone():
    assert cart.validate_address({"street": " 1 Main ", "city": "Kumasi", "phone": "+233200000000"})["street"] == "1 Main"
    with pytest.raises(ValidationError) as exc:
        cart.validate_address({"street": "1 Main", "city": ""})
    assert exc.value.code == "incomplete_address"
    assert "city" in exc.value.detail and "phone" in exc.value.detail
