from decimal import Decimal

import pytest

from grocery.errors import GatewayUnavailable, ValidationError
from tests.fakes import ADDRESS, USER


def test_open_pending_reprices_cart_and_initializes_payment(engine, repo, gateway):
    out = engine.open_pending(USER, [{"productId": "p1", "quantity": 2}], ADDRESS, delivery_notes="Gate code 42")

    assert out["amount"] == 20.0
    assert out["amountMinorUnits"] == 2000
    assert out["authorizationUrl"].endswith(out["paymentReference"])

    pending = repo.get_pending_by_reference(out["paymentReference"])
    assert pending["id"] == out["pendingOrderId"]
    assert pending["payment_status"] == "initialized"
    assert pending["amount_minor_units"] == 2000
    assert pending["cart_snapshot"][0]["unitPriceAtCheckout"] == "10.00"
    assert pending["delivery_notes"] == "Gate code 42"
    assert pending["expires_at"] == "2026-01-05T10:30:00+00:00"

    call = gateway.initialize_calls[0]
    assert call["amount"] == 2000
    assert call["email"] == USER["email"]
    assert call["callback_url"] == f"https://shop.test/payment/callback?pending_order_id={out['pendingOrderId']}"
    assert call["metadata"]["pending_order_id"] == out["pendingOrderId"]
    assert call["metadata"]["user_id"] == USER["id"]

    assert repo.transactions[-1]["status"] == "pending"
    assert repo.transactions[-1]["provider_reference"] == out["paymentReference"]


def test_open_pending_ignores_forged_client_totals(engine, gateway):
    forged = [{"productId": "p1", "quantity": 2, "price": "0.01", "total": "0.02"}]
    out = engine.open_pending(USER, forged, ADDRESS)
    assert out["amountMinorUnits"] == 2000
    assert gateway.initialize_calls[0]["amount"] == 2000


def test_open_pending_applies_discount_and_credits(engine, repo):
    out = engine.open_pending(USER, [{"productId": "p1", "quantity": 2}], ADDRESS, discount="5", credits=Decimal("2.50"))
    assert out["amountMinorUnits"] == 1250
    pending = repo.get_pending_by_reference(out["paymentReference"])
    assert pending["subtotal"] == "20.00"
    assert pending["total_amount"] == "12.50"


@pytest.mark.parametrize("items,address,code", [
    ([], ADDRESS, "empty_cart"),
    ([{"productId": "p1", "quantity": 1}], {"street": "x", "city": "Accra"}, "incomplete_address"),
    ([{"productId": "p3", "quantity": 1}], ADDRESS, "out_of_stock"),
])
def test_open_pending_validation_errors_create_nothing(engine, repo, gateway, items, address, code):
    with pytest.raises(ValidationError) as exc:
        engine.open_pending(USER, items, address)
    assert exc.value.code == code
    assert repo.pending == {}
    assert gateway.initialize_calls == []


def test_open_pending_gateway_failure_marks_pending_failed(engine, repo, gateway):
    gateway.fail_initialize = True
    with pytest.raises(GatewayUnavailable):
        engine.open_pending(USER, [{"productId": "p1", "quantity": 1}], ADDRESS)

    [pending] = repo.pending.values()
    assert pending["payment_status"] == "failed"
    assert pending["failure_reason"] == "gateway_unavailable"
    assert repo.transactions == []


def test_open_pending_requires_user_email(engine):
    with pytest.raises(ValidationError):
        engine.open_pending({"id": "u-x", "email": ""}, [{"productId": "p1", "quantity": 1}], ADDRESS)
