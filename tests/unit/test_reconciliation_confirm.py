import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from grocery.errors import ConflictError, NotFoundError, ValidationError
from grocery.orders.results import Committed, Failed, Pending
from tests.fakes import OTHER_USER, USER


def test_success_commits_one_confirmed_order(engine, repo, gateway, open_order):
    opened = open_order()
    ref = opened["paymentReference"]
    gateway.set_status(ref, "success")

    result = engine.confirm(ref, source="verify")

    assert isinstance(result, Committed)
    assert result.created is True
    order = result.order
    assert Decimal(order["total_amount"]) == Decimal("20.00")
    assert order["status"] == "confirmed"
    assert order["payment_reference"] == ref
    assert order["order_number"].startswith("ORD-")
    assert len(order["invoice_number"]) == 10
    assert order["items"][0]["unitPriceAtCheckout"] == "10.00"

    pending = repo.get_pending_by_reference(ref)
    assert pending["payment_status"] == "success"
    assert pending["converted_to_order_id"] == order["id"]
    assert repo.products["p1"]["quantity"] == 48
    assert repo.orders[order["id"]]["stock_status"] == "done"
    assert repo.history[-1]["to_status"] == "confirmed"
    assert repo.transactions[-1]["status"] == "success"


def test_verify_then_webhook_returns_same_order(engine, repo, gateway, open_order):
    ref = open_order()["paymentReference"]
    gateway.set_status(ref, "success")

    first = engine.confirm(ref, source="verify")
    second = engine.confirm(ref, source="webhook")

    assert second.committed and second.created is False
    assert second.order["id"] == first.order["id"]
    assert len(repo.orders) == 1
    assert repo.products["p1"]["quantity"] == 48


def test_concurrent_confirms_create_exactly_one_order(engine, repo, gateway, open_order):
    ref = open_order()["paymentReference"]
    gateway.set_status(ref, "success")
    n = 8
    gateway.barrier = threading.Barrier(n)
    results, errors = [], []

    def worker(source):
        try:
            results.append(engine.confirm(ref, source=source))
        except Exception as e:  # pragma: no cover
            errors.append(e)

    threads = [threading.Thread(target=worker, args=("verify" if i % 2 else "webhook",)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    assert len(results) == n
    assert all(r.committed for r in results)
    assert len({r.order["id"] for r in results}) == 1
    assert sum(1 for r in results if r.created) == 1
    assert len(repo.orders) == 1
    assert repo.insert_attempts == n
    assert repo.products["p1"]["quantity"] == 48


@pytest.mark.parametrize("provider_status", ["ongoing", "pending", "processing", "queued", ""])
def test_undecided_payment_is_pending_without_writes(engine, repo, gateway, open_order, provider_status):
    ref = open_order()["paymentReference"]
    gateway.set_status(ref, provider_status)

    result = engine.confirm(ref)

    assert isinstance(result, Pending)
    assert repo.orders == {}
    assert repo.get_pending_by_reference(ref)["payment_status"] == "initialized"


def test_check_status_degrades_when_gateway_is_down(engine, repo, gateway, open_order):
    ref = open_order()["paymentReference"]
    gateway.unavailable = True

    out = engine.check_status(ref)

    assert out["status"] == "unknown"
    assert out["details"]["reason"] == "gateway_unavailable"
    assert out["details"]["amount"] is None
    assert out["details"]["pendingOrderStatus"] == "initialized"
    assert repo.pending[ref]["payment_status"] == "initialized"


@pytest.mark.parametrize("provider_status", ["failed", "abandoned", "reversed"])
def test_failed_payment_is_terminal(engine, repo, gateway, open_order, provider_status):
    ref = open_order()["paymentReference"]
    gateway.set_status(ref, provider_status)

    result = engine.confirm(ref)
    assert isinstance(result, Failed)
    assert result.reason == provider_status
    assert repo.orders == {}
    assert repo.get_pending_by_reference(ref)["payment_status"] == "failed"

    # Même si le provider change d'avis, la réponse reste l'échec
    gateway.set_status(ref, "success")
    calls = gateway.verify_calls
    again = engine.confirm(ref, source="webhook")
    assert isinstance(again, Failed)
    assert gateway.verify_calls == calls
    assert repo.orders == {}


def test_gateway_unreachable_during_confirm_is_pending(engine, repo, gateway, open_order):
    ref = open_order()["paymentReference"]
    gateway.unavailable = True

    result = engine.confirm(ref)

    assert isinstance(result, Pending)
    assert result.reason == "gateway_unavailable"
    assert repo.get_pending_by_reference(ref)["payment_status"] == "initialized"


def test_amount_mismatch_fails_and_flags_review(engine, repo, gateway, open_order):
    ref = open_order()["paymentReference"]
    gateway.set_status(ref, "success", amount=1999)

    result = engine.confirm(ref)

    assert isinstance(result, Failed)
    assert result.reason == "amount_mismatch"
    assert result.review_required is True
    assert repo.orders == {}
    pending = repo.get_pending_by_reference(ref)
    assert pending["payment_status"] == "failed"
    assert pending["review_required"] is True


def test_unknown_reference_is_not_found(engine):
    with pytest.raises(NotFoundError):
        engine.confirm("GROV-0-NOPE0000")


def test_unknown_source_is_rejected(engine, open_order):
    with pytest.raises(ValueError):
        engine.confirm(open_order()["paymentReference"], source="cron")


def test_late_success_after_expiry_still_commits(engine, repo, gateway, open_order, clock):
    ref = open_order()["paymentReference"]
    clock.now = clock.now + timedelta(minutes=31)
    assert engine.expire_stale() == 1
    assert repo.get_pending_by_reference(ref)["payment_status"] == "expired"

    gateway.set_status(ref, "success")
    result = engine.confirm(ref, source="webhook")

    assert result.committed and result.created
    assert repo.get_pending_by_reference(ref)["payment_status"] == "success"


def test_expire_stale_keeps_recent_pending_orders(engine, repo, open_order, clock):
    ref = open_order()["paymentReference"]
    clock.now = clock.now + timedelta(minutes=29)
    assert engine.expire_stale() == 0
    assert repo.get_pending_by_reference(ref)["payment_status"] == "initialized"


def test_crash_after_order_insert_is_healed_on_next_confirm(engine, repo, gateway, open_order):
    ref = open_order()["paymentReference"]
    gateway.set_status(ref, "success")
    result = engine.confirm(ref)
    # Simule un crash avant la mise à jour de la pending order
    repo.pending[ref]["payment_status"] = "initialized"
    repo.pending[ref].pop("converted_to_order_id")

    again = engine.confirm(ref)

    assert again.order["id"] == result.order["id"]
    pending = repo.get_pending_by_reference(ref)
    assert pending["payment_status"] == "success"
    assert pending["converted_to_order_id"] == result.order["id"]


def test_paid_after_cancel_never_commits(engine, repo, gateway, open_order):
    opened = open_order()
    engine.cancel_pending(opened["pendingOrderId"], USER["id"])
    gateway.set_status(opened["paymentReference"], "success")

    result = engine.confirm(opened["paymentReference"], source="webhook")

    assert isinstance(result, Failed)
    assert result.reason == "pending_order_cancelled"
    assert result.review_required is True
    assert repo.orders == {}
    pending = repo.get_pending_by_reference(opened["paymentReference"])
    assert pending["payment_status"] == "cancelled"
    assert pending["review_required"] is True


def test_cancel_pending_is_terminal(engine, repo, open_order):
    opened = open_order()
    cancelled = engine.cancel_pending(opened["pendingOrderId"], USER["id"])
    assert cancelled["payment_status"] == "cancelled"
    # Idempotent
    assert engine.cancel_pending(opened["pendingOrderId"], USER["id"])["payment_status"] == "cancelled"


def test_cancel_pending_after_success_is_conflict(engine, gateway, open_order):
    opened = open_order()
    gateway.set_status(opened["paymentReference"], "success")
    engine.confirm(opened["paymentReference"])

    with pytest.raises(ConflictError):
        engine.cancel_pending(opened["pendingOrderId"], USER["id"])


def test_cancel_pending_of_another_user_is_not_found(engine, open_order):
    opened = open_order()
    with pytest.raises(NotFoundError):
        engine.cancel_pending(opened["pendingOrderId"], OTHER_USER["id"])


def test_cancel_failed_pending_is_rejected(engine, gateway, open_order):
    opened = open_order()
    gateway.set_status(opened["paymentReference"], "failed")
    engine.confirm(opened["paymentReference"])
    with pytest.raises(ValidationError):
        engine.cancel_pending(opened["pendingOrderId"], USER["id"])


def test_check_status_reads_gateway_without_writing(engine, repo, gateway, open_order):
    ref = open_order()["paymentReference"]
    gateway.set_status(ref, "success")

    out = engine.check_status(ref)

    assert out["status"] == "success"
    assert out["details"]["amount"] == 20.0
    assert out["details"]["pendingOrderStatus"] == "initialized"
    assert out["details"]["orderId"] is None
    assert repo.orders == {}
