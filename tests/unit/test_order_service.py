import pytest

from grocery.errors import NotFoundError, ValidationError
from grocery.orders.service import OrderService, present_order
from tests.fakes import ADMIN, OTHER_USER, USER


@pytest.fixture
def orders(repo):
    return OrderService(repo)


@pytest.fixture
def two_orders(engine, gateway, open_order):
    made = []
    for user in (USER, OTHER_USER):
        ref = open_order(user)["paymentReference"]
        gateway.set_status(ref, "success")
        made.append(engine.confirm(ref).order)
    return made


def test_owner_and_admin_can_read_order(orders, two_orders):
    mine, _ = two_orders
    assert orders.get_order(mine["id"], USER)["id"] == mine["id"]
    assert orders.get_order(mine["id"], ADMIN)["id"] == mine["id"]
    assert orders.get_order_by_number(mine["order_number"], USER)["id"] == mine["id"]


def test_other_user_gets_not_found(orders, two_orders):
    mine, _ = two_orders
    with pytest.raises(NotFoundError):
        orders.get_order(mine["id"], OTHER_USER)
    with pytest.raises(NotFoundError):
        orders.get_pending_by_reference(mine["payment_reference"], OTHER_USER)


def test_list_orders_scopes_to_user_unless_admin(orders, two_orders):
    assert orders.list_orders(USER)["pagination"]["total"] == 1
    listed = orders.list_orders(ADMIN, page=1, limit=1)
    assert listed["pagination"] == {"page": 1, "limit": 1, "total": 2, "totalPages": 2}
    assert listed["orders"][0]["total_amount"] == 20.0


def test_list_orders_rejects_unknown_status(orders):
    with pytest.raises(ValidationError):
        orders.list_orders(ADMIN, status="lost")


def test_stats_excludes_cancelled_revenue(orders, lifecycle, two_orders):
    lifecycle.cancel(two_orders[1]["id"], None, OTHER_USER)
    stats = orders.stats()
    assert stats["totalOrders"] == 2
    assert stats["byStatus"]["confirmed"] == 1
    assert stats["byStatus"]["cancelled"] == 1
    assert stats["totalRevenue"] == 20.0
    assert stats["averageOrderValue"] == 20.0


def test_present_order_exposes_major_units():
    out = present_order({"id": "o1", "subtotal": "24.50", "discount": "0.00", "total_amount": "24.50", "provider_fees": None})
    assert out["subtotal"] == 24.5
    assert out["total_amount"] == 24.5
    assert out["provider_fees"] is None
