import os

os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")
os.environ["SWEEP_INTERVAL_SECONDS"] = "0"

from datetime import datetime, timezone
from typing import Any, Dict, Generator

import pytest
from fastapi.testclient import TestClient

from grocery.app_setup.factory import create_app
from grocery.infra.container import Services
from grocery.orders.fulfillment import FulfillmentService
from grocery.orders.lifecycle import OrderLifecycle
from grocery.orders.reconciliation import ReconciliationEngine
from grocery.orders.service import OrderService
from grocery.utils.security import get_current_user
from tests.fakes import (
    ADDRESS,
    ADMIN,
    USER,
    FakeAuth,
    FrozenClock,
    FakeGateway,
    InMemoryOrderRepository,
    RecordingNotifier,
    RecordingRenderer,
)

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def repo() -> InMemoryOrderRepository:
    return InMemoryOrderRepository(products=[
        {"id": "p1", "name": "Jasmine Rice 5kg", "price": "10.00", "quantity": 50, "in_stock": True,
         "category_name": "Grains", "images": ["https://img.test/rice.png"]},
        {"id": "p2", "name": "Palm Oil 1L", "price": 4.5, "quantity": 3, "in_stock": True,
         "category_name": "Oils", "images": []},
        {"id": "p3", "name": "Plantain Chips", "price": "2.25", "quantity": 0, "in_stock": False,
         "category_name": "Snacks", "images": []},
    ])


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def fulfillment(repo, renderer, notifier, clock) -> FulfillmentService:
    return FulfillmentService(repo, renderer=renderer, notifier=notifier, clock=clock)


@pytest.fixture
def engine(repo, gateway, fulfillment, clock) -> ReconciliationEngine:
    return ReconciliationEngine(
        repo,
        gateway,
        fulfillment,
        currency="GHS",
        callback_base_url="https://shop.test",
        pending_ttl_minutes=30,
        clock=clock,
    )


@pytest.fixture
def lifecycle(repo, fulfillment, clock) -> OrderLifecycle:
    return OrderLifecycle(repo, fulfillment, clock=clock)


@pytest.fixture
def services(repo, gateway, engine, lifecycle, fulfillment) -> Services:
    return Services(
        repository=repo,
        gateway=gateway,
        engine=engine,
        lifecycle=lifecycle,
        fulfillment=fulfillment,
        orders=OrderService(repo),
        auth=FakeAuth({"user-token": USER, "admin-token": ADMIN}),
    )


@pytest.fixture
def open_order(engine):
    """Ouvre une pending order pour USER: [{p1, qty 2, 10.00}] -> 20.00."""
    def _open(user: Dict[str, Any] = USER, items=None):
        return engine.open_pending(user, items or [{"productId": "p1", "quantity": 2}], ADDRESS)
    return _open


@pytest.fixture
def app(services):
    return create_app(services)


@pytest.fixture
def current_user(app):
    """Utilisateur courant modifiable par test (USER par défaut)."""
    holder = {"user": USER}
    app.dependency_overrides[get_current_user] = lambda: holder["user"]
    try:
        yield holder
    finally:
        app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture
def client(app, current_user) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


@pytest.fixture
def anonymous_client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c
