"""
Registre central des routers.
- Orders: checkout, verify, statut de paiement, lecture, annulation, admin
- Webhooks: Paystack
- Health
"""
from fastapi import FastAPI

from grocery.health.router import router as health_router
from grocery.orders.views import router as orders_router
from grocery.payments.views import router as webhooks_router


def register_routers(app: FastAPI) -> None:
    app.include_router(orders_router)
    app.include_router(webhooks_router)
    app.include_router(health_router)
