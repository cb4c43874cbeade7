"""
Assemblage des composants, une seule fois au démarrage (lifespan).
- build_services() lit la configuration et passe des valeurs explicites aux constructeurs
- Les vues reçoivent les composants via les dépendances FastAPI ci-dessous (app.state.services)
- Les tests remplacent app.state.services ou utilisent app.dependency_overrides
"""
import logging
from dataclasses import dataclass

from fastapi import HTTPException, Request

from grocery import config
from grocery.auth.service import AuthService
from grocery.infra.supabase_client import create_anon_client, create_service_client
from grocery.orders.fulfillment import FulfillmentService, InvoiceRenderer, Notifier
from grocery.orders.lifecycle import OrderLifecycle
from grocery.orders.reconciliation import ReconciliationEngine
from grocery.orders.repository import OrderRepository
from grocery.orders.service import OrderService
from grocery.payments.paystack_client import PaystackClient

logger = logging.getLogger(__name__)


@dataclass
class Services:
    repository: OrderRepository
    gateway: PaystackClient
    engine: ReconciliationEngine
    lifecycle: OrderLifecycle
    fulfillment: FulfillmentService
    orders: OrderService
    auth: AuthService

    def close(self) -> None:
        self.gateway.close()
        self.fulfillment.close()


def is_configured() -> bool:
    return bool(config.SUPABASE_URL and config.SUPABASE_SERVICE_KEY and config.SUPABASE_ANON_KEY)


def build_services() -> Services:
    """Construit le graphe de composants à partir de grocery.config. Lève RuntimeError si Supabase manque."""
    repository = OrderRepository(create_service_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_KEY))
    gateway = PaystackClient(
        config.PAYSTACK_SECRET_KEY,
        base_url=config.PAYSTACK_BASE_URL,
        webhook_secret=config.PAYSTACK_WEBHOOK_SECRET,
        timeout=config.PAYSTACK_TIMEOUT_SECONDS,
        channels=config.PAYSTACK_CHANNELS,
    )
    fulfillment = FulfillmentService(
        repository,
        renderer=InvoiceRenderer(config.INVOICE_RENDERER_URL, timeout=config.COLLABORATOR_TIMEOUT_SECONDS),
        notifier=Notifier(config.NOTIFIER_URL, timeout=config.COLLABORATOR_TIMEOUT_SECONDS),
    )
    engine = ReconciliationEngine(
        repository,
        gateway,
        fulfillment,
        currency=config.PAYSTACK_CURRENCY,
        callback_base_url=config.FRONTEND_URL,
        reference_prefix=config.PAYMENT_REFERENCE_PREFIX,
        pending_ttl_minutes=config.PENDING_ORDER_TTL_MINUTES,
    )
    if not gateway.configured:
        logger.warning("PAYSTACK_SECRET_KEY missing: checkout and verification will fail with 502")
    return Services(
        repository=repository,
        gateway=gateway,
        engine=engine,
        lifecycle=OrderLifecycle(repository, fulfillment),
        fulfillment=fulfillment,
        orders=OrderService(repository),
        auth=AuthService(create_anon_client(config.SUPABASE_URL, config.SUPABASE_ANON_KEY)),
    )


# --- Dépendances FastAPI ---

def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not configured")
    return services


def get_engine(request: Request) -> ReconciliationEngine:
    return get_services(request).engine


def get_order_service(request: Request) -> OrderService:
    return get_services(request).orders


def get_lifecycle(request: Request) -> OrderLifecycle:
    return get_services(request).lifecycle


def get_fulfillment(request: Request) -> FulfillmentService:
    return get_services(request).fulfillment


def get_gateway(request: Request) -> PaystackClient:
    return get_services(request).gateway
