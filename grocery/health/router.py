from fastapi import APIRouter, Request

from grocery import config
from grocery.utils.rate_limit import rate_limit_health_info

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
def health_root():
    return {"ok": True}


@router.get("/payments")
def health_payments(request: Request):
    """État de configuration (sans secrets): Supabase, Paystack, collaborateurs, rate limiting."""
    services = getattr(request.app.state, "services", None)
    return {
        "servicesReady": services is not None,
        "supabaseConfigured": bool(config.SUPABASE_URL and config.SUPABASE_SERVICE_KEY),
        "paystackConfigured": bool(services.gateway.configured) if services else bool(config.PAYSTACK_SECRET_KEY),
        "currency": config.PAYSTACK_CURRENCY,
        "invoiceRendererConfigured": bool(config.INVOICE_RENDERER_URL),
        "notifierConfigured": bool(config.NOTIFIER_URL),
        "pendingOrderTtlMinutes": config.PENDING_ORDER_TTL_MINUTES,
        "rateLimit": rate_limit_health_info(request),
    }
