import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from grocery.errors import SignatureInvalid, ValidationError
from grocery.infra.container import Services, get_services
from grocery.payments.paystack_client import SIGNATURE_HEADER
from grocery.payments.webhook import run_webhook_event

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


# module grocery.payments.views
@router.post("/payment", include_in_schema=False)
async def payment_webhook(request: Request, background_tasks: BackgroundTasks, services: Services = Depends(get_services)):
    """
    Webhook Paystack.
    - Signature: HMAC-SHA512 du body brut (en-tête x-paystack-signature), vérifiée AVANT tout parsing
    - Signature invalide -> 400, rien n'est traité
    - Sinon 200 immédiat; le traitement (confirm) part en tâche de fond
    """
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    if not services.gateway.validate_webhook_signature(raw_body, signature):
        logger.warning(
            "webhook rejected: invalid signature from %s",
            request.client.host if request.client else "unknown",
        )
        raise SignatureInvalid()

    try:
        event = json.loads(raw_body or b"{}")
    except ValueError:
        event = None
    if not isinstance(event, dict):
        raise ValidationError("Invalid webhook payload", code="invalid_payload")

    background_tasks.add_task(run_webhook_event, services, event)
    return {"status": "accepted"}
