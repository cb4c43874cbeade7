"""
Traitement des événements Paystack déjà authentifiés (signature vérifiée par la vue).
Exécuté en tâche de fond: la réponse 200 part avant le traitement.
- charge.success / charge.failed: confirm(reference, "webhook"), puis facture/notification si commit
- refund.* / transfer.*: ajout à l'audit payment_transactions uniquement
- autres: ignorés
"""
import logging
from typing import Any, Dict

from grocery.errors import NotFoundError
from grocery.utils.timeutils import iso, utcnow

logger = logging.getLogger(__name__)

CONFIRM_EVENTS = {"charge.success", "charge.failed"}
AUDIT_PREFIXES = ("refund.", "transfer.")


def _audit_status(provider_status: str) -> str:
    provider_status = (provider_status or "").lower()
    if provider_status in ("success", "processed"):
        return "success"
    if provider_status in ("failed", "reversed"):
        return "failed"
    return "pending"


def _audit_reference(data: Dict[str, Any]) -> str | None:
    transaction = data.get("transaction") or {}
    return data.get("transaction_reference") or transaction.get("reference") or data.get("reference")


# module grocery.payments.webhook
def process_webhook_event(services, event: Dict[str, Any]) -> Dict[str, Any]:
    event_type = str((event or {}).get("event") or "")
    data = (event or {}).get("data") or {}

    if event_type in CONFIRM_EVENTS:
        reference = data.get("reference")
        if not reference:
            logger.warning("webhook.%s without reference", event_type)
            return {"status": "ignored"}
        try:
            result = services.engine.confirm(reference, source="webhook")
        except NotFoundError:
            logger.warning("webhook.%s unknown reference=%s", event_type, reference)
            return {"status": "unknown_reference"}
        if result.committed:
            services.fulfillment.dispatch(result.order["id"])
        logger.info("webhook.%s reference=%s outcome=%s", event_type, reference, result.outcome)
        return {"status": result.outcome}

    if event_type.startswith(AUDIT_PREFIXES):
        reference = _audit_reference(data)
        services.repository.append_transaction({
            "provider_reference": reference,
            "event_type": event_type,
            "status": _audit_status(data.get("status")),
            "raw_provider_payload": data,
            "created_at": iso(utcnow()),
        })
        logger.info("webhook.%s recorded reference=%s", event_type, reference)
        return {"status": "recorded"}

    logger.debug("webhook.%s ignored", event_type)
    return {"status": "ignored"}


def run_webhook_event(services, event: Dict[str, Any]) -> None:
    """Enveloppe de tâche de fond: une erreur est loggée (Paystack a déjà reçu 200, confirm() est rejouable)."""
    try:
        process_webhook_event(services, event)
    except Exception:
        logger.exception("webhook processing failed event=%s", (event or {}).get("event"))
