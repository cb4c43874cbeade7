"""
Moteur de réconciliation: transforme une intention d'achat (pending order) en commande payée, une seule fois.

Deux canaux concurrents et non ordonnés appellent confirm(): le client (verify) et le webhook Paystack.
- confirm() est rejouable: chaque appel relit l'état, interroge Paystack et tente l'insert.
- La contrainte UNIQUE(orders.payment_reference) départage les appels simultanés: le perdant relit la commande gagnante.
- Ordre des écritures: commande -> pending 'success' -> audit -> stock. Un crash entre deux étapes est réparé
  au prochain confirm() (ou par le sweeper pour le stock).
"""
import logging
import secrets
import string
import time
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from grocery.errors import (
    ConflictError,
    DuplicateOrderError,
    GatewayUnavailable,
    NotFoundError,
    ValidationError,
)
from grocery.orders import cart as cart_logic
from grocery.orders.results import Committed, ConfirmResult, Failed, Pending
from grocery.payments.amounts import as_public_amount, from_minor_units, to_minor_units
from grocery.utils.timeutils import iso, utcnow

logger = logging.getLogger(__name__)

FAILED_STATUSES = {"failed", "abandoned", "reversed"}
OPEN_STATUSES = ["initialized", "expired"]
SOURCES = {"verify", "webhook", "sweeper"}
_ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
_MAX_NUMBER_ATTEMPTS = 3


def _random_block(size: int = 4) -> str:
    return "".join(secrets.choice(_ORDER_NUMBER_ALPHABET) for _ in range(size))


def generate_order_number() -> str:
    """ORD-XXXX-XXXX (alphabet A-Z0-9)."""
    return f"ORD-{_random_block()}-{_random_block()}"


def generate_invoice_number() -> str:
    """8 derniers chiffres de l'epoch en ms + 2 chiffres aléatoires."""
    return f"{str(int(time.time() * 1000))[-8:]}{secrets.randbelow(100):02d}"


# module grocery.orders.reconciliation
class ReconciliationEngine:
    def __init__(
        self,
        repository,
        gateway,
        fulfillment,
        *,
        currency: str = "GHS",
        callback_base_url: str = "",
        reference_prefix: str = "GROV",
        pending_ttl_minutes: int = 30,
        clock: Callable = utcnow,
    ):
        self.repository = repository
        self.gateway = gateway
        self.fulfillment = fulfillment
        self.currency = currency
        self.callback_base_url = (callback_base_url or "").rstrip("/")
        self.reference_prefix = reference_prefix
        self.pending_ttl = timedelta(minutes=pending_ttl_minutes)
        self.clock = clock

    # --- Ouverture ---

    def open_pending(
        self,
        user: Dict[str, Any],
        cart_items: List[Dict[str, Any]],
        address: Optional[Dict[str, Any]],
        discount: Any = 0,
        credits: Any = 0,
        delivery_notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Checkout: valide le panier, le re-chiffre depuis le catalogue, crée la pending order
        puis initialise la transaction Paystack.
        - Panier vide / adresse incomplète / produit indisponible -> ValidationError
        - Paystack injoignable -> pending order 'failed' puis GatewayUnavailable
        Retour: {pendingOrderId, paymentReference, authorizationUrl, accessCode, amount, amountMinorUnits}
        """
        email = (user.get("email") or "").strip()
        if not email:
            raise ValidationError("User email is required for payment", code="missing_email")

        quantities = cart_logic.aggregate_quantities(cart_items)
        delivery_address = cart_logic.validate_address(address)
        products = self.repository.fetch_products(list(quantities.keys()))
        products_by_id = {str(p.get("id")): p for p in products}
        snapshot = cart_logic.build_snapshot(products_by_id, quantities)
        totals = cart_logic.compute_totals(snapshot, discount, credits)
        amount_minor = to_minor_units(totals["total"])

        now = self.clock()
        pending_id = str(uuid4())
        reference = self.gateway.generate_reference(self.reference_prefix)
        pending = self.repository.insert_pending({
            "id": pending_id,
            "user_id": user["id"],
            "payment_reference": reference,
            "cart_snapshot": snapshot,
            "delivery_address": delivery_address,
            "delivery_notes": delivery_notes,
            "subtotal": str(totals["subtotal"]),
            "discount": str(totals["discount"]),
            "credits": str(totals["credits"]),
            "total_amount": str(totals["total"]),
            "amount_minor_units": amount_minor,
            "currency": self.currency,
            "customer_email": email,
            "customer_name": user.get("full_name") or user.get("name"),
            "payment_status": "initialized",
            "review_required": False,
            "created_at": iso(now),
            "updated_at": iso(now),
            "expires_at": iso(now + self.pending_ttl),
        })

        callback_url = None
        if self.callback_base_url:
            callback_url = f"{self.callback_base_url}/payment/callback?pending_order_id={pending_id}"
        metadata = {
            "pending_order_id": pending_id,
            "user_id": user["id"],
            "custom_fields": [
                {"display_name": "Order Type", "variable_name": "order_type", "value": "grocery"},
                {"display_name": "Items", "variable_name": "item_count", "value": str(sum(quantities.values()))},
            ],
        }

        try:
            init = self.gateway.initialize(email, amount_minor, reference, callback_url, metadata)
        except GatewayUnavailable:
            logger.warning("reconciliation.open_pending gateway unavailable reference=%s", reference)
            self.repository.update_pending(
                reference,
                {"payment_status": "failed", "failure_reason": "gateway_unavailable", "updated_at": iso(self.clock())},
                expected={"payment_status": ["initialized"]},
            )
            raise

        self.repository.update_pending(reference, {
            "authorization_url": init.get("authorizationUrl"),
            "access_code": init.get("accessCode"),
            "updated_at": iso(self.clock()),
        })
        self.repository.append_transaction({
            "provider_reference": reference,
            "pending_order_id": pending_id,
            "user_id": user["id"],
            "status": "pending",
            "amount": str(totals["total"]),
            "currency": self.currency,
            "raw_provider_payload": init,
            "created_at": iso(self.clock()),
        })
        logger.info("reconciliation.opened reference=%s amount_minor=%s", reference, amount_minor)

        return {
            "pendingOrderId": pending.get("id") or pending_id,
            "paymentReference": reference,
            "authorizationUrl": init.get("authorizationUrl"),
            "accessCode": init.get("accessCode"),
            "amount": as_public_amount(totals["total"]),
            "amountMinorUnits": amount_minor,
        }

    # --- Confirmation ---

    def confirm(self, reference: str, source: str = "verify") -> ConfirmResult:
        """
        Point d'entrée unique et rejouable (verify, webhook, sweeper).
        Retour: Committed(order) | Failed(reason) | Pending(status). Référence inconnue -> NotFoundError.
        Le payload du webhook n'est qu'un indice: l'état fait foi uniquement via verify() Paystack.
        """
        if source not in SOURCES:
            raise ValueError(f"unknown confirm source: {source}")

        pending = self.repository.get_pending_by_reference(reference)
        if not pending:
            raise NotFoundError("Pending order not found")

        existing = self.repository.get_order_by_reference(reference)
        if existing:
            self._mark_converted(pending, existing, None)
            return Committed(existing, created=False)

        status = pending.get("payment_status")
        if status == "failed":
            return Failed(pending.get("failure_reason") or "payment_failed", bool(pending.get("review_required")))
        if status == "cancelled" and pending.get("review_required"):
            return Failed("pending_order_cancelled", review_required=True)

        try:
            verification = self.gateway.verify(reference)
        except GatewayUnavailable:
            logger.warning("reconciliation.confirm gateway unavailable reference=%s source=%s", reference, source)
            return Pending("unknown", reason="gateway_unavailable")

        provider_status = verification.get("status") or ""
        if status == "cancelled":
            return self._cancelled_outcome(pending, provider_status, source)

        if provider_status == "success":
            if verification.get("amountMinorUnits") != int(pending.get("amount_minor_units") or 0):
                return self._amount_mismatch(pending, verification, source)
            return self._commit(pending, verification, source)

        if provider_status in FAILED_STATUSES:
            updated = self.repository.update_pending(
                reference,
                {"payment_status": "failed", "failure_reason": provider_status, "updated_at": iso(self.clock())},
                expected={"payment_status": OPEN_STATUSES},
            )
            if updated:
                self.repository.append_transaction(self._transaction_row(pending, verification, "failed"))
                logger.info("reconciliation.failed reference=%s status=%s source=%s", reference, provider_status, source)
            return Failed(provider_status)

        return Pending(provider_status or "unknown")

    def _cancelled_outcome(self, pending: Dict[str, Any], provider_status: str, source: str) -> ConfirmResult:
        if provider_status != "success":
            return Failed("pending_order_cancelled")
        # Payé après annulation: jamais de commande, remboursement manuel.
        self.repository.update_pending(
            pending["payment_reference"],
            {"review_required": True, "failure_reason": "pending_order_cancelled", "updated_at": iso(self.clock())},
            expected={"payment_status": ["cancelled"]},
        )
        logger.error(
            "reconciliation.paid_after_cancel reference=%s source=%s",
            pending["payment_reference"], source,
        )
        return Failed("pending_order_cancelled", review_required=True)

    def _amount_mismatch(self, pending: Dict[str, Any], verification: Dict[str, Any], source: str) -> Failed:
        reference = pending["payment_reference"]
        updated = self.repository.update_pending(
            reference,
            {
                "payment_status": "failed",
                "failure_reason": "amount_mismatch",
                "review_required": True,
                "updated_at": iso(self.clock()),
            },
            expected={"payment_status": OPEN_STATUSES},
        )
        if updated:
            self.repository.append_transaction(self._transaction_row(pending, verification, "failed"))
        logger.error(
            "reconciliation.amount_mismatch reference=%s expected=%s paid=%s source=%s",
            reference, pending.get("amount_minor_units"), verification.get("amountMinorUnits"), source,
        )
        return Failed("amount_mismatch", review_required=True)

    def _commit(self, pending: Dict[str, Any], verification: Dict[str, Any], source: str) -> Committed:
        reference = pending["payment_reference"]
        order = None
        created = False
        for _ in range(_MAX_NUMBER_ATTEMPTS):
            try:
                order = self.repository.insert_order(self._order_row(pending, verification))
                created = True
                break
            except DuplicateOrderError:
                order = self.repository.get_order_by_reference(reference)
                if order:
                    logger.info("reconciliation.duplicate_lost reference=%s source=%s", reference, source)
                    break
                # Collision sur order_number: on retente avec de nouveaux numéros.
        if not order:
            raise ConflictError("Could not allocate a unique order number", code="order_number_collision")

        self._mark_converted(pending, order, verification)
        if not created:
            return Committed(order, created=False)

        now = iso(self.clock())
        self.repository.append_status_history({
            "order_id": order["id"],
            "from_status": None,
            "to_status": "confirmed",
            "changed_by": None,
            "reason": f"Payment confirmed via {source}",
            "created_at": now,
        })
        self.repository.append_transaction(self._transaction_row(pending, verification, "success", order["id"]))
        self.fulfillment.commit_stock(order)
        logger.info(
            "reconciliation.committed reference=%s order_id=%s order_number=%s source=%s",
            reference, order["id"], order.get("order_number"), source,
        )
        return Committed(order, created=True)

    def _mark_converted(self, pending: Dict[str, Any], order: Dict[str, Any], verification: Optional[Dict[str, Any]]) -> None:
        """Pending -> success, lié à la commande. No-op si déjà fait (réparation après crash sinon)."""
        if pending.get("payment_status") == "success":
            return
        now = iso(self.clock())
        changes = {
            "payment_status": "success",
            "converted_to_order_id": order["id"],
            "converted_at": now,
            "updated_at": now,
        }
        if verification and verification.get("paidAt"):
            changes["paid_at"] = verification["paidAt"]
        self.repository.update_pending(pending["payment_reference"], changes, expected={"payment_status": OPEN_STATUSES})

    def _order_row(self, pending: Dict[str, Any], verification: Dict[str, Any]) -> Dict[str, Any]:
        now = iso(self.clock())
        raw = verification.get("raw") or {}
        fees = raw.get("fees")
        return {
            "id": str(uuid4()),
            "order_number": generate_order_number(),
            "invoice_number": generate_invoice_number(),
            "user_id": pending.get("user_id"),
            "payment_reference": pending["payment_reference"],
            "pending_order_id": pending.get("id"),
            "items": pending.get("cart_snapshot") or [],
            "delivery_address": pending.get("delivery_address") or {},
            "delivery_notes": pending.get("delivery_notes"),
            "subtotal": pending.get("subtotal"),
            "discount": pending.get("discount"),
            "credits": pending.get("credits"),
            "total_amount": str(from_minor_units(pending.get("amount_minor_units") or 0)),
            "currency": pending.get("currency") or self.currency,
            "customer_email": pending.get("customer_email"),
            "customer_name": pending.get("customer_name"),
            "status": "confirmed",
            "payment_status": "paid",
            "payment_method": verification.get("channel"),
            "paid_at": verification.get("paidAt") or now,
            "provider_transaction_id": str(raw["id"]) if raw.get("id") is not None else None,
            "provider_fees": str(from_minor_units(fees)) if fees is not None else None,
            "stock_status": "pending",
            "invoice_status": "pending",
            "notification_status": "pending",
            "refund_required": False,
            "created_at": now,
            "updated_at": now,
        }

    def _transaction_row(
        self,
        pending: Dict[str, Any],
        verification: Dict[str, Any],
        status: str,
        order_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        paid = verification.get("amountMinorUnits")
        return {
            "provider_reference": pending["payment_reference"],
            "pending_order_id": pending.get("id"),
            "order_id": order_id,
            "user_id": pending.get("user_id"),
            "status": status,
            "amount": str(from_minor_units(paid)) if paid is not None else None,
            "currency": verification.get("currency") or pending.get("currency"),
            "paid_at": verification.get("paidAt"),
            "raw_provider_payload": verification.get("raw") or {},
            "created_at": iso(self.clock()),
        }

    # --- Lecture / annulation / expiration ---

    def check_status(self, reference: str) -> Dict[str, Any]:
        """
        Statut courant côté Paystack, pour affichage. Aucune écriture.
        Paystack injoignable: status "unknown" avec details.reason, pas d'erreur.
        """
        pending = self.repository.get_pending_by_reference(reference)
        if not pending:
            raise NotFoundError("Pending order not found")
        order = self.repository.get_order_by_reference(reference)
        reason = None
        try:
            verification = self.gateway.verify(reference)
        except GatewayUnavailable:
            logger.warning("reconciliation.check_status gateway unavailable reference=%s", reference)
            verification, reason = {}, "gateway_unavailable"
        paid = verification.get("amountMinorUnits")
        details = {
            "reference": reference,
            "amount": as_public_amount(from_minor_units(paid)) if paid is not None else None,
            "currency": verification.get("currency"),
            "paidAt": verification.get("paidAt"),
            "channel": verification.get("channel"),
            "pendingOrderStatus": pending.get("payment_status"),
            "orderId": order.get("id") if order else None,
        }
        if reason:
            details["reason"] = reason
        return {"status": verification.get("status") or "unknown", "details": details}

    def cancel_pending(self, pending_order_id: str, user_id: Optional[str]) -> Dict[str, Any]:
        """
        Annule une intention d'achat encore 'initialized' (état terminal).
        - user_id None = appel admin (pas de contrôle de propriété)
        - pending 'success' -> ConflictError; déjà annulée -> retournée telle quelle
        """
        pending = self.repository.get_pending_by_id(pending_order_id)
        if not pending or (user_id is not None and pending.get("user_id") != user_id):
            raise NotFoundError("Pending order not found")

        status = pending.get("payment_status")
        if status == "cancelled":
            return pending
        if status == "initialized":
            updated = self.repository.update_pending(
                pending["payment_reference"],
                {"payment_status": "cancelled", "updated_at": iso(self.clock())},
                expected={"payment_status": ["initialized"]},
            )
            if updated:
                logger.info("reconciliation.pending_cancelled reference=%s", pending["payment_reference"])
                return updated
            status = (self.repository.get_pending_by_id(pending_order_id) or {}).get("payment_status")
        if status == "success":
            raise ConflictError("Pending order has already been paid", code="already_paid")
        if status == "cancelled":
            return self.repository.get_pending_by_id(pending_order_id) or pending
        raise ValidationError(f"Pending order cannot be cancelled (status={status})", code="not_cancellable")

    def expire_stale(self, now=None) -> int:
        """Marque 'expired' les pending orders initialisées dont le délai est dépassé. Idempotent."""
        now = now or self.clock()
        rows = self.repository.expire_pending(iso(now), {"payment_status": "expired", "updated_at": iso(now)})
        if rows:
            logger.info("reconciliation.expired count=%s", len(rows))
        return len(rows)
