"""
Cycle de vie d'une commande après paiement: confirmed -> processing -> delivered, ou cancelled.
Indépendant du paiement: annuler une commande payée ne rembourse rien, cela pose refund_required
pour le collaborateur externe et libère le stock engagé.
"""
import logging
from typing import Any, Callable, Dict, Optional

from grocery.errors import ConflictError, NotFoundError, ValidationError
from grocery.utils.timeutils import iso, utcnow

logger = logging.getLogger(__name__)

FORWARD_ORDER = ["pending", "confirmed", "processing", "delivered"]
ORDER_STATUSES = set(FORWARD_ORDER) | {"cancelled"}
USER_CANCELLABLE = {"pending", "confirmed"}
ADMIN_CANCELLABLE = {"pending", "confirmed", "processing"}


def can_transition(current: str, target: str, *, admin: bool = True) -> bool:
    """Avancer (sauts autorisés) ou annuler depuis un état annulable. Jamais de retour arrière."""
    if target == "cancelled":
        return current in (ADMIN_CANCELLABLE if admin else USER_CANCELLABLE)
    if current not in FORWARD_ORDER or target not in FORWARD_ORDER:
        return False
    return FORWARD_ORDER.index(target) > FORWARD_ORDER.index(current)


# module grocery.orders.lifecycle
class OrderLifecycle:
    def __init__(self, repository, fulfillment, clock: Callable = utcnow):
        self.repository = repository
        self.fulfillment = fulfillment
        self.clock = clock

    def _load(self, order_id: str) -> Dict[str, Any]:
        order = self.repository.get_order_by_id(order_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    def _record(self, order_id: str, from_status: Optional[str], to_status: str, actor: Dict[str, Any], reason: Optional[str]) -> None:
        self.repository.append_status_history({
            "order_id": order_id,
            "from_status": from_status,
            "to_status": to_status,
            "changed_by": actor.get("id"),
            "reason": reason,
            "created_at": iso(self.clock()),
        })

    def update_status(self, order_id: str, status: str, reason: Optional[str], actor: Dict[str, Any]) -> Dict[str, Any]:
        """
        Mise à jour admin du statut de livraison.
        - statut inconnu ou transition non avant -> ValidationError (400)
        - 'cancelled' délègue à cancel()
        """
        target = (status or "").strip().lower()
        if target not in ORDER_STATUSES:
            raise ValidationError(f"Unknown order status: {status}", code="unknown_status")
        if target == "cancelled":
            return self.cancel(order_id, reason, actor, admin=True)

        order = self._load(order_id)
        current = order.get("status")
        if not can_transition(current, target):
            raise ValidationError(f"Cannot move order from {current} to {target}", code="invalid_transition")

        now = iso(self.clock())
        changes = {"status": target, "updated_at": now}
        if target == "delivered":
            changes["delivered_at"] = now
        updated = self.repository.update_order(order_id, changes, expected={"status": [current]})
        if not updated:
            raise ConflictError("Order status changed concurrently", code="stale_status")

        self._record(order_id, current, target, actor, reason)
        logger.info("lifecycle.status order_id=%s %s->%s by=%s", order_id, current, target, actor.get("id"))
        return updated

    def cancel(self, order_id: str, reason: Optional[str], actor: Dict[str, Any], *, admin: bool = False) -> Dict[str, Any]:
        order = self._load(order_id)
        if not admin and order.get("user_id") != actor.get("id"):
            raise NotFoundError("Order not found")

        current = order.get("status")
        if current == "cancelled":
            return order
        if not can_transition(current, "cancelled", admin=admin):
            raise ValidationError(f"Order cannot be cancelled (status={current})", code="not_cancellable")

        now = iso(self.clock())
        updated = self.repository.update_order(
            order_id,
            {
                "status": "cancelled",
                "cancelled_at": now,
                "cancellation_reason": reason,
                "refund_required": order.get("payment_status") == "paid",
                "updated_at": now,
            },
            expected={"status": [current]},
        )
        if not updated:
            raise ConflictError("Order status changed concurrently", code="stale_status")

        self.fulfillment.release_stock(updated)
        self._record(order_id, current, "cancelled", actor, reason)
        logger.info(
            "lifecycle.cancelled order_id=%s from=%s refund_required=%s by=%s",
            order_id, current, updated.get("refund_required"), actor.get("id"),
        )
        return self.repository.get_order_by_id(order_id) or updated
