"""Couche service lecture des commandes.
Rôles:
- Lire une commande (id, numéro), une pending order, la liste paginée.
- Appliquer la règle de propriété: un admin voit tout, un utilisateur uniquement ses lignes
  (sinon 404, pour ne pas révéler l'existence de la ressource).
- Statistiques admin (compte par statut, chiffre d'affaires hors annulées).
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from grocery.errors import NotFoundError, ValidationError
from grocery.orders.lifecycle import ORDER_STATUSES
from grocery.payments.amounts import as_public_amount, to_decimal, to_major

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def is_admin(user: Dict[str, Any]) -> bool:
    return (user or {}).get("role") == "admin"


def _owned(row: Optional[Dict[str, Any]], user: Dict[str, Any], label: str) -> Dict[str, Any]:
    if not row or (not is_admin(user) and row.get("user_id") != user.get("id")):
        raise NotFoundError(f"{label} not found")
    return row


def present_order(order: Dict[str, Any]) -> Dict[str, Any]:
    """Montants en unités majeures (2 décimales) pour l'API publique."""
    out = dict(order)
    for key in ("subtotal", "discount", "credits", "total_amount", "provider_fees"):
        if out.get(key) is not None:
            out[key] = as_public_amount(out[key])
    return out


def present_pending(pending: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": pending.get("id"),
        "paymentReference": pending.get("payment_reference"),
        "paymentStatus": pending.get("payment_status"),
        "amount": as_public_amount(pending.get("total_amount") or 0),
        "currency": pending.get("currency"),
        "items": pending.get("cart_snapshot") or [],
        "deliveryAddress": pending.get("delivery_address") or {},
        "authorizationUrl": pending.get("authorization_url"),
        "convertedToOrderId": pending.get("converted_to_order_id"),
        "expiresAt": pending.get("expires_at"),
        "createdAt": pending.get("created_at"),
    }


# module grocery.orders.service
class OrderService:
    def __init__(self, repository):
        self.repository = repository

    def get_order(self, order_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
        return _owned(self.repository.get_order_by_id(order_id), user, "Order")

    def get_order_by_number(self, order_number: str, user: Dict[str, Any]) -> Dict[str, Any]:
        return _owned(self.repository.get_order_by_number(order_number), user, "Order")

    def get_pending(self, pending_order_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
        return _owned(self.repository.get_pending_by_id(pending_order_id), user, "Pending order")

    def get_pending_by_reference(self, reference: str, user: Dict[str, Any]) -> Dict[str, Any]:
        """Utilisé avant confirm/check_status pour vérifier que la référence appartient à l'utilisateur."""
        return _owned(self.repository.get_pending_by_reference(reference), user, "Pending order")

    def list_orders(self, user: Dict[str, Any], page: int = 1, limit: int = 20, status: Optional[str] = None) -> Dict[str, Any]:
        """
        Liste paginée (page >= 1, 1 <= limit <= 100).
        Un admin voit toutes les commandes, un utilisateur les siennes.
        """
        if status and status not in ORDER_STATUSES:
            raise ValidationError(f"Unknown order status: {status}", code="unknown_status")
        page = max(int(page or 1), 1)
        limit = min(max(int(limit or 20), 1), MAX_PAGE_SIZE)
        rows, total = self.repository.list_orders(
            user_id=None if is_admin(user) else user.get("id"),
            status=status,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return {
            "orders": [present_order(r) for r in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": (total + limit - 1) // limit if total else 0,
            },
        }

    def stats(self) -> Dict[str, Any]:
        rows = self.repository.list_order_totals()
        by_status = {s: 0 for s in sorted(ORDER_STATUSES)}
        revenue = Decimal("0")
        billable = 0
        for row in rows:
            status = row.get("status") or "pending"
            by_status[status] = by_status.get(status, 0) + 1
            if status != "cancelled":
                revenue += to_decimal(row.get("total_amount") or 0)
                billable += 1
        average = to_major(revenue / billable) if billable else Decimal("0.00")
        return {
            "totalOrders": len(rows),
            "byStatus": by_status,
            "totalRevenue": as_public_amount(revenue),
            "averageOrderValue": as_public_amount(average),
        }
