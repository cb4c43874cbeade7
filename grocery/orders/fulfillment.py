"""
Effets de bord post-commit: stock, facture, notification.

Chaque commande porte trois colonnes d'état (stock_status, invoice_status, notification_status),
à 'pending' dès l'insert: c'est la boîte d'envoi (outbox). Facture et notification sont « réclamées »
par un update conditionnel pending|failed -> in_progress avant d'être exécutées, ce qui empêche deux
workers (requête, webhook, sweeper) de les appliquer deux fois. Le stock passe par une fonction SQL
qui fait la transition d'état et l'ajustement de toutes les lignes dans la même transaction.

Un échec n'annule jamais la commande: il est enregistré ('failed') et repris par le sweeper.
Le rendu PDF et l'envoi d'email sont des collaborateurs externes joints en HTTP.
"""
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

import httpx

from grocery.utils.timeutils import iso, utcnow

logger = logging.getLogger(__name__)

RETRYABLE = ("pending", "failed")


class InvoiceRenderer:
    """Client du service de rendu de factures (PDF + image)."""

    def __init__(self, url: str, *, timeout: float = 15.0, http_client: Optional[httpx.Client] = None):
        self.url = url or ""
        self._http = http_client or httpx.Client(timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def close(self) -> None:
        self._http.close()

    def render(self, invoice: Dict[str, Any]) -> Dict[str, Any]:
        """POST invoice -> {pdfUrl, imageUrl}. Lève httpx.HTTPError en cas d'échec."""
        resp = self._http.post(self.url, json=invoice)
        resp.raise_for_status()
        body = resp.json() or {}
        return {"pdfUrl": body.get("pdfUrl"), "imageUrl": body.get("imageUrl")}


class Notifier:
    """Client du service d'envoi d'emails transactionnels."""

    def __init__(self, url: str, *, timeout: float = 15.0, http_client: Optional[httpx.Client] = None):
        self.url = url or ""
        self._http = http_client or httpx.Client(timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def close(self) -> None:
        self._http.close()

    def send_invoice(self, email: str, payload: Dict[str, Any]) -> None:
        resp = self._http.post(self.url, json={"template": "invoice", "to": email, "data": payload})
        resp.raise_for_status()


def build_invoice_payload(order: Dict[str, Any]) -> Dict[str, Any]:
    address = order.get("delivery_address") or {}
    parts = [address.get("street"), address.get("city"), address.get("region")]
    return {
        "invoiceNumber": order.get("invoice_number"),
        "orderNumber": order.get("order_number"),
        "date": order.get("created_at"),
        "customerName": order.get("customer_name") or "Customer",
        "customerEmail": order.get("customer_email"),
        "customerPhone": address.get("phone"),
        "customerAddress": ", ".join(p for p in parts if p),
        "items": [
            {
                "description": item.get("name") or "",
                "quantity": item.get("quantity") or 0,
                "unitPrice": item.get("unitPriceAtCheckout"),
                "total": item.get("total"),
            }
            for item in order.get("items") or []
        ],
        "subtotal": order.get("subtotal"),
        "discount": order.get("discount"),
        "credits": order.get("credits"),
        "totalAmount": order.get("total_amount"),
        "currency": order.get("currency"),
    }


# module grocery.orders.fulfillment
class FulfillmentService:
    def __init__(
        self,
        repository,
        renderer: Optional[InvoiceRenderer] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable = utcnow,
    ):
        self.repository = repository
        self.renderer = renderer
        self.notifier = notifier
        self.clock = clock

    def close(self) -> None:
        """Ferme les clients HTTP des collaborateurs (arrêt de l'application)."""
        for collaborator in (self.renderer, self.notifier):
            if collaborator is not None:
                collaborator.close()

    def _claim(self, order_id: str, field: str, from_statuses=RETRYABLE) -> Optional[Dict[str, Any]]:
        return self.repository.update_order(
            order_id,
            {field: "in_progress", "updated_at": iso(self.clock())},
            expected={field: list(from_statuses)},
        )

    def _finish(self, order_id: str, field: str, status: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        changes = {field: status, "updated_at": iso(self.clock())}
        changes.update(extra or {})
        return self.repository.update_order(order_id, changes) or {}

    def commit_stock(self, order: Dict[str, Any]) -> bool:
        """
        Décrémente le stock de la commande, une seule fois.
        Toutes les lignes et le passage à 'done' partent dans la même transaction SQL: un échec
        ne laisse aucune ligne décrémentée, et une commande annulée entre-temps n'est pas touchée.
        Retour: True si appliqué maintenant, False si déjà fait, neutralisé ou en échec.
        """
        order_id = order["id"]
        try:
            applied = self.repository.commit_order_stock(order_id)
        except Exception:
            logger.exception("fulfillment.commit_stock failed order_id=%s", order_id)
            self.repository.update_order(
                order_id,
                {"stock_status": "failed", "updated_at": iso(self.clock())},
                expected={"stock_status": ["pending"]},
            )
            return False
        return applied

    def release_stock(self, order: Dict[str, Any]) -> bool:
        """
        Annulation: ré-incrémente le stock s'il avait été engagé.
        Si l'engagement n'a pas encore eu lieu, il est neutralisé ('skipped') pour que le sweeper ne l'applique pas.
        """
        order_id = order["id"]
        now = iso(self.clock())
        if self.repository.update_order(order_id, {"stock_status": "skipped", "updated_at": now}, expected={"stock_status": list(RETRYABLE)}):
            return False
        try:
            return self.repository.release_order_stock(order_id)
        except Exception:
            logger.exception("fulfillment.release_stock failed order_id=%s", order_id)
            self.repository.update_order(order_id, {"stock_status": "release_failed", "updated_at": now}, expected={"stock_status": ["done"]})
            return False

    def generate_invoice(self, order: Dict[str, Any]) -> Dict[str, Any]:
        """Rend la facture et enregistre les URLs sur la commande. Retourne la commande à jour."""
        order_id = order["id"]
        if not self._claim(order_id, "invoice_status"):
            return order
        if not self.renderer or not self.renderer.configured:
            logger.warning("fulfillment.invoice skipped (no renderer) order_id=%s", order_id)
            return self._finish(order_id, "invoice_status", "skipped") or order
        try:
            urls = self.renderer.render(build_invoice_payload(order))
        except Exception:
            logger.exception("fulfillment.generate_invoice failed order_id=%s", order_id)
            return self._finish(order_id, "invoice_status", "failed") or order
        return self._finish(order_id, "invoice_status", "done", {
            "invoice_pdf_url": urls.get("pdfUrl"),
            "invoice_image_url": urls.get("imageUrl"),
        }) or order

    def notify(self, order: Dict[str, Any]) -> bool:
        """Envoie la facture au client; n'a lieu qu'une fois la facture rendue."""
        order_id = order["id"]
        invoice_status = order.get("invoice_status")
        if invoice_status not in ("done", "skipped"):
            return False
        if not self._claim(order_id, "notification_status"):
            return False
        if invoice_status == "skipped":
            self._finish(order_id, "notification_status", "skipped")
            return False
        email = (order.get("customer_email") or "").strip()
        if not email or not self.notifier or not self.notifier.configured:
            self._finish(order_id, "notification_status", "skipped")
            return False
        try:
            self.notifier.send_invoice(email, {
                "customerName": order.get("customer_name") or "Customer",
                "orderNumber": order.get("order_number"),
                "invoicePdfUrl": order.get("invoice_pdf_url") or "",
            })
        except Exception:
            logger.exception("fulfillment.notify failed order_id=%s", order_id)
            self._finish(order_id, "notification_status", "failed")
            return False
        self._finish(order_id, "notification_status", "done")
        return True

    def dispatch(self, order_id: str) -> Dict[str, Any]:
        """
        Exécute les étapes en attente d'une commande (appelé en tâche de fond après le commit).
        Ordre: stock (si pas encore fait), facture, notification.
        """
        order = self.repository.get_order_by_id(order_id)
        if not order:
            logger.warning("fulfillment.dispatch order not found order_id=%s", order_id)
            return {}
        if order.get("status") == "cancelled":
            for field in ("invoice_status", "notification_status"):
                if order.get(field) in RETRYABLE:
                    self.repository.update_order(order_id, {field: "skipped"}, expected={field: list(RETRYABLE)})
            return self.repository.get_order_by_id(order_id) or order
        if order.get("stock_status") in RETRYABLE:
            self.commit_stock(order)
        if order.get("invoice_status") in RETRYABLE:
            order = self.generate_invoice(order)
        if order.get("notification_status") in RETRYABLE:
            self.notify(order)
        return self.repository.get_order_by_id(order_id) or order

    def retry_outstanding(self, grace_seconds: int = 120, limit: int = 50) -> int:
        """Reprend les effets de bord restés pending/failed au-delà du délai de grâce. Retourne le nombre traité."""
        cutoff = iso(self.clock() - timedelta(seconds=grace_seconds))
        rows = self.repository.list_orders_with_outstanding_side_effects(cutoff, limit=limit)
        for row in rows:
            try:
                self.dispatch(row["id"])
            except Exception:
                logger.exception("fulfillment.retry_outstanding failed order_id=%s", row.get("id"))
        return len(rows)
