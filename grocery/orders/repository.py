"""
Accès aux données commandes/paiements (Supabase, client service-role).
Tables: products (lecture seule), pending_orders, orders, payment_transactions, order_status_history.

Règles:
- orders.payment_reference est UNIQUE en base: insert_order() insère puis intercepte le doublon (23505)
  au lieu de vérifier avant d'insérer. C'est cette contrainte qui départage les confirmations concurrentes.
- Les transitions d'état passent par des updates conditionnels (expected={colonne: [valeurs]}):
  l'update ne touche la ligne que si elle est encore dans l'état attendu (compare-and-set).
- payment_transactions et order_status_history sont append-only.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from postgrest.exceptions import APIError

from grocery.errors import DuplicateOrderError

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def _error_code(e: APIError) -> Optional[str]:
    code = getattr(e, "code", None)
    if code:
        return str(code)
    if e.args and isinstance(e.args[0], dict):
        return e.args[0].get("code")
    return None


def _first(res) -> Optional[Dict[str, Any]]:
    data = res.data or []
    if isinstance(data, list):
        return data[0] if data else None
    return data or None


def _rpc_flag(res) -> bool:
    data = res.data
    if isinstance(data, list):
        data = data[0] if data else False
    return data is True


# module grocery.orders.repository
class OrderRepository:
    def __init__(self, client):
        self.client = client

    def _apply_expected(self, query, expected: Optional[Dict[str, Iterable[Any]]]):
        for column, values in (expected or {}).items():
            values = list(values)
            if len(values) == 1:
                query = query.eq(column, values[0])
            else:
                query = query.in_(column, values)
        return query

    # --- Catalogue (lecture) ---

    def fetch_products(self, ids: List[str]) -> List[Dict[str, Any]]:
        """Produits du catalogue par IDs (prix, stock). [] si ids vide."""
        if not ids:
            return []
        res = (
            self.client.table("products")
            .select("id, name, price, quantity, in_stock, category_name, images")
            .in_("id", [str(i) for i in ids])
            .execute()
        )
        return res.data or []

    def commit_order_stock(self, order_id: str) -> bool:
        """
        Décrémente toutes les lignes de la commande et passe stock_status à 'done', en une transaction.
        False si l'étape n'était plus pending/failed ou si la commande est annulée.
        """
        return _rpc_flag(self.client.rpc("commit_order_stock", {"p_order_id": order_id}).execute())

    def release_order_stock(self, order_id: str) -> bool:
        """Ré-incrémente toutes les lignes et passe stock_status de 'done' à 'released', en une transaction."""
        return _rpc_flag(self.client.rpc("release_order_stock", {"p_order_id": order_id}).execute())

    # --- Pending orders ---

    def insert_pending(self, row: Dict[str, Any]) -> Dict[str, Any]:
        res = self.client.table("pending_orders").insert(row).execute()
        return _first(res) or row

    def get_pending_by_reference(self, reference: str) -> Optional[Dict[str, Any]]:
        res = (
            self.client.table("pending_orders")
            .select("*")
            .eq("payment_reference", reference)
            .limit(1)
            .execute()
        )
        return _first(res)

    def get_pending_by_id(self, pending_order_id: str) -> Optional[Dict[str, Any]]:
        res = (
            self.client.table("pending_orders")
            .select("*")
            .eq("id", pending_order_id)
            .limit(1)
            .execute()
        )
        return _first(res)

    def update_pending(
        self,
        reference: str,
        changes: Dict[str, Any],
        *,
        expected: Optional[Dict[str, Iterable[Any]]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Update conditionnel d'une pending order.
        Retour: la ligne mise à jour, ou None si elle n'était plus dans l'état attendu.
        """
        query = self.client.table("pending_orders").update(changes).eq("payment_reference", reference)
        query = self._apply_expected(query, expected)
        return _first(query.execute())

    def expire_pending(self, now_iso: str, changes: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Passe en 'expired' les pending orders encore 'initialized' dont expires_at est dépassé."""
        res = (
            self.client.table("pending_orders")
            .update(changes)
            .eq("payment_status", "initialized")
            .lt("expires_at", now_iso)
            .execute()
        )
        return res.data or []

    # --- Orders ---

    def insert_order(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """
        Crée la commande. La contrainte UNIQUE(payment_reference) arbitre les courses:
        le perdant reçoit DuplicateOrderError et doit relire la commande gagnante.
        """
        try:
            res = self.client.table("orders").insert(row).execute()
        except APIError as e:
            if _error_code(e) == UNIQUE_VIOLATION:
                raise DuplicateOrderError(row.get("payment_reference") or "") from e
            raise
        return _first(res) or row

    def get_order_by_reference(self, reference: str) -> Optional[Dict[str, Any]]:
        res = (
            self.client.table("orders")
            .select("*")
            .eq("payment_reference", reference)
            .limit(1)
            .execute()
        )
        return _first(res)

    def get_order_by_id(self, order_id: str) -> Optional[Dict[str, Any]]:
        res = self.client.table("orders").select("*").eq("id", order_id).limit(1).execute()
        return _first(res)

    def get_order_by_number(self, order_number: str) -> Optional[Dict[str, Any]]:
        res = self.client.table("orders").select("*").eq("order_number", order_number).limit(1).execute()
        return _first(res)

    def update_order(
        self,
        order_id: str,
        changes: Dict[str, Any],
        *,
        expected: Optional[Dict[str, Iterable[Any]]] = None,
    ) -> Optional[Dict[str, Any]]:
        query = self.client.table("orders").update(changes).eq("id", order_id)
        query = self._apply_expected(query, expected)
        return _first(query.execute())

    def list_orders(
        self,
        *,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Liste paginée (tri created_at desc) + total exact."""
        query = self.client.table("orders").select("*", count="exact")
        if user_id:
            query = query.eq("user_id", user_id)
        if status:
            query = query.eq("status", status)
        res = query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
        rows = res.data or []
        return rows, int(getattr(res, "count", None) or len(rows))

    def list_order_totals(self) -> List[Dict[str, Any]]:
        """Colonnes minimales pour les statistiques admin."""
        res = self.client.table("orders").select("status, total_amount").execute()
        return res.data or []

    def list_orders_with_outstanding_side_effects(self, created_before_iso: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Commandes dont un effet de bord (stock, facture, notification) est encore pending/failed."""
        res = (
            self.client.table("orders")
            .select("*")
            .or_(
                "stock_status.in.(pending,failed),"
                "invoice_status.in.(pending,failed),"
                "notification_status.in.(pending,failed)"
            )
            .lt("created_at", created_before_iso)
            .order("created_at", desc=False)
            .limit(limit)
            .execute()
        )
        return res.data or []

    # --- Audit (append-only) ---

    def append_transaction(self, row: Dict[str, Any]) -> None:
        self.client.table("payment_transactions").insert(row).execute()

    def append_status_history(self, row: Dict[str, Any]) -> None:
        self.client.table("order_status_history").insert(row).execute()
