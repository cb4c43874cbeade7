"""
Résultats typés de la réconciliation.
Un paiement refusé est un résultat métier normal, pas une exception:
confirm() retourne Committed, Failed ou Pending.
"""
from typing import Any, Dict, Optional


class ConfirmResult:
    outcome = ""

    @property
    def committed(self) -> bool:
        return self.outcome == "committed"


class Committed(ConfirmResult):
    """Commande créée (created=True) ou déjà existante pour cette référence (created=False)."""
    outcome = "committed"

    def __init__(self, order: Dict[str, Any], created: bool = False):
        self.order = order
        self.created = created

    def __repr__(self) -> str:
        return f"Committed(order_id={self.order.get('id')!r}, created={self.created})"


class Failed(ConfirmResult):
    outcome = "failed"

    def __init__(self, reason: str, review_required: bool = False):
        self.reason = reason
        self.review_required = review_required

    def __repr__(self) -> str:
        return f"Failed(reason={self.reason!r})"


class Pending(ConfirmResult):
    """Paiement pas encore tranché côté provider (ou provider injoignable): rien n'a été écrit."""
    outcome = "pending"

    def __init__(self, status: str, reason: Optional[str] = None):
        self.status = status
        self.reason = reason

    def __repr__(self) -> str:
        return f"Pending(status={self.status!r})"
