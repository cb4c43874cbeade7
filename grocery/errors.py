"""
Taxonomie des erreurs métier.
Chaque erreur porte un status_code HTTP et un detail présentable à l'utilisateur;
le mapping vers la réponse JSON est fait une seule fois (app_setup.exceptions).
Un paiement refusé n'est PAS une erreur: voir orders.results.
"""


class OrderError(Exception):
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: str | None = None, code: str | None = None):
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail
        self.code = code


class ValidationError(OrderError):
    status_code = 400
    default_detail = "Invalid request"


class AuthError(OrderError):
    status_code = 401
    default_detail = "Authentication required"


class NotFoundError(OrderError):
    status_code = 404
    default_detail = "Not found"


class ConflictError(OrderError):
    status_code = 409
    default_detail = "Conflicting state"


class GatewayUnavailable(OrderError):
    status_code = 502
    default_detail = "Payment provider unavailable"


class SignatureInvalid(OrderError):
    status_code = 400
    default_detail = "Invalid signature"


class DuplicateOrderError(Exception):
    """Levée par le store quand la contrainte unique orders.payment_reference refuse l'insert."""

    def __init__(self, payment_reference: str):
        super().__init__(f"order already exists for reference {payment_reference}")
        self.payment_reference = payment_reference
