"""
Adaptateur Paystack: centralise les appels HTTP et la vérification des webhooks.
- Instance construite une fois au démarrage (build_services) puis injectée: pas d'état global.
- Les montants échangés avec Paystack sont des entiers en unités mineures.
- Seules les méthodes initialize/verify font du réseau (timeout borné).
"""
import hashlib
import hmac
import logging
import secrets
import string
import time
from typing import Any, Dict, List, Optional

import httpx

from grocery.errors import GatewayUnavailable

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"
_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits

# module grocery.payments.paystack_client
class PaystackClient:
    def __init__(
        self,
        secret_key: str,
        *,
        base_url: str = "https://api.paystack.co",
        webhook_secret: Optional[str] = None,
        timeout: float = 10.0,
        channels: Optional[List[str]] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.secret_key = secret_key or ""
        self.webhook_secret = webhook_secret or self.secret_key
        self.channels = list(channels or ["card", "bank", "ussd", "mobile_money"])
        self._http = http_client or httpx.Client(base_url=base_url, timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    def close(self) -> None:
        self._http.close()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _require_configured(self) -> None:
        if not self.secret_key:
            raise GatewayUnavailable("Payment provider is not configured", code="not_configured")

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """
        Appel Paystack brut.
        - Erreur réseau / timeout -> GatewayUnavailable (jamais de retry silencieux).
        - Réponse non-2xx ou status=false -> GatewayUnavailable avec le message du provider loggué.
        """
        try:
            resp = self._http.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.warning("paystack.%s %s unreachable: %s", method, path, e)
            raise GatewayUnavailable(code="unreachable") from e

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code >= 400 or not body.get("status"):
            logger.warning(
                "paystack.%s %s rejected status=%s message=%s",
                method, path, resp.status_code, body.get("message"),
            )
            raise GatewayUnavailable(code="rejected")
        return body.get("data") or {}

    def initialize(
        self,
        email: str,
        amount_minor_units: int,
        reference: str,
        callback_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Initialise une transaction Paystack.
        - amount_minor_units: entier (ex: GHS 20.00 -> 2000)
        - Retour: {authorizationUrl, accessCode, reference}
        - Erreurs: GatewayUnavailable si clé absente, provider injoignable ou refus
        """
        self._require_configured()
        payload: Dict[str, Any] = {
            "email": email,
            "amount": int(amount_minor_units),
            "reference": reference,
            "channels": self.channels,
        }
        if callback_url:
            payload["callback_url"] = callback_url
        if metadata:
            payload["metadata"] = metadata

        data = self._request("POST", "/transaction/initialize", json=payload)
        if not data.get("authorization_url"):
            raise GatewayUnavailable(code="rejected")
        return {
            "authorizationUrl": data.get("authorization_url"),
            "accessCode": data.get("access_code"),
            "reference": data.get("reference") or reference,
        }

    def verify(self, reference: str) -> Dict[str, Any]:
        """
        Lit l'état courant d'une transaction (sans effet de bord, rejouable).
        Retour: {status, amountMinorUnits, paidAt, currency, channel, raw}
        status est la valeur brute Paystack (success, failed, abandoned, ongoing, ...).
        """
        self._require_configured()
        data = self._request("GET", f"/transaction/verify/{reference}")
        amount = data.get("amount")
        return {
            "status": str(data.get("status") or "").lower(),
            "amountMinorUnits": int(amount) if amount is not None else None,
            "paidAt": data.get("paid_at") or data.get("paidAt"),
            "currency": data.get("currency"),
            "channel": data.get("channel"),
            "raw": data,
        }

    def validate_webhook_signature(self, raw_body: bytes, signature_header: Optional[str]) -> bool:
        """
        Authentifie un webhook: HMAC-SHA512 du body brut avec le secret, comparaison à temps constant.
        - Doit être appelé AVANT tout parsing du payload.
        - Secret absent ou en-tête vide -> False.
        """
        if not self.webhook_secret or not signature_header:
            return False
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        expected = hmac.new(self.webhook_secret.encode("utf-8"), raw_body or b"", hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature_header.strip().lower())

    @staticmethod
    def generate_reference(prefix: str = "GROV") -> str:
        """Référence unique: <PREFIX>-<epoch ms>-<8 caractères A-Z0-9>."""
        suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(8))
        return f"{prefix}-{int(time.time() * 1000)}-{suffix}"
