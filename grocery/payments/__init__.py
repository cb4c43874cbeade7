"""
Module 'payments' (feature-first): point d'entrée public.
Réunit conversions de montants, client Paystack et traitement des webhooks.
"""

from .amounts import from_minor_units, to_major, to_minor_units
from .paystack_client import SIGNATURE_HEADER, PaystackClient
from .webhook import process_webhook_event

__all__ = [
    # amounts
    "to_minor_units",
    "from_minor_units",
    "to_major",
    # paystack
    "PaystackClient",
    "SIGNATURE_HEADER",
    # webhook
    "process_webhook_event",
]
