"""
Conversions de montants (pas de réseau, pas de DB).
- La passerelle ne reçoit que des entiers en unités mineures (pesewas, kobo, centimes).
- L'API publique expose des montants décimaux à deux décimales.
- Arrondi: demi-unité éloignée de zéro (ROUND_HALF_UP de decimal), jamais de float intermédiaire.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

MINOR_PER_MAJOR = 100
CENT = Decimal("0.01")

# module grocery.payments.amounts
def to_decimal(value: Any) -> Decimal:
    """
    Convertit str|int|float|Decimal en Decimal sans dérive binaire.
    - Un float passe par str() pour garder sa représentation courte (10.1 -> "10.1").
    - None/"" -> Decimal("0").
    """
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)

def to_major(value: Any) -> Decimal:
    """Montant décimal arrondi à 2 décimales (demi-unité éloignée de zéro)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)

def to_minor_units(amount: Any) -> int:
    """
    Montant majeur -> entier en unités mineures.
    Ex: 20.00 -> 2000, 0.015 -> 2, -0.015 -> -2.
    """
    minor = to_decimal(amount) * MINOR_PER_MAJOR
    return int(minor.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def from_minor_units(minor: Any) -> Decimal:
    """Entier en unités mineures -> Decimal majeur à 2 décimales (2000 -> Decimal('20.00'))."""
    return (to_decimal(int(minor)) / MINOR_PER_MAJOR).quantize(CENT, rounding=ROUND_HALF_UP)

def as_public_amount(value: Any) -> float:
    """Forme JSON d'un montant pour l'API publique (nombre à deux décimales)."""
    return float(to_major(value))
