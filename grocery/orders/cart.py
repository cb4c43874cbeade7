"""
Logique panier pure (pas de Paystack, pas de DB).
Le prix vient toujours du catalogue: un total envoyé par le client n'est jamais lu.
"""
from decimal import Decimal
from typing import Any, Dict, List

from grocery.errors import ValidationError
from grocery.payments.amounts import to_decimal, to_major

# module grocery.orders.cart
def aggregate_quantities(items: List[Dict[str, Any]]) -> Dict[str, int]:
    """
    Agrège un panier brut [{productId, quantity}, ...] en {product_id: total_quantity}.
    - Accepte productId ou product_id (ou id) pour chaque ligne.
    - Ignore les lignes invalides (id vide, quantity <= 0).
    - Soulève ValidationError si aucune ligne valide n'est présente.
    """
    quantities: Dict[str, int] = {}
    for it in items or []:
        product_id = str(it.get("productId") or it.get("product_id") or it.get("id") or "").strip()
        try:
            qty = int(it.get("quantity") or 0)
        except (TypeError, ValueError):
            qty = 0
        if not product_id or qty <= 0:
            continue
        quantities[product_id] = quantities.get(product_id, 0) + qty
    if not quantities:
        raise ValidationError("Cart cannot be empty", code="empty_cart")
    return quantities

def price_from_product(product: Dict[str, Any]) -> Decimal:
    """Prix catalogue en Decimal; 0 si absent ou illisible."""
    try:
        return to_major(product.get("price") or 0)
    except Exception:
        return Decimal("0.00")

def build_snapshot(products_by_id: Dict[str, Dict[str, Any]], quantities: Dict[str, int]) -> List[Dict[str, Any]]:
    """
    Construit le snapshot figé du panier (prix au moment du checkout).
    - Produit inconnu, hors stock ou stock insuffisant -> ValidationError explicite.
    - Chaque ligne: productId, name, quantity, unitPriceAtCheckout, total (chaînes décimales).
    """
    snapshot: List[Dict[str, Any]] = []
    for product_id, qty in quantities.items():
        product = products_by_id.get(product_id)
        if not product:
            raise ValidationError(f"Product {product_id} not found", code="unknown_product")

        in_stock = product.get("in_stock", True)
        available = product.get("quantity")
        if not in_stock or (available is not None and int(available) < qty):
            name = product.get("name") or product_id
            raise ValidationError(f'Product "{name}" is out of stock or insufficient quantity', code="out_of_stock")

        unit_price = price_from_product(product)
        if unit_price <= 0:
            raise ValidationError(f"Product {product_id} has no valid price", code="invalid_price")

        images = product.get("images") or []
        snapshot.append({
            "productId": product_id,
            "name": product.get("name") or "",
            "category": product.get("category_name"),
            "image": images[0] if images else None,
            "quantity": qty,
            "unitPriceAtCheckout": str(unit_price),
            "total": str(to_major(unit_price * qty)),
        })
    return snapshot

def compute_totals(snapshot: List[Dict[str, Any]], discount: Any = 0, credits: Any = 0) -> Dict[str, Decimal]:
    """
    Totaux du panier: subtotal - discount - credits.
    - discount/credits négatifs -> ValidationError.
    - total <= 0 -> ValidationError (rien à encaisser).
    """
    discount_d = to_major(discount)
    credits_d = to_major(credits)
    if discount_d < 0 or credits_d < 0:
        raise ValidationError("Discount and credits must be positive numbers", code="invalid_adjustment")

    subtotal = sum((to_decimal(line["total"]) for line in snapshot), Decimal("0"))
    subtotal = to_major(subtotal)
    total = to_major(subtotal - discount_d - credits_d)
    if total <= 0:
        raise ValidationError("Total amount must be greater than 0", code="non_positive_total")
    return {"subtotal": subtotal, "discount": discount_d, "credits": credits_d, "total": total}

def validate_address(address: Dict[str, Any] | None) -> Dict[str, Any]:
    """Adresse de livraison complète: street, city et phone requis (region optionnelle)."""
    address = address or {}
    missing = [f for f in ("street", "city", "phone") if not str(address.get(f) or "").strip()]
    if missing:
        raise ValidationError(
            f"Complete delivery address is required (missing: {', '.join(missing)})",
            code="incomplete_address",
        )
    return {k: (v.strip() if isinstance(v, str) else v) for k, v in address.items()}
