import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import JSONResponse

from grocery.infra.container import get_engine, get_fulfillment, get_lifecycle, get_order_service
from grocery.orders.fulfillment import FulfillmentService
from grocery.orders.lifecycle import OrderLifecycle
from grocery.orders.reconciliation import ReconciliationEngine
from grocery.orders.results import Committed, Pending
from grocery.orders.schemas import CancelOrderRequest, CheckoutRequest, StatusUpdateRequest, VerifyRequest
from grocery.orders.service import OrderService, is_admin, present_order, present_pending
from grocery.utils.rate_limit import optional_rate_limit
from grocery.utils.security import require_admin, require_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/orders", tags=["Orders"])


def committed_payload(result: Committed) -> Dict[str, Any]:
    order = result.order
    return {
        "orderId": order.get("id"),
        "orderNumber": order.get("order_number"),
        "invoiceNumber": order.get("invoice_number"),
        "pdfUrl": order.get("invoice_pdf_url"),
        "imageUrl": order.get("invoice_image_url"),
        "status": order.get("status"),
    }


# module grocery.orders.views
@router.post("", status_code=201, dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_order(
    body: CheckoutRequest,
    user: Dict[str, Any] = Depends(require_user),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """
    Checkout: crée la pending order et initialise le paiement Paystack.
    - 201 {pendingOrderId, paymentReference, authorizationUrl, accessCode, amount}
    - 400 panier vide / adresse incomplète / produit indisponible; 401 non authentifié; 502 Paystack injoignable
    """
    address = body.delivery_address.model_dump(exclude_none=True) if body.delivery_address else None
    return engine.open_pending(
        user,
        [item.model_dump(by_alias=True) for item in body.cart_items],
        address,
        discount=body.discount,
        credits=body.credits,
        delivery_notes=body.delivery_notes,
    )


@router.post("/verify", dependencies=[Depends(optional_rate_limit(times=20, seconds=60))])
def verify_payment(
    body: VerifyRequest,
    background_tasks: BackgroundTasks,
    user: Dict[str, Any] = Depends(require_user),
    engine: ReconciliationEngine = Depends(get_engine),
    orders: OrderService = Depends(get_order_service),
    fulfillment: FulfillmentService = Depends(get_fulfillment),
):
    """
    Confirmation côté client (retour de la page de paiement).
    - 200 {orderId, orderNumber, invoiceNumber, pdfUrl, imageUrl}: commande créée ou déjà existante
    - 202 {status: "pending"}: paiement pas encore tranché, réessayer plus tard
    - 400: paiement refusé
    Les URLs de facture sont renseignées quand le rendu (tâche de fond) est terminé.
    """
    orders.get_pending_by_reference(body.reference, user)
    result = engine.confirm(body.reference, source="verify")
    if isinstance(result, Committed):
        background_tasks.add_task(fulfillment.dispatch, result.order["id"])
        return committed_payload(result)
    if isinstance(result, Pending):
        return JSONResponse(
            status_code=202,
            content={"status": "pending", "providerStatus": result.status, "reason": result.reason},
        )
    return JSONResponse(
        status_code=400,
        content={"detail": "Payment verification failed", "reason": result.reason},
    )


@router.get("/payment-status")
def payment_status(
    reference: str = Query(..., min_length=1),
    user: Dict[str, Any] = Depends(require_user),
    engine: ReconciliationEngine = Depends(get_engine),
    orders: OrderService = Depends(get_order_service),
):
    orders.get_pending_by_reference(reference, user)
    return engine.check_status(reference)


@router.get("")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    user: Dict[str, Any] = Depends(require_user),
    orders: OrderService = Depends(get_order_service),
):
    return orders.list_orders(user, page=page, limit=limit, status=status)


@router.get("/admin/stats")
def order_stats(_: Dict[str, Any] = Depends(require_admin), orders: OrderService = Depends(get_order_service)):
    return orders.stats()


@router.get("/number/{order_number}")
def get_order_by_number(
    order_number: str,
    user: Dict[str, Any] = Depends(require_user),
    orders: OrderService = Depends(get_order_service),
):
    return present_order(orders.get_order_by_number(order_number, user))


@router.get("/pending/{pending_order_id}")
def get_pending_order(
    pending_order_id: str,
    user: Dict[str, Any] = Depends(require_user),
    orders: OrderService = Depends(get_order_service),
):
    return present_pending(orders.get_pending(pending_order_id, user))


@router.post("/pending/{pending_order_id}/cancel")
def cancel_pending_order(
    pending_order_id: str,
    user: Dict[str, Any] = Depends(require_user),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Annule une intention d'achat non payée. 409 si elle a déjà été payée."""
    pending = engine.cancel_pending(pending_order_id, None if is_admin(user) else user.get("id"))
    return present_pending(pending)


@router.get("/{order_id}")
def get_order(
    order_id: str,
    user: Dict[str, Any] = Depends(require_user),
    orders: OrderService = Depends(get_order_service),
):
    return present_order(orders.get_order(order_id, user))


@router.post("/{order_id}/cancel")
def cancel_order(
    order_id: str,
    body: Optional[CancelOrderRequest] = None,
    user: Dict[str, Any] = Depends(require_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Annulation par le client (pending/confirmed) ou un admin (jusqu'à processing). Pose refund_required si payée."""
    reason = body.reason if body else None
    order = lifecycle.cancel(order_id, reason, user, admin=is_admin(user))
    return present_order(order)


@router.patch("/{order_id}/status")
def update_order_status(
    order_id: str,
    body: StatusUpdateRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Admin uniquement. Transition non avant -> 400."""
    return present_order(lifecycle.update_status(order_id, body.status, body.reason, admin))
