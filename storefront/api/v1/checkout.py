from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_active_user
from storefront.core.config import settings
from storefront.core.exceptions import APIError
from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.models.user import User
from storefront.schemas.checkout import (
    CheckoutRequest,
    CheckoutSummary,
    OrderConfirmationResponse,
    ShippingDetails,
)
from storefront.services.checkout_service import CheckoutService, OrderConfirmation
from storefront.services.notifier import OrderNotifier, get_notifier
from storefront.utils.response import redirect_response, success

logger = structlog.get_logger()

router = APIRouter()
form_router = APIRouter()


def _confirmation_payload(confirmation: OrderConfirmation) -> dict:
    return OrderConfirmationResponse(
        order_id=confirmation.order_id,
        order_number=confirmation.order_number,
        status=confirmation.status,
        total=confirmation.total,
        payment_method=confirmation.payment_method,
        estimated_delivery=confirmation.estimated_delivery,
    ).model_dump(mode="json")


@router.get("", response_model=dict)
@router.get("/", response_model=dict)
def get_checkout_summary(
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """Cart lines at live prices plus shipping defaults from the user's profile"""
    summary = CheckoutSummary.model_validate(CheckoutService.summary(db, current_user))
    return success(data=summary.model_dump(mode="json"))


@router.post(
    "",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Place order from cart",
    description="""
Turns the authenticated user's cart into an order.

Process:
1. Rejects an empty cart, missing shipping fields or an unknown payment method
2. Locks the cart and its products and re-checks stock
3. Creates the order with price snapshots and decrements stock
4. Clears the cart and commits
5. Queues the confirmation email (failures never undo the order)

Sending the same `idempotency_key` again returns the first order with 200.
""",
    responses={
        200: {"description": "Idempotent replay of an existing order"},
        201: {"description": "Order placed"},
        400: {"description": "Cart is empty"},
        409: {"description": "Insufficient stock"},
        422: {"description": "Invalid shipping details or payment method"},
        503: {"description": "Order could not be saved"},
    },
)
@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED, include_in_schema=False)
@limiter.limit(settings.CHECKOUT_RATE_LIMIT)
def place_order(
    request: Request,
    checkout_in: CheckoutRequest,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    notifier: OrderNotifier = Depends(get_notifier),
):
    confirmation = CheckoutService.place_order(
        db,
        current_user,
        checkout_in.shipping,
        payment_method=checkout_in.payment_method,
        notifier=notifier,
        idempotency_key=checkout_in.idempotency_key,
    )

    return JSONResponse(
        status_code=status.HTTP_200_OK if confirmation.replayed else status.HTTP_201_CREATED,
        content=success(
            data=_confirmation_payload(confirmation),
            message="Order already placed" if confirmation.replayed else "Order placed",
        ),
    )


@form_router.post("/checkout/form", include_in_schema=False)
@limiter.limit(settings.CHECKOUT_RATE_LIMIT)
def place_order_form(
    request: Request,
    recipient_name: Optional[str] = Form(None),
    phone: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    city: Optional[str] = Form(None),
    postal_code: Optional[str] = Form(None),
    payment_method: Optional[str] = Form("cod"),
    idempotency_key: Optional[str] = Form(None),
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    notifier: OrderNotifier = Depends(get_notifier),
):
    """
    Browser form transport for checkout.

    Success redirects to the order page; a checkout error redirects back to
    the checkout page with the error code and message in the query string.
    """
    # Same request model as the JSON transport, so both share one contract
    try:
        checkout_in = CheckoutRequest(
            shipping=ShippingDetails(
                recipient_name=recipient_name,
                phone=phone,
                address=address,
                city=city,
                postal_code=postal_code,
            ),
            payment_method=payment_method or "cod",
            idempotency_key=idempotency_key or None,
        )
    except ValidationError as exc:
        fields = [".".join(str(part) for part in error["loc"]) for error in exc.errors()]
        logger.info("checkout_form_rejected", code="validation_error", fields=fields)
        return redirect_response("/checkout", error="validation_error", message="Validation failed")

    try:
        confirmation = CheckoutService.place_order(
            db,
            current_user,
            checkout_in.shipping,
            payment_method=checkout_in.payment_method,
            notifier=notifier,
            idempotency_key=checkout_in.idempotency_key,
        )
    except APIError as exc:
        logger.info("checkout_form_rejected", code=exc.code)
        return redirect_response("/checkout", error=exc.code, message=exc.message)

    return redirect_response(f"/orders/{confirmation.order_number}", status="placed")
