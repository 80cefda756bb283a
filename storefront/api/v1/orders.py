from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_active_user, require_staff
from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.db.transaction import transaction
from storefront.models.order import Order
from storefront.models.user import User
from storefront.schemas.order import (
    OrderItemResponse,
    OrderResponse,
    OrderStatusHistoryResponse,
    OrderStatusUpdate,
    OrderTrackingResponse,
    ShippingSnapshotResponse,
)
from storefront.services.order_service import OrderService
from storefront.utils.response import success

router = APIRouter()


def _order_payload(order: Order) -> dict:
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        status=order.status.value,
        payment_method=order.payment_method.value,
        total_amount=order.total_amount,
        total_items=order.total_items,
        items=[OrderItemResponse.model_validate(item) for item in order.items],
        shipping=ShippingSnapshotResponse(
            recipient_name=order.shipping_name,
            phone=order.shipping_phone,
            address=order.shipping_address,
            city=order.shipping_city,
            postal_code=order.shipping_postal_code,
        ),
        tracking_number=order.tracking_number,
        created_at=order.created_at,
    ).model_dump(mode="json")


@router.get("", response_model=dict)
@router.get("/", response_model=dict)
@limiter.limit("30/minute")
def get_user_orders(
    request: Request,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """Get user's order history, newest first"""
    orders = OrderService.list_for_user(db, current_user.id)
    return success(data=[_order_payload(order) for order in orders], message="Orders retrieved")


@router.get("/{order_number}", response_model=dict)
@limiter.limit("30/minute")
def get_order_detail(
    request: Request,
    order_number: str,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    order = OrderService.get_for_user(db, order_number, current_user.id)
    return success(data=_order_payload(order), message="Order detail retrieved")


@router.put("/{order_id}/status", response_model=dict)
@limiter.limit("20/minute")
def update_order_status(
    request: Request,
    order_id: int,
    status_update: OrderStatusUpdate,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    """Move an order along its lifecycle (staff only)."""
    with transaction(db, order_id=order_id, operation="update_order_status"):
        order = OrderService.transition(
            db,
            order_id,
            status_update.status,
            changed_by=current_user.id,
            tracking_number=status_update.tracking_number,
            notes=status_update.notes,
        )
        new_status = order.status.value

    return success(
        data={"order_id": order_id, "status": new_status},
        message="Order status updated",
    )


@router.get("/{order_id}/tracking", response_model=dict)
@limiter.limit("30/minute")
def get_order_tracking(
    request: Request,
    order_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """Owners see their own orders; staff and admins see every order."""
    order = OrderService.get_visible(db, order_id, current_user)
    tracking = OrderTrackingResponse(
        order_id=order.id,
        order_number=order.order_number,
        current_status=order.status.value,
        can_be_updated=order.can_be_updated(),
        tracking_number=order.tracking_number,
        status_history=[
            OrderStatusHistoryResponse.model_validate(entry)
            for entry in OrderService.history(db, order.id)
        ],
    )
    return success(data=tracking.model_dump(mode="json"), message="Order tracking retrieved")
