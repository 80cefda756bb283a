from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.exceptions import (
    DuplicateSubmission,
    EmptyCart,
    InvalidPaymentMethod,
    InvalidShipping,
    PersistenceFailure,
)
from storefront.db.transaction import transaction
from storefront.models.order import Order, PaymentMethod
from storefront.models.user import User
from storefront.schemas.checkout import ShippingAddress
from storefront.services.cart_service import CartService
from storefront.services.inventory import InventoryLedger
from storefront.services.notifier import OrderNotifier
from storefront.services.order_service import OrderLineDraft, OrderService

logger = structlog.get_logger()

SHIPPING_FIELD_LABELS = {
    "recipient_name": "Recipient name",
    "phone": "Phone number",
    "address": "Street address",
    "city": "City",
    "postal_code": "Postal code",
}


def estimated_delivery(created_at: datetime) -> date:
    return (created_at + timedelta(days=settings.ESTIMATED_DELIVERY_DAYS)).date()


@dataclass(frozen=True)
class OrderConfirmation:
    order_id: int
    order_number: str
    status: str
    total: Decimal
    payment_method: str
    estimated_delivery: date
    replayed: bool = False

    @classmethod
    def from_order(cls, order: Order, replayed: bool = False) -> "OrderConfirmation":
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            status=order.status.value,
            total=Decimal(order.total_amount),
            payment_method=order.payment_method.value,
            estimated_delivery=estimated_delivery(order.created_at),
            replayed=replayed,
        )


def validate_shipping(details: Union[BaseModel, Mapping[str, Any], None]) -> ShippingAddress:
    """
    Apply the required-field rules to submitted shipping details.

    Raises:
        InvalidShipping: with one {field, message} entry per failing field
    """
    if isinstance(details, BaseModel):
        raw = details.model_dump()
    else:
        raw = dict(details or {})
    data = {key: value for key, value in raw.items() if value is not None}

    try:
        return ShippingAddress.model_validate(data)
    except ValidationError as exc:
        field_errors: List[Dict[str, str]] = []
        seen = set()
        for error in exc.errors():
            field = str(error["loc"][0]) if error["loc"] else "shipping"
            if field in seen:
                continue
            seen.add(field)
            label = SHIPPING_FIELD_LABELS.get(field, field)
            if error["type"] in ("missing", "string_too_short", "value_error"):
                message = f"{label} is required."
            else:
                message = f"{label}: {error['msg']}"
            field_errors.append({"field": field, "message": message})
        raise InvalidShipping(field_errors) from exc


class CheckoutService:

    @staticmethod
    def place_order(
        db: Session,
        user: User,
        shipping_details: Union[BaseModel, Mapping[str, Any], None],
        payment_method: str = PaymentMethod.COD.value,
        notifier: Optional[OrderNotifier] = None,
        idempotency_key: Optional[str] = None,
    ) -> OrderConfirmation:
        """
        Turn the user's cart into an order.

        Failures come in three tiers:

        1. Empty cart, bad shipping details and bad payment method are
           rejected before any transaction opens; nothing is written.
        2. Stock checks, order creation, stock decrements and the cart clear
           run in one transaction and either all commit or all roll back.
        3. The confirmation notification is sent after commit; a failure is
           logged and never affects the placed order.

        A repeated ``idempotency_key`` returns the order the first submission
        placed, including when both submissions race each other.

        Args:
            db (Session): Database session
            user (User): Authenticated customer placing the order
            shipping_details: Submitted shipping form
            payment_method (str): "cod" or "card"; recorded, not processed
            notifier (OrderNotifier): Post-commit confirmation sender
            idempotency_key (str): Optional client key; a repeat returns the first order

        Returns:
            OrderConfirmation: summary of the placed order

        Raises:
            EmptyCart, InvalidShipping, InvalidPaymentMethod, InsufficientStock,
            PersistenceFailure
        """
        log = logger.bind(user_id=user.id)

        existing = OrderService.find_by_idempotency_key(db, user.id, idempotency_key)
        if existing:
            log.info("order_replayed", order_id=existing.id, order_number=existing.order_number)
            return OrderConfirmation.from_order(existing, replayed=True)

        try:
            order, line_count = CheckoutService._place_new(
                db, user, shipping_details, payment_method, idempotency_key, log
            )
        except (EmptyCart, DuplicateSubmission) as exc:
            # A concurrent submission with the same key won: it emptied the
            # cart or claimed the key first. Hand back its order.
            winner = OrderService.find_by_idempotency_key(db, user.id, idempotency_key)
            if winner is None:
                if isinstance(exc, DuplicateSubmission):
                    raise PersistenceFailure() from exc
                raise
            log.info(
                "order_replayed",
                order_id=winner.id,
                order_number=winner.order_number,
                concurrent=True,
            )
            return OrderConfirmation.from_order(winner, replayed=True)

        confirmation = OrderConfirmation.from_order(order)
        log.info(
            "order_placed",
            order_id=confirmation.order_id,
            order_number=confirmation.order_number,
            total=str(confirmation.total),
            lines=line_count,
        )

        CheckoutService._notify(notifier, order, user.email)
        return confirmation

    @staticmethod
    def _place_new(
        db: Session,
        user: User,
        shipping_details: Union[BaseModel, Mapping[str, Any], None],
        payment_method: str,
        idempotency_key: Optional[str],
        log,
    ) -> Tuple[Order, int]:
        snapshot = CartService.snapshot(db, user.id)
        if snapshot.is_empty:
            log.info("checkout_rejected", reason=EmptyCart.code)
            raise EmptyCart()

        try:
            shipping = validate_shipping(shipping_details)
        except InvalidShipping as exc:
            log.info("checkout_rejected", reason=exc.code, fields=[e["field"] for e in exc.field_errors])
            raise

        try:
            method = PaymentMethod((payment_method or PaymentMethod.COD.value).lower())
        except ValueError:
            log.info("checkout_rejected", reason=InvalidPaymentMethod.code)
            raise InvalidPaymentMethod(payment_method)

        # The snapshot above may be stale by now; everything below re-reads under lock.
        with transaction(db, user_id=user.id, operation="place_order"):
            current = CartService.snapshot(db, user.id, for_update=True)
            if current.is_empty:
                raise EmptyCart()

            locked_products = InventoryLedger.check(db, current.requested_quantities())

            drafts = [
                OrderLineDraft(
                    product_id=line.product_id,
                    product_name=locked_products[line.product_id].name,
                    quantity=line.quantity,
                    unit_price=Decimal(locked_products[line.product_id].price),
                )
                for line in current.lines
            ]

            try:
                order = OrderService.create(
                    db,
                    user_id=user.id,
                    shipping=shipping,
                    lines=drafts,
                    payment_method=method.value,
                    idempotency_key=idempotency_key,
                )
            except IntegrityError as exc:
                if not idempotency_key:
                    raise
                raise DuplicateSubmission(idempotency_key) from exc

            for draft in drafts:
                InventoryLedger.reserve(db, draft.product_id, draft.quantity)

            removed = CartService.clear(db, user.id)
            if removed < len(current.lines):
                # Another checkout emptied this cart after we read it.
                raise EmptyCart()

        return order, len(drafts)

    @staticmethod
    def _notify(notifier: Optional[OrderNotifier], order: Order, recipient_email: str) -> bool:
        if notifier is None:
            return False
        try:
            return bool(notifier.send_order_confirmation(order, recipient_email))
        except Exception as exc:
            logger.warning(
                "order_confirmation_failed",
                order_id=order.id,
                error_type=type(exc).__name__,
                detail=str(exc),
            )
            return False

    @staticmethod
    def shipping_defaults(db: Session, user: User) -> Dict[str, str]:
        """Pre-fill from the last order's shipping snapshot, then the profile."""
        defaults = {
            "recipient_name": user.full_name or "",
            "phone": user.phone or "",
            "address": "",
            "city": "",
            "postal_code": "",
        }
        last_order = OrderService.latest_for_user(db, user.id)
        if last_order is not None:
            snapshot = {
                "recipient_name": last_order.shipping_name,
                "phone": last_order.shipping_phone,
                "address": last_order.shipping_address,
                "city": last_order.shipping_city,
                "postal_code": last_order.shipping_postal_code,
            }
            defaults.update({key: value for key, value in snapshot.items() if value})
        return defaults

    @staticmethod
    def summary(db: Session, user: User) -> dict:
        snapshot = CartService.snapshot(db, user.id)
        return {
            "items": [
                {
                    "product_id": line.product_id,
                    "product_name": line.product_name,
                    "quantity": line.quantity,
                    "unit_price": line.unit_price,
                    "total_price": line.line_total,
                }
                for line in snapshot.lines
            ],
            "total": CartService.total(snapshot),
            "total_items": snapshot.total_items,
            "defaults": CheckoutService.shipping_defaults(db, user),
        }
