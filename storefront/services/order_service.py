from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence
import random
import string

import structlog
from sqlalchemy.orm import Session

from storefront.core.exceptions import InvalidTransition, OrderNotFound, PersistenceFailure
from storefront.models.order import Order, OrderItem, OrderStatus, PaymentMethod, STATUS_ALIASES
from storefront.models.order_status_history import OrderStatusHistory
from storefront.models.user import User
from storefront.schemas.checkout import ShippingAddress

logger = structlog.get_logger()

CENTS = Decimal("0.01")
ORDER_NUMBER_PREFIX = "ORD"


@dataclass(frozen=True)
class OrderLineDraft:
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal

    @property
    def total_price(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(CENTS)


def generate_order_number(db: Session) -> str:
    """Generate a unique order number with bounded retries."""
    max_attempts = 10

    for _ in range(max_attempts):
        timestamp = datetime.utcnow().strftime("%Y%m%d")
        random_part = "".join(
            random.choices(string.ascii_uppercase + string.digits, k=8)
        )
        order_number = f"{ORDER_NUMBER_PREFIX}{timestamp}{random_part}"

        existing = db.query(Order.id).filter(Order.order_number == order_number).first()
        if not existing:
            return order_number

    logger.error("order_number_generation_failed", attempts=max_attempts)
    raise PersistenceFailure("Failed to generate order number. Please try again.")


def parse_status(value: str) -> Optional[OrderStatus]:
    normalized = (value or "").strip().lower()
    if normalized in STATUS_ALIASES:
        return STATUS_ALIASES[normalized]
    try:
        return OrderStatus(normalized)
    except ValueError:
        return None


class OrderService:

    @staticmethod
    def create(
        db: Session,
        user_id: int,
        shipping: ShippingAddress,
        lines: Sequence[OrderLineDraft],
        payment_method: str = PaymentMethod.COD.value,
        idempotency_key: Optional[str] = None,
    ) -> Order:
        """
        Build an order header and its line snapshots.

        Does not touch inventory or the cart. The total is computed here, once,
        from the line snapshots and stored on the order.
        """
        if not lines:
            raise ValueError("An order needs at least one line")

        total = sum((line.total_price for line in lines), Decimal("0.00")).quantize(CENTS)

        order = Order(
            order_number=generate_order_number(db),
            user_id=user_id,
            total_amount=total,
            payment_method=PaymentMethod(payment_method),
            status=OrderStatus.PENDING,
            shipping_name=shipping.recipient_name,
            shipping_phone=shipping.phone,
            shipping_address=shipping.address,
            shipping_city=shipping.city,
            shipping_postal_code=shipping.postal_code,
            idempotency_key=idempotency_key,
            created_at=datetime.utcnow(),
        )
        order.items = [
            OrderItem(
                product_id=line.product_id,
                product_name=line.product_name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.total_price,
            )
            for line in lines
        ]

        db.add(order)
        db.flush()
        return order

    @staticmethod
    def find_by_idempotency_key(db: Session, user_id: int, key: Optional[str]) -> Optional[Order]:
        if not key:
            return None
        return (
            db.query(Order)
            .filter(Order.user_id == user_id, Order.idempotency_key == key)
            .first()
        )

    @staticmethod
    def latest_for_user(db: Session, user_id: int) -> Optional[Order]:
        return (
            db.query(Order)
            .filter(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .first()
        )

    @staticmethod
    def list_for_user(db: Session, user_id: int) -> List[Order]:
        return (
            db.query(Order)
            .filter(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )

    @staticmethod
    def get_for_user(db: Session, order_number: str, user_id: int) -> Order:
        order = (
            db.query(Order)
            .filter(Order.order_number == order_number, Order.user_id == user_id)
            .first()
        )
        if not order:
            raise OrderNotFound()
        return order

    @staticmethod
    def get_visible(db: Session, order_id: int, user: User) -> Order:
        """Owners see their own orders; staff and admins see every order."""
        order = db.query(Order).filter(Order.id == order_id).first()
        if not order or (order.user_id != user.id and not user.is_staff):
            raise OrderNotFound()
        return order

    @staticmethod
    def transition(
        db: Session,
        order_id: int,
        requested_status: str,
        changed_by: Optional[int] = None,
        tracking_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Move an order along its status state machine and record the change.

        Callers are expected to have authorized the actor already.

        Raises:
            OrderNotFound: unknown order id
            InvalidTransition: unknown status, terminal current status, or
                a move the state machine does not allow
        """
        order = (
            db.query(Order)
            .filter(Order.id == order_id)
            .with_for_update()
            .first()
        )
        if not order:
            raise OrderNotFound()

        old_status = order.status
        new_status = parse_status(requested_status)
        if new_status is None or not order.can_transition_to(new_status):
            logger.info(
                "order_transition_rejected",
                order_id=order.id,
                current_status=old_status.value,
                requested_status=requested_status,
            )
            raise InvalidTransition(old_status.value, requested_status)

        order.status = new_status
        if tracking_number:
            order.tracking_number = tracking_number

        db.add(
            OrderStatusHistory(
                order_id=order.id,
                old_status=old_status.value,
                new_status=new_status.value,
                changed_by=changed_by,
                notes=notes,
            )
        )
        db.flush()

        logger.info(
            "order_status_changed",
            order_id=order.id,
            old_status=old_status.value,
            new_status=new_status.value,
            changed_by=changed_by,
        )
        return order

    @staticmethod
    def history(db: Session, order_id: int) -> List[OrderStatusHistory]:
        return (
            db.query(OrderStatusHistory)
            .filter(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.created_at, OrderStatusHistory.id)
            .all()
        )
