from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, UniqueConstraint, event, inspect
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from storefront.db.base_class import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Legacy status names still accepted from older back-office clients.
STATUS_ALIASES = {
    "paid": OrderStatus.PROCESSING,
}

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


class PaymentMethod(str, enum.Enum):
    COD = "cod"
    CARD = "card"


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_orders_user_idempotency_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Frozen at placement; never recomputed from live product prices
    total_amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(Enum(PaymentMethod), default=PaymentMethod.COD, nullable=False)

    # Status & Tracking
    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    tracking_number = Column(String(100), nullable=True)

    # Shipping snapshot
    shipping_name = Column(String(255), nullable=False)
    shipping_phone = Column(String(20), nullable=False)
    shipping_address = Column(String(500), nullable=False)
    shipping_city = Column(String(100), nullable=False)
    shipping_postal_code = Column(String(10), nullable=False)

    idempotency_key = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    status_history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.created_at",
    )

    def can_be_updated(self) -> bool:
        return bool(ALLOWED_TRANSITIONS.get(self.status))

    def can_transition_to(self, new_status: OrderStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS.get(self.status, frozenset())

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    # Weak reference: the product may be deleted later without touching history
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)

    product_name = Column(String(200), nullable=False)  # Snapshot at order time

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)  # Snapshot at order time
    total_price = Column(Numeric(10, 2), nullable=False)

    # Relationships
    order = relationship("Order", back_populates="items")
    product = relationship("Product")


IMMUTABLE_ORDER_ITEM_FIELDS = ("order_id", "product_name", "quantity", "unit_price", "total_price")


@event.listens_for(OrderItem, "before_update")
def _reject_order_item_changes(mapper, connection, target):
    state = inspect(target)
    changed = [
        name for name in IMMUTABLE_ORDER_ITEM_FIELDS
        if state.attrs[name].history.has_changes()
    ]
    if changed:
        raise ValueError(f"Order items are immutable; attempted to change {', '.join(changed)}")
