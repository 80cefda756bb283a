from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Tuple

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from storefront.core.exceptions import BelowMinimum, CartItemNotFound, InsufficientStock, ProductNotFound
from storefront.models.cart import CartItem
from storefront.models.product import Product

logger = structlog.get_logger()

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class CartLine:
    cart_item_id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    stock: int

    @property
    def line_total(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(CENTS)


@dataclass(frozen=True)
class CartSnapshot:
    """Cart lines with their products resolved at one point in time."""

    user_id: int
    lines: Tuple[CartLine, ...]

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def total_items(self) -> int:
        return sum(line.quantity for line in self.lines)

    def requested_quantities(self) -> Dict[int, int]:
        return {line.product_id: line.quantity for line in self.lines}


class CartService:

    @staticmethod
    def snapshot(db: Session, user_id: int, for_update: bool = False) -> CartSnapshot:
        """
        Resolve the user's cart against the catalog, oldest line first.

        Lines whose product was deleted or deactivated are left out of the
        snapshot; they are never priced, checked out or shown.

        With ``for_update`` the cart rows are locked and re-read from the
        database, for use inside a transaction.
        """
        query = (
            db.query(CartItem, Product)
            .outerjoin(Product, CartItem.product_id == Product.id)
            .filter(CartItem.user_id == user_id)
            .order_by(CartItem.id)
        )
        if for_update:
            query = query.with_for_update(of=CartItem).populate_existing()
        rows = query.all()

        lines = []
        for cart_item, product in rows:
            if product is None or not product.is_active:
                logger.warning(
                    "cart_line_skipped",
                    user_id=user_id,
                    cart_item_id=cart_item.id,
                    product_id=cart_item.product_id,
                )
                continue
            lines.append(
                CartLine(
                    cart_item_id=cart_item.id,
                    product_id=product.id,
                    product_name=product.name,
                    quantity=cart_item.quantity,
                    unit_price=Decimal(product.price),
                    stock=product.stock,
                )
            )

        return CartSnapshot(user_id=user_id, lines=tuple(lines))

    @staticmethod
    def total(snapshot: CartSnapshot) -> Decimal:
        """Sum of quantity x live price. Cart totals are never frozen."""
        return sum((line.line_total for line in snapshot.lines), Decimal("0.00")).quantize(CENTS)

    @staticmethod
    def count(db: Session, user_id: int) -> int:
        total = (
            db.query(func.coalesce(func.sum(CartItem.quantity), 0))
            .filter(CartItem.user_id == user_id)
            .scalar()
        )
        return int(total or 0)

    @staticmethod
    def clear(db: Session, user_id: int) -> int:
        """Delete every line for the user. Clearing an empty cart is not an error."""
        deleted = (
            db.query(CartItem)
            .filter(CartItem.user_id == user_id)
            .delete(synchronize_session=False)
        )
        logger.info("cart_cleared", user_id=user_id, lines_removed=deleted)
        return deleted

    @staticmethod
    def _get_line(db: Session, user_id: int, product_id: int) -> Optional[CartItem]:
        return (
            db.query(CartItem)
            .filter(CartItem.user_id == user_id, CartItem.product_id == product_id)
            .with_for_update()
            .first()
        )

    @staticmethod
    def _get_active_product(db: Session, product_id: int) -> Product:
        product = (
            db.query(Product)
            .filter(Product.id == product_id, Product.is_active == True)  # noqa: E712
            .first()
        )
        if not product:
            raise ProductNotFound(product_id)
        return product

    @staticmethod
    def upsert_line(db: Session, user_id: int, product_id: int, delta: int) -> Optional[CartItem]:
        """
        Add ``delta`` to the user's line for a product.

        An existing line whose quantity drops to zero or below is deleted. A new
        line needs ``delta >= 1``. Increases are checked against current stock.

        Returns:
            Optional[CartItem]: the line, or None if it was removed
        """
        existing = CartService._get_line(db, user_id, product_id)

        if existing is None:
            if delta < 1:
                raise BelowMinimum(product_id, delta)
            product = CartService._get_active_product(db, product_id)
            if product.stock < delta:
                raise InsufficientStock(product.id, product.stock, product.name)

            line = CartItem(user_id=user_id, product_id=product_id, quantity=delta)
            db.add(line)
            db.flush()
            logger.info("cart_line_created", user_id=user_id, product_id=product_id, quantity=delta)
            return line

        new_quantity = existing.quantity + delta
        if new_quantity <= 0:
            db.delete(existing)
            db.flush()
            logger.info("cart_line_removed", user_id=user_id, product_id=product_id)
            return None

        if delta > 0:
            product = CartService._get_active_product(db, product_id)
            if product.stock < new_quantity:
                raise InsufficientStock(product.id, product.stock, product.name)

        existing.quantity = new_quantity
        db.flush()
        logger.info("cart_line_updated", user_id=user_id, product_id=product_id, quantity=new_quantity)
        return existing

    @staticmethod
    def set_quantity(db: Session, user_id: int, product_id: int, quantity: int) -> CartItem:
        if quantity < 1:
            raise BelowMinimum(product_id, quantity)

        line = CartService._get_line(db, user_id, product_id)
        if line is None:
            raise CartItemNotFound()

        product = CartService._get_active_product(db, product_id)
        if product.stock < quantity:
            raise InsufficientStock(product.id, product.stock, product.name)

        line.quantity = quantity
        db.flush()
        return line

    @staticmethod
    def remove_line(db: Session, user_id: int, product_id: int) -> None:
        line = CartService._get_line(db, user_id, product_id)
        if line is None:
            raise CartItemNotFound()
        db.delete(line)
        db.flush()
