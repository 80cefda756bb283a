from typing import Dict, Iterable, Mapping

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from storefront.core.exceptions import InsufficientStock
from storefront.models.product import Product

logger = structlog.get_logger()


class InventoryLedger:
    """Per-product stock counts. Stock only ever moves through a conditional decrement."""

    @staticmethod
    def lock_products(db: Session, product_ids: Iterable[int]) -> Dict[int, Product]:
        """
        Load products for update, in ascending id order so concurrent
        checkouts always acquire row locks in the same sequence.

        Rows are re-read from the database even if the session already holds
        them, so callers see the current persisted stock and price.
        """
        ids = sorted(set(product_ids))
        if not ids:
            return {}

        products = (
            db.query(Product)
            .filter(Product.id.in_(ids))
            .order_by(Product.id)
            .with_for_update()
            .populate_existing()
            .all()
        )
        return {product.id: product for product in products}

    @staticmethod
    def available(db: Session, product_id: int) -> int:
        stock = db.query(Product.stock).filter(Product.id == product_id).scalar()
        return stock or 0

    @staticmethod
    def check(db: Session, requested: Mapping[int, int]) -> Dict[int, Product]:
        """
        Verify every requested quantity against current stock.

        Args:
            db (Session): Database session, inside the caller's transaction
            requested (Mapping[int, int]): product_id -> quantity

        Returns:
            Dict[int, Product]: the locked products keyed by id

        Raises:
            InsufficientStock: for the first product (by id) that cannot be covered.
                A product that no longer exists counts as zero available.
        """
        locked = InventoryLedger.lock_products(db, requested.keys())

        for product_id in sorted(requested):
            quantity = requested[product_id]
            product = locked.get(product_id)
            available = product.stock if product else 0
            if available < quantity:
                raise InsufficientStock(
                    product_id=product_id,
                    available=available,
                    product_name=product.name if product else None,
                )

        return locked

    @staticmethod
    def reserve(db: Session, product_id: int, quantity: int) -> int:
        """
        Atomically decrement stock if enough is available.

        The decrement is a single conditional UPDATE, so it can never take
        stock below zero even if another transaction changed the row after
        it was read.

        Returns:
            int: remaining stock after the decrement
        """
        if quantity < 1:
            raise ValueError("Reserved quantity must be at least 1")

        result = db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            available = InventoryLedger.available(db, product_id)
            logger.info(
                "stock_reservation_rejected",
                product_id=product_id,
                requested=quantity,
                available=available,
            )
            raise InsufficientStock(product_id=product_id, available=available)

        remaining = InventoryLedger.available(db, product_id)
        logger.info(
            "stock_reserved",
            product_id=product_id,
            quantity=quantity,
            remaining_stock=remaining,
        )
        return remaining
