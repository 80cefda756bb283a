from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from storefront.core.exceptions import BelowMinimum, CartItemNotFound, InsufficientStock, ProductNotFound
from storefront.models.cart import CartItem
from storefront.models.product import Product
from storefront.services.cart_service import CartService


def _lines(db: Session, user_id: int):
    return db.query(CartItem).filter(CartItem.user_id == user_id).order_by(CartItem.id).all()


def test_upsert_merges_into_single_line(db_session: Session, make_user, make_product):
    user = make_user()
    product = make_product(stock=10)

    CartService.upsert_line(db_session, user.id, product.id, 2)
    CartService.upsert_line(db_session, user.id, product.id, 3)
    db_session.commit()

    lines = _lines(db_session, user.id)
    assert len(lines) == 1
    assert lines[0].quantity == 5


def test_upsert_negative_delta_to_zero_removes_line(db_session: Session, make_user, make_product, add_to_cart):
    user = make_user()
    product = make_product()
    add_to_cart(user, product, 2)

    result = CartService.upsert_line(db_session, user.id, product.id, -2)
    db_session.commit()

    assert result is None
    assert _lines(db_session, user.id) == []


def test_upsert_new_line_requires_positive_delta(db_session: Session, make_user, make_product):
    user = make_user()
    product = make_product()

    with pytest.raises(BelowMinimum):
        CartService.upsert_line(db_session, user.id, product.id, 0)


def test_upsert_rejects_inactive_product(db_session: Session, make_user, make_product):
    user = make_user()
    product = make_product(is_active=False)

    with pytest.raises(ProductNotFound):
        CartService.upsert_line(db_session, user.id, product.id, 1)


def test_upsert_rejects_quantity_beyond_stock(db_session: Session, make_user, make_product, add_to_cart):
    user = make_user()
    product = make_product(stock=3)
    add_to_cart(user, product, 2)

    with pytest.raises(InsufficientStock) as exc_info:
        CartService.upsert_line(db_session, user.id, product.id, 2)

    assert exc_info.value.available == 3


def test_set_quantity_and_remove_line(db_session: Session, make_user, make_product, add_to_cart):
    user = make_user()
    product = make_product(stock=10)
    add_to_cart(user, product, 1)

    CartService.set_quantity(db_session, user.id, product.id, 4)
    db_session.commit()
    assert _lines(db_session, user.id)[0].quantity == 4

    CartService.remove_line(db_session, user.id, product.id)
    db_session.commit()
    assert _lines(db_session, user.id) == []

    with pytest.raises(CartItemNotFound):
        CartService.remove_line(db_session, user.id, product.id)


def test_set_quantity_below_one_is_rejected(db_session: Session, make_user, make_product, add_to_cart):
    user = make_user()
    product = make_product()
    add_to_cart(user, product, 1)

    with pytest.raises(BelowMinimum):
        CartService.set_quantity(db_session, user.id, product.id, 0)


def test_clear_is_idempotent(db_session: Session, make_user, make_product, add_to_cart):
    user = make_user()
    add_to_cart(user, make_product(), 1)
    add_to_cart(user, make_product(), 2)

    assert CartService.clear(db_session, user.id) == 2
    db_session.commit()
    assert CartService.clear(db_session, user.id) == 0


def test_clear_only_touches_own_cart(db_session: Session, make_user, make_product, add_to_cart):
    user = make_user()
    other = make_user()
    product = make_product()
    add_to_cart(user, product, 1)
    add_to_cart(other, product, 1)

    CartService.clear(db_session, user.id)
    db_session.commit()

    assert len(_lines(db_session, other.id)) == 1


def test_snapshot_uses_live_prices(db_session: Session, make_user, make_product, add_to_cart):
    user = make_user()
    mug = make_product(price="12.50")
    lamp = make_product(price="49.00")
    add_to_cart(user, mug, 2)
    add_to_cart(user, lamp, 1)

    snapshot = CartService.snapshot(db_session, user.id)
    assert CartService.total(snapshot) == Decimal("74.00")
    assert snapshot.total_items == 3

    mug.price = Decimal("10.00")
    db_session.commit()

    assert CartService.total(CartService.snapshot(db_session, user.id)) == Decimal("69.00")


def test_snapshot_skips_inactive_and_deleted_products(db_session: Session, make_user, make_product, add_to_cart):
    user = make_user()
    kept = make_product(price="5.00")
    hidden = make_product(price="7.00")
    add_to_cart(user, kept, 1)
    add_to_cart(user, hidden, 1)

    hidden.is_active = False
    db_session.commit()

    snapshot = CartService.snapshot(db_session, user.id)

    assert [line.product_id for line in snapshot.lines] == [kept.id]
    assert CartService.total(snapshot) == Decimal("5.00")


def test_snapshot_of_missing_product_row_is_filtered(db_session: Session, make_user, make_product, add_to_cart):
    user = make_user()
    product = make_product()
    add_to_cart(user, product, 1)

    # SQLite does not enforce the cascade here, leaving an orphaned line.
    db_session.query(Product).filter(Product.id == product.id).delete()
    db_session.commit()

    assert CartService.snapshot(db_session, user.id).is_empty


def test_count_sums_quantities(db_session: Session, make_user, make_product, add_to_cart):
    user = make_user()
    add_to_cart(user, make_product(), 2)
    add_to_cart(user, make_product(), 3)

    assert CartService.count(db_session, user.id) == 5
