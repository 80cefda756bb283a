from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from storefront.core.exceptions import (
    EmptyCart,
    InsufficientStock,
    InvalidPaymentMethod,
    InvalidShipping,
    PersistenceFailure,
)
from storefront.models.cart import CartItem
from storefront.models.order import Order, OrderItem
from storefront.models.product import Product
from storefront.services import checkout_service, order_service
from storefront.services.cart_service import CartService
from storefront.services.checkout_service import CheckoutService, validate_shipping
from storefront.services.inventory import InventoryLedger


def _stock(db: Session, product_id: int) -> int:
    db.expire_all()
    return db.get(Product, product_id).stock


def _cart_quantities(db: Session, user_id: int) -> dict:
    return {
        item.product_id: item.quantity
        for item in db.query(CartItem).filter(CartItem.user_id == user_id).all()
    }


def test_place_order_happy_path(db_session: Session, make_user, make_product, add_to_cart, shipping, notifier):
    user = make_user()
    product = make_product(price="10.00", stock=5)
    add_to_cart(user, product, 2)

    confirmation = CheckoutService.place_order(db_session, user, shipping, notifier=notifier)

    assert confirmation.status == "pending"
    assert confirmation.total == Decimal("20.00")
    assert confirmation.payment_method == "cod"
    assert _stock(db_session, product.id) == 3
    assert _cart_quantities(db_session, user.id) == {}

    order = db_session.get(Order, confirmation.order_id)
    assert confirmation.estimated_delivery == (order.created_at + timedelta(days=4)).date()
    assert [(i.product_id, i.quantity, i.unit_price) for i in order.items] == [
        (product.id, 2, Decimal("10.00"))
    ]
    assert order.shipping_city == "London"
    assert notifier.sent == [(order.order_number, user.email)]


def test_multi_line_order_totals_and_decrements(db_session: Session, make_user, make_product, add_to_cart, shipping):
    user = make_user()
    mug = make_product(price="12.50", stock=4)
    lamp = make_product(price="49.00", stock=1)
    add_to_cart(user, mug, 3)
    add_to_cart(user, lamp, 1)

    confirmation = CheckoutService.place_order(db_session, user, shipping, payment_method="card")

    assert confirmation.total == Decimal("86.50")
    assert confirmation.payment_method == "card"
    assert _stock(db_session, mug.id) == 1
    assert _stock(db_session, lamp.id) == 0


def test_insufficient_stock_leaves_everything_untouched(db_session: Session, make_user, make_product, add_to_cart, shipping, notifier):
    user = make_user()
    product = make_product(stock=2)
    add_to_cart(user, product, 5)

    with pytest.raises(InsufficientStock) as exc_info:
        CheckoutService.place_order(db_session, user, shipping, notifier=notifier)

    assert exc_info.value.product_id == product.id
    assert exc_info.value.available == 2
    assert _stock(db_session, product.id) == 2
    assert _cart_quantities(db_session, user.id) == {product.id: 5}
    assert db_session.query(Order).count() == 0
    assert notifier.sent == []


def test_one_short_line_fails_the_whole_order(db_session: Session, make_user, make_product, add_to_cart, shipping):
    user = make_user()
    plenty = make_product(stock=10)
    short = make_product(stock=1)
    add_to_cart(user, plenty, 2)
    add_to_cart(user, short, 2)

    with pytest.raises(InsufficientStock) as exc_info:
        CheckoutService.place_order(db_session, user, shipping)

    assert exc_info.value.product_id == short.id
    assert _stock(db_session, plenty.id) == 10
    assert db_session.query(OrderItem).count() == 0


def test_empty_cart_is_rejected_before_any_write(db_session: Session, make_user, make_product, shipping, monkeypatch):
    user = make_user()
    product = make_product(stock=3)

    def no_transaction(*args, **kwargs):
        raise AssertionError("transaction must not open")

    monkeypatch.setattr(checkout_service, "transaction", no_transaction)

    with pytest.raises(EmptyCart):
        CheckoutService.place_order(db_session, user, shipping)

    assert _stock(db_session, product.id) == 3
    assert db_session.query(Order).count() == 0


def test_missing_city_fails_without_opening_transaction(db_session: Session, make_user, make_product, add_to_cart, shipping, monkeypatch):
    user = make_user()
    product = make_product(stock=3)
    add_to_cart(user, product, 1)
    del shipping["city"]

    def no_transaction(*args, **kwargs):
        raise AssertionError("transaction must not open")

    monkeypatch.setattr(checkout_service, "transaction", no_transaction)

    with pytest.raises(InvalidShipping) as exc_info:
        CheckoutService.place_order(db_session, user, shipping)

    assert exc_info.value.field_errors == [{"field": "city", "message": "City is required."}]
    assert _stock(db_session, product.id) == 3
    assert _cart_quantities(db_session, user.id) == {product.id: 1}
    assert db_session.query(Order).count() == 0


def test_validate_shipping_reports_every_blank_field():
    with pytest.raises(InvalidShipping) as exc_info:
        validate_shipping({"recipient_name": "  ", "phone": "", "address": "1 Road", "city": None})

    fields = [error["field"] for error in exc_info.value.field_errors]
    assert sorted(fields) == ["city", "phone", "postal_code", "recipient_name"]


def test_validate_shipping_strips_markup():
    address = validate_shipping(
        {
            "recipient_name": "<b>Ada</b>",
            "phone": "5550100",
            "address": "<script>x</script>12 Row",
            "city": "London",
            "postal_code": "N1",
        }
    )

    assert address.recipient_name == "Ada"
    assert "<" not in address.address


def test_unknown_payment_method_is_rejected(db_session: Session, make_user, make_product, add_to_cart, shipping):
    user = make_user()
    add_to_cart(user, make_product(), 1)

    with pytest.raises(InvalidPaymentMethod):
        CheckoutService.place_order(db_session, user, shipping, payment_method="bitcoin")

    assert db_session.query(Order).count() == 0


def test_failure_mid_transaction_rolls_back_everything(db_session: Session, make_user, make_product, add_to_cart, shipping, monkeypatch):
    user = make_user()
    product = make_product(stock=5)
    add_to_cart(user, product, 2)

    def failing_clear(db, user_id):
        raise OperationalError("DELETE FROM cart_items", {}, Exception("disk I/O error"))

    monkeypatch.setattr(CartService, "clear", staticmethod(failing_clear))

    with pytest.raises(PersistenceFailure):
        CheckoutService.place_order(db_session, user, shipping)

    assert _stock(db_session, product.id) == 5
    assert _cart_quantities(db_session, user.id) == {product.id: 2}
    assert db_session.query(Order).count() == 0
    assert db_session.query(OrderItem).count() == 0


def test_stock_lost_between_check_and_decrement_rolls_back(db_session: Session, make_user, make_product, add_to_cart, shipping, monkeypatch):
    user = make_user()
    first = make_product(stock=5)
    second = make_product(stock=5)
    add_to_cart(user, first, 1)
    add_to_cart(user, second, 1)

    original_reserve = InventoryLedger.reserve

    def reserve_with_race(db, product_id, quantity):
        if product_id == second.id:
            raise InsufficientStock(product_id=product_id, available=0)
        return original_reserve(db, product_id, quantity)

    monkeypatch.setattr(InventoryLedger, "reserve", staticmethod(reserve_with_race))

    with pytest.raises(InsufficientStock):
        CheckoutService.place_order(db_session, user, shipping)

    assert _stock(db_session, first.id) == 5
    assert db_session.query(Order).count() == 0


def test_notification_failure_does_not_undo_the_order(db_session: Session, make_user, make_product, add_to_cart, shipping, notifier):
    user = make_user()
    product = make_product(stock=5)
    add_to_cart(user, product, 1)
    notifier.fail = True

    confirmation = CheckoutService.place_order(db_session, user, shipping, notifier=notifier)

    assert db_session.get(Order, confirmation.order_id) is not None
    assert _stock(db_session, product.id) == 4
    assert notifier.sent == []


def test_idempotency_key_replays_the_first_order(db_session: Session, make_user, make_product, add_to_cart, shipping, notifier):
    user = make_user()
    product = make_product(stock=5)
    add_to_cart(user, product, 2)

    first = CheckoutService.place_order(db_session, user, shipping, notifier=notifier, idempotency_key="cart-2026-0001")
    add_to_cart(user, product, 1)
    second = CheckoutService.place_order(db_session, user, shipping, notifier=notifier, idempotency_key="cart-2026-0001")

    assert second.replayed is True
    assert second.order_id == first.order_id
    assert db_session.query(Order).count() == 1
    assert _stock(db_session, product.id) == 3
    assert _cart_quantities(db_session, user.id) == {product.id: 1}
    assert len(notifier.sent) == 1


def test_placed_order_ignores_later_price_changes(db_session: Session, make_user, make_product, add_to_cart, shipping):
    user = make_user()
    product = make_product(price="10.00", stock=5)
    add_to_cart(user, product, 2)
    confirmation = CheckoutService.place_order(db_session, user, shipping)

    db_session.get(Product, product.id).price = Decimal("99.00")
    db_session.commit()

    order = db_session.get(Order, confirmation.order_id)
    assert order.total_amount == Decimal("20.00")
    assert order.items[0].unit_price == Decimal("10.00")


def test_cancelled_order_does_not_restore_stock(db_session: Session, make_user, make_product, add_to_cart, shipping):
    from storefront.services.order_service import OrderService

    user = make_user()
    product = make_product(stock=5)
    add_to_cart(user, product, 2)
    confirmation = CheckoutService.place_order(db_session, user, shipping)

    OrderService.transition(db_session, confirmation.order_id, "cancelled")
    db_session.commit()

    assert _stock(db_session, product.id) == 3


def test_summary_prefills_shipping_defaults(db_session: Session, make_user, make_product, add_to_cart):
    user = make_user(full_name="Grace Hopper", phone="5550199")
    add_to_cart(user, make_product(price="3.25"), 2)

    summary = CheckoutService.summary(db_session, user)

    assert summary["total"] == Decimal("6.50")
    assert summary["total_items"] == 2
    assert summary["defaults"] == {
        "recipient_name": "Grace Hopper",
        "phone": "5550199",
        "address": "",
        "city": "",
        "postal_code": "",
    }


def test_summary_prefills_from_last_order_shipping(
    db_session: Session, make_user, make_product, add_to_cart, shipping
):
    user = make_user(full_name="Grace Hopper", phone="5550199")
    product = make_product(stock=10)
    add_to_cart(user, product, 1)
    CheckoutService.place_order(db_session, user, shipping)

    add_to_cart(user, product, 1)
    summary = CheckoutService.summary(db_session, user)

    assert summary["defaults"] == shipping


def test_order_number_exhaustion_is_a_persistence_failure(
    db_session: Session, make_user, make_product, add_to_cart, shipping, monkeypatch
):
    user = make_user()
    product = make_product(stock=5)
    add_to_cart(user, product, 1)
    existing = make_user()
    add_to_cart(existing, product, 1)
    taken = CheckoutService.place_order(db_session, existing, shipping).order_number

    monkeypatch.setattr(
        order_service.random,
        "choices",
        lambda population, k: list(taken[-k:]),
    )

    with pytest.raises(PersistenceFailure) as exc_info:
        CheckoutService.place_order(db_session, user, shipping)

    assert exc_info.value.status_code == 503
    assert "order number" in exc_info.value.message
    assert _stock(db_session, product.id) == 4
    assert _cart_quantities(db_session, user.id) == {product.id: 1}
