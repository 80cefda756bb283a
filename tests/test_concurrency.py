import threading

from sqlalchemy.orm import Session, sessionmaker

from storefront.core.exceptions import APIError, EmptyCart, InsufficientStock
from storefront.models.cart import CartItem
from storefront.models.order import Order
from storefront.models.product import Product
from storefront.models.user import User
from storefront.services.checkout_service import CheckoutService, OrderConfirmation
from storefront.services.order_service import OrderService


def _checkout_concurrently(session_factory: sessionmaker, user_ids, shipping):
    """Run one checkout per user id in its own thread and session, released together."""
    barrier = threading.Barrier(len(user_ids))
    results = [None] * len(user_ids)

    def worker(index, user_id):
        db = session_factory()
        try:
            user = db.get(User, user_id)
            barrier.wait()
            try:
                results[index] = CheckoutService.place_order(db, user, shipping)
            except APIError as exc:
                results[index] = exc
        finally:
            db.close()

    threads = [
        threading.Thread(target=worker, args=(index, user_id))
        for index, user_id in enumerate(user_ids)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    return results


def test_last_unit_goes_to_exactly_one_customer(
    db_session: Session, session_factory, make_user, make_product, add_to_cart, shipping
):
    product = make_product(stock=1)
    alice = make_user()
    bob = make_user()
    add_to_cart(alice, product, 1)
    add_to_cart(bob, product, 1)

    results = _checkout_concurrently(session_factory, [alice.id, bob.id], shipping)

    failures = [r for r in results if isinstance(r, Exception)]
    successes = [r for r in results if not isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientStock)
    assert failures[0].product_id == product.id
    assert failures[0].available == 0

    db_session.expire_all()
    assert db_session.get(Product, product.id).stock == 0
    assert db_session.query(Order).count() == 1


def test_same_cart_cannot_be_checked_out_twice(
    db_session: Session, session_factory, make_user, make_product, add_to_cart, shipping
):
    product = make_product(stock=10)
    user = make_user()
    add_to_cart(user, product, 2)

    results = _checkout_concurrently(session_factory, [user.id, user.id], shipping)

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], EmptyCart)

    db_session.expire_all()
    assert db_session.get(Product, product.id).stock == 8
    assert db_session.query(Order).count() == 1
    assert db_session.query(CartItem).count() == 0


def test_stock_never_goes_negative_under_contention(
    db_session: Session, session_factory, make_user, make_product, add_to_cart, shipping
):
    product = make_product(stock=3)
    users = [make_user() for _ in range(5)]
    for user in users:
        add_to_cart(user, product, 1)

    results = _checkout_concurrently(session_factory, [user.id for user in users], shipping)

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 3
    assert all(isinstance(f, InsufficientStock) for f in failures)

    db_session.expire_all()
    assert db_session.get(Product, product.id).stock == 0


def test_concurrent_double_submit_returns_one_order(
    db_session: Session, session_factory, make_user, make_product, add_to_cart, shipping, monkeypatch
):
    product = make_product(stock=10)
    user = make_user()
    add_to_cart(user, product, 2)
    owner_id = user.id

    # Both submissions see "no order for this key" before either writes
    lookups_done = threading.Barrier(2)
    seen = threading.local()
    find_existing = OrderService.find_by_idempotency_key

    def find_then_wait(db, user_id, key):
        found = find_existing(db, user_id, key)
        if not getattr(seen, "first_lookup_done", False):
            seen.first_lookup_done = True
            lookups_done.wait(timeout=30)
        return found

    monkeypatch.setattr(OrderService, "find_by_idempotency_key", staticmethod(find_then_wait))

    barrier = threading.Barrier(2)
    results = [None, None]

    def worker(index):
        db = session_factory()
        try:
            submitter = db.get(User, owner_id)
            barrier.wait()
            try:
                results[index] = CheckoutService.place_order(
                    db, submitter, shipping, idempotency_key="double-submit-1"
                )
            except APIError as exc:
                results[index] = exc
        finally:
            db.close()

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert all(isinstance(r, OrderConfirmation) for r in results), results
    assert results[0].order_id == results[1].order_id
    assert sorted(r.replayed for r in results) == [False, True]

    db_session.expire_all()
    assert db_session.query(Order).count() == 1
    assert db_session.get(Product, product.id).stock == 8
    assert db_session.query(CartItem).count() == 0
