import os
import tempfile
from collections.abc import Generator
from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.gettempdir(), 'storefront-tests-bootstrap.db')}",
)
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-storefront-checkout-0123456789")

import storefront.models  # noqa: F401,E402
from storefront.core.exceptions import NotificationFailure  # noqa: E402
from storefront.core.security import create_access_token, hash_password  # noqa: E402
from storefront.db.base_class import Base  # noqa: E402
from storefront.db.session import get_db  # noqa: E402
from storefront.main import app  # noqa: E402
from storefront.models.cart import CartItem  # noqa: E402
from storefront.models.product import Product  # noqa: E402
from storefront.models.user import User, UserRole  # noqa: E402
from storefront.services.notifier import OrderNotifier, get_notifier  # noqa: E402

PASSWORD = "StrongPass1"


class RecordingNotifier(OrderNotifier):
    """Collects confirmations instead of queueing them; can be told to fail."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send_order_confirmation(self, order, recipient_email):
        if self.fail:
            raise NotificationFailure("broker unavailable")
        self.sent.append((order.order_number, recipient_email))
        return True


@pytest.fixture()
def session_factory() -> Generator[sessionmaker, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False, "timeout": 15},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def shipping() -> dict:
    return {
        "recipient_name": "Ada Lovelace",
        "phone": "5550100",
        "address": "12 Analytical Row",
        "city": "London",
        "postal_code": "N1 9GU",
    }


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def client(db_session: Session, notifier: RecordingNotifier) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.state.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db_session: Session):
    def _make_user(role: UserRole = UserRole.CUSTOMER, **overrides) -> User:
        user = User(
            email=overrides.pop("email", f"user-{uuid4().hex[:8]}@example.com"),
            full_name=overrides.pop("full_name", "Checkout Tester"),
            phone=overrides.pop("phone", "5550100"),
            password_hash=hash_password(PASSWORD),
            role=role,
            **overrides,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def make_product(db_session: Session):
    def _make_product(price="10.00", stock=10, **overrides) -> Product:
        product = Product(
            name=overrides.pop("name", f"Product {uuid4().hex[:6]}"),
            price=Decimal(price),
            stock=stock,
            **overrides,
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make_product


@pytest.fixture()
def add_to_cart(db_session: Session):
    def _add_to_cart(user: User, product: Product, quantity: int) -> CartItem:
        item = CartItem(user_id=user.id, product_id=product.id, quantity=quantity)
        db_session.add(item)
        db_session.commit()
        db_session.refresh(item)
        return item

    return _add_to_cart


@pytest.fixture()
def auth_headers():
    def _auth_headers(user: User) -> dict:
        token = create_access_token(user.id, user.role.value)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
