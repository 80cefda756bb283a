from decimal import Decimal

import structlog
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.security import hash_password
from storefront.models.product import Product
from storefront.models.user import User, UserRole

logger = structlog.get_logger()

DEMO_PRODUCTS = [
    {"name": "Canvas Tote Bag", "description": "Heavy cotton tote", "price": Decimal("18.00"), "stock": 40},
    {"name": "Ceramic Mug", "description": "350ml stoneware mug", "price": Decimal("12.50"), "stock": 25},
    {"name": "Notebook A5", "description": "Dot grid, 120 pages", "price": Decimal("9.99"), "stock": 60},
    {"name": "Desk Lamp", "description": "LED, dimmable", "price": Decimal("49.00"), "stock": 8},
]


def init_db(db: Session) -> None:
    """Seed the bootstrap admin and a few demo products. Safe to run repeatedly."""

    admin = db.query(User).filter(User.email == settings.DEFAULT_ADMIN_EMAIL).first()
    if not admin:
        seed_password = (settings.DEFAULT_ADMIN_PASSWORD or "").strip()
        if not seed_password:
            message = (
                "Missing admin bootstrap credentials: set DEFAULT_ADMIN_PASSWORD "
                "or create an admin user manually before launch."
            )
            if settings.ENVIRONMENT == "production":
                logger.error("admin_bootstrap_missing", environment=settings.ENVIRONMENT)
                raise RuntimeError(message)
            logger.warning("admin_bootstrap_missing", environment=settings.ENVIRONMENT)
        else:
            db.add(
                User(
                    email=settings.DEFAULT_ADMIN_EMAIL,
                    password_hash=hash_password(seed_password),
                    full_name="Store Admin",
                    role=UserRole.ADMIN,
                    is_active=True,
                )
            )
            logger.info("admin_user_created", email=settings.DEFAULT_ADMIN_EMAIL)

    for product_data in DEMO_PRODUCTS:
        existing = db.query(Product.id).filter(Product.name == product_data["name"]).first()
        if not existing:
            db.add(Product(**product_data))
            logger.info("product_created", name=product_data["name"])

    db.commit()
    logger.info("database_initialized")


if __name__ == "__main__":
    from storefront.core.logging_config import configure_logging
    from storefront.db.session import SessionLocal

    configure_logging()
    db = SessionLocal()
    try:
        init_db(db)
    finally:
        db.close()
