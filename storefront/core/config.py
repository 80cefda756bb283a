from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from typing import List, Optional


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "Storefront Checkout API"
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    # Seconds a writer waits on a locked SQLite file before giving up
    SQLITE_BUSY_TIMEOUT: float = 15.0

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
    ]
    FRONTEND_URL: str = "http://localhost:3000"

    # Order confirmation email
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    EMAILS_FROM_EMAIL: str = ""
    EMAILS_FROM_NAME: str = "Storefront"
    EMAILS_FROM_ORDERS: str = ""

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: Optional[str] = None
    SENTRY_DSN: str = ""

    # Task queue
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    # Checkout
    CHECKOUT_RATE_LIMIT: str = "10/minute"
    ESTIMATED_DELIVERY_DAYS: int = 4

    # Admin bootstrap
    DEFAULT_ADMIN_EMAIL: str = "admin@storefront.local"
    DEFAULT_ADMIN_PASSWORD: str = ""

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("ESTIMATED_DELIVERY_DAYS")
    @classmethod
    def delivery_days_not_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("ESTIMATED_DELIVERY_DAYS cannot be negative")
        return value

    @model_validator(mode="after")
    def validate_production_settings(self):
        if self.ENVIRONMENT == "production":
            if len((self.SECRET_KEY or "").strip()) < 32:
                raise ValueError("SECRET_KEY must be at least 32 chars in production")
            if self.is_sqlite:
                raise ValueError("SQLite is for development and tests; set a server DATABASE_URL in production")
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
