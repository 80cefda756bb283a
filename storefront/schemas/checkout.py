from datetime import date
from decimal import Decimal
from html import unescape
from typing import List, Optional

import bleach
from pydantic import BaseModel, Field, field_validator

IDEMPOTENCY_KEY_MIN_LENGTH = 8
IDEMPOTENCY_KEY_MAX_LENGTH = 64


class ShippingDetails(BaseModel):
    """Shipping form as submitted; required-field rules are enforced at checkout."""

    recipient_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None


class ShippingAddress(BaseModel):
    """Validated shipping snapshot copied onto the order."""

    model_config = {"str_strip_whitespace": True}

    recipient_name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=1, max_length=20)
    address: str = Field(..., min_length=1, max_length=500)
    city: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=10)

    @field_validator("recipient_name", "address", "city", mode="after")
    @classmethod
    def strip_markup(cls, value: str) -> str:
        # Plain text out: tags stripped, entities decoded
        sanitized = unescape(bleach.clean(value, tags=[], attributes={}, strip=True)).strip()
        if not sanitized:
            raise ValueError("must not be blank")
        return sanitized


class CheckoutRequest(BaseModel):
    shipping: ShippingDetails = Field(default_factory=ShippingDetails)
    # Checked by the checkout service so an unknown method fails as invalid_payment_method
    payment_method: str = Field(default="cod", max_length=20)
    idempotency_key: Optional[str] = Field(
        default=None, min_length=IDEMPOTENCY_KEY_MIN_LENGTH, max_length=IDEMPOTENCY_KEY_MAX_LENGTH
    )


class CheckoutLine(BaseModel):
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class ShippingDefaults(BaseModel):
    recipient_name: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""


class CheckoutSummary(BaseModel):
    items: List[CheckoutLine]
    total: Decimal
    total_items: int
    defaults: ShippingDefaults


class OrderConfirmationResponse(BaseModel):
    order_id: int
    order_number: str
    status: str
    total: Decimal
    payment_method: str
    estimated_delivery: date
