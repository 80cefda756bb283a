from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List


class CartItemCreate(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(default=1, ge=1, le=99)


class CartItemAdjust(BaseModel):
    """Signed quantity change; reaching zero removes the line."""

    delta: int = Field(..., ge=-99, le=99)


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1, le=99)


class CartLineResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    stock_available: int


class CartResponse(BaseModel):
    items: List[CartLineResponse]
    subtotal: Decimal
    total_items: int
