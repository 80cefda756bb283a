from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class OrderItemResponse(BaseModel):
    id: int
    product_id: Optional[int] = None
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    class Config:
        from_attributes = True


class ShippingSnapshotResponse(BaseModel):
    recipient_name: str
    phone: str
    address: str
    city: str
    postal_code: str


class OrderResponse(BaseModel):
    id: int
    order_number: str
    status: str
    payment_method: str
    total_amount: Decimal
    total_items: int
    items: List[OrderItemResponse]
    shipping: ShippingSnapshotResponse
    tracking_number: Optional[str] = None
    created_at: datetime


class OrderStatusUpdate(BaseModel):
    # Plain string so unknown statuses reach the state machine and fail as invalid transitions
    status: str = Field(..., min_length=1, max_length=20)
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=500)


class OrderStatusHistoryResponse(BaseModel):
    id: int
    old_status: Optional[str]
    new_status: str
    changed_by: Optional[int]
    notes: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class OrderTrackingResponse(BaseModel):
    order_id: int
    order_number: str
    current_status: str
    can_be_updated: bool
    tracking_number: Optional[str]
    status_history: List[OrderStatusHistoryResponse]
