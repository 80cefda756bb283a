from fastapi import status
from typing import Any, Dict, List, Optional


class APIError(Exception):
    code = "api_error"

    def __init__(
        self,
        status_code: int,
        message: str,
        errors: Optional[List[Any]] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.errors = errors or []
        if code is not None:
            self.code = code


class EmailAlreadyExists(APIError):
    code = "email_taken"

    def __init__(self):
        super().__init__(status.HTTP_409_CONFLICT, "Email already registered")


class PhoneAlreadyExists(APIError):
    code = "phone_taken"

    def __init__(self):
        super().__init__(status.HTTP_409_CONFLICT, "Phone number already registered")


class InvalidCredentials(APIError):
    code = "invalid_credentials"

    def __init__(self):
        super().__init__(status.HTTP_401_UNAUTHORIZED, "Incorrect email or password")


class AccountInactive(APIError):
    code = "account_inactive"

    def __init__(self):
        super().__init__(status.HTTP_403_FORBIDDEN, "Account is inactive")


class ProductNotFound(APIError):
    code = "product_not_found"

    def __init__(self, product_id: Optional[int] = None):
        super().__init__(
            status.HTTP_404_NOT_FOUND,
            "Product not found",
            errors=[{"product_id": product_id}] if product_id is not None else [],
        )
        self.product_id = product_id


class CartItemNotFound(APIError):
    code = "cart_item_not_found"

    def __init__(self):
        super().__init__(status.HTTP_404_NOT_FOUND, "Cart item not found")


class OrderNotFound(APIError):
    code = "order_not_found"

    def __init__(self):
        super().__init__(status.HTTP_404_NOT_FOUND, "Order not found")


# --------------------------------------------------
# Checkout errors
# --------------------------------------------------
class CheckoutError(APIError):
    """Base class for errors returned by the order placement workflow."""

    code = "checkout_error"


class EmptyCart(CheckoutError):
    code = "empty_cart"

    def __init__(self):
        super().__init__(status.HTTP_400_BAD_REQUEST, "Cart is empty")


class InvalidShipping(CheckoutError):
    code = "invalid_shipping"

    def __init__(self, field_errors: List[Dict[str, str]]):
        super().__init__(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Invalid shipping details",
            errors=field_errors,
        )
        self.field_errors = field_errors


class InvalidPaymentMethod(CheckoutError):
    code = "invalid_payment_method"

    def __init__(self, payment_method: str):
        super().__init__(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Payment method must be one of: cod, card",
            errors=[{"field": "payment_method", "value": payment_method}],
        )


class InsufficientStock(CheckoutError):
    code = "insufficient_stock"

    def __init__(self, product_id: int, available: int, product_name: Optional[str] = None):
        label = product_name or f"product {product_id}"
        super().__init__(
            status.HTTP_409_CONFLICT,
            f"Insufficient stock for {label}. Only {available} available",
            errors=[{"product_id": product_id, "available": available}],
        )
        self.product_id = product_id
        self.available = available


class PersistenceFailure(CheckoutError):
    code = "persistence_failure"

    def __init__(self, message: str = "Something went wrong. Please try again."):
        super().__init__(status.HTTP_503_SERVICE_UNAVAILABLE, message)


class DuplicateSubmission(CheckoutError):
    """An order with this idempotency key was written by a concurrent request."""

    code = "duplicate_submission"

    def __init__(self, idempotency_key: str):
        super().__init__(
            status.HTTP_409_CONFLICT,
            "This order was already submitted",
            errors=[{"field": "idempotency_key", "value": idempotency_key}],
        )
        self.idempotency_key = idempotency_key


class BelowMinimum(APIError):
    code = "below_minimum"

    def __init__(self, product_id: int, quantity: int):
        super().__init__(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Quantity must be at least 1",
            errors=[{"product_id": product_id, "quantity": quantity}],
        )


class InvalidTransition(APIError):
    code = "invalid_transition"

    def __init__(self, current: str, requested: str):
        super().__init__(
            status.HTTP_409_CONFLICT,
            f"Cannot change order status from {current} to {requested}",
            errors=[{"current_status": current, "requested_status": requested}],
        )
        self.current = current
        self.requested = requested


class NotificationFailure(Exception):
    """Raised by notifiers; never rendered to clients."""

    code = "notification_failure"
