from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_active_user
from storefront.db.session import get_db
from storefront.db.transaction import transaction
from storefront.models.user import User
from storefront.schemas.cart import (
    CartItemAdjust,
    CartItemCreate,
    CartItemUpdate,
    CartLineResponse,
    CartResponse,
)
from storefront.services.cart_service import CartService
from storefront.utils.response import success

router = APIRouter()


def _cart_payload(db: Session, user_id: int) -> dict:
    snapshot = CartService.snapshot(db, user_id)
    return CartResponse(
        items=[
            CartLineResponse(
                id=line.cart_item_id,
                product_id=line.product_id,
                product_name=line.product_name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.line_total,
                stock_available=line.stock,
            )
            for line in snapshot.lines
        ],
        subtotal=CartService.total(snapshot),
        total_items=snapshot.total_items,
    ).model_dump(mode="json")


@router.get("", response_model=dict)
@router.get("/", response_model=dict)
def get_cart(
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """Get user's cart priced at current catalog prices"""
    return success(data=_cart_payload(db, current_user.id))


@router.get("/count", response_model=dict)
def get_cart_count(
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    return success(data={"count": CartService.count(db, current_user.id)})


@router.post("/items", status_code=status.HTTP_201_CREATED)
def add_to_cart(
    cart_item: CartItemCreate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """Add item to cart, merging into an existing line for the same product"""
    with transaction(db, user_id=current_user.id, operation="add_to_cart"):
        line = CartService.upsert_line(db, current_user.id, cart_item.product_id, cart_item.quantity)
        line_id = line.id

    return success(data={"cart_item_id": line_id}, message="Item added to cart")


@router.patch("/items/{product_id}")
def adjust_cart_item(
    product_id: int,
    adjustment: CartItemAdjust,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """Apply a signed quantity change; a line that reaches zero is removed"""
    with transaction(db, user_id=current_user.id, operation="adjust_cart_item"):
        line = CartService.upsert_line(db, current_user.id, product_id, adjustment.delta)
        quantity = line.quantity if line is not None else 0

    return success(
        data={"product_id": product_id, "quantity": quantity},
        message="Cart updated" if quantity else "Item removed from cart",
    )


@router.put("/items/{product_id}")
def update_cart_item(
    product_id: int,
    update: CartItemUpdate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    with transaction(db, user_id=current_user.id, operation="update_cart_item"):
        line = CartService.set_quantity(db, current_user.id, product_id, update.quantity)
        quantity = line.quantity

    return success(data={"product_id": product_id, "quantity": quantity}, message="Cart updated")


@router.delete("/items/{product_id}")
def remove_from_cart(
    product_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    with transaction(db, user_id=current_user.id, operation="remove_cart_item"):
        CartService.remove_line(db, current_user.id, product_id)

    return success(message="Item removed from cart")


@router.delete("", response_model=dict)
@router.delete("/", response_model=dict)
def clear_cart(
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    with transaction(db, user_id=current_user.id, operation="clear_cart"):
        removed = CartService.clear(db, current_user.id)

    return success(data={"lines_removed": removed}, message="Cart cleared")
