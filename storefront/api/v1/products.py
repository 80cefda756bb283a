from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from storefront.core.exceptions import ProductNotFound
from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.models.product import Product
from storefront.schemas.product import ProductResponse
from storefront.utils.response import paginated_response, success

router = APIRouter()


@router.get("", response_model=dict)
@router.get("/", response_model=dict)
@limiter.limit("100/minute")
def get_products(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Active products, oldest first."""
    query = db.query(Product).filter(Product.is_active == True)  # noqa: E712

    total = query.count()
    products = (
        query.order_by(Product.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return paginated_response(
        items=[ProductResponse.model_validate(p).model_dump() for p in products],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/{product_id}", response_model=dict)
def get_product(product_id: int, db: Session = Depends(get_db)):
    product = (
        db.query(Product)
        .filter(Product.id == product_id, Product.is_active == True)  # noqa: E712
        .first()
    )
    if not product:
        raise ProductNotFound(product_id)

    return success(data=ProductResponse.model_validate(product).model_dump())
