import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from storefront.api.deps import AUTH_COOKIE_NAME, get_current_active_user
from storefront.core.config import settings
from storefront.core.exceptions import (
    AccountInactive,
    EmailAlreadyExists,
    InvalidCredentials,
    PhoneAlreadyExists,
)
from storefront.core.rate_limiter import limiter
from storefront.core.security import create_access_token, hash_password, verify_password
from storefront.db.session import get_db
from storefront.db.transaction import transaction
from storefront.models.user import User
from storefront.schemas.user import UserCreate, UserLogin
from storefront.utils.response import success

logger = structlog.get_logger()

router = APIRouter()


def _user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "phone": user.phone,
        "role": user.role.value,
        "is_active": user.is_active,
    }


def _should_use_secure_cookies(request: Request) -> bool:
    if settings.ENVIRONMENT != "production":
        return False
    return request.url.scheme == "https"


def _set_auth_cookie(response: JSONResponse, access_token: str, request: Request) -> None:
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value=access_token,
        httponly=True,
        secure=_should_use_secure_cookies(request),
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        path="/",
    )


@router.post(
    "/register",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Register user account",
    responses={
        201: {"description": "Registration successful"},
        409: {"description": "Email or phone already registered"},
        422: {"description": "Validation error"},
    },
)
@limiter.limit("5/minute")
def register(request: Request, user_in: UserCreate, db: Session = Depends(get_db)):
    if db.query(User.id).filter(User.email == user_in.email).first():
        raise EmailAlreadyExists()

    if user_in.phone and db.query(User.id).filter(User.phone == user_in.phone).first():
        raise PhoneAlreadyExists()

    with transaction(db, operation="register"):
        user = User(
            email=user_in.email,
            password_hash=hash_password(user_in.password),
            full_name=user_in.full_name,
            phone=user_in.phone,
        )
        db.add(user)
    db.refresh(user)
    logger.info("user_registered", user_id=user.id)

    return success(
        data=_user_payload(user),
        message="Registration successful",
    )


@router.post(
    "/login",
    response_model=dict,
    summary="Login user",
    description="""
Authenticates a user and sets `access_token` as an httpOnly cookie.

Accepts JSON or form-encoded credentials. The token is also returned in the
body for API clients that send it as a Bearer header.
""",
    responses={
        200: {"description": "Login successful"},
        401: {"description": "Invalid credentials"},
        403: {"description": "Account inactive"},
    },
)
@limiter.limit("5/minute")
async def login(request: Request, db: Session = Depends(get_db)):
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        payload = await request.json()
    else:
        form = await request.form()
        payload = dict(form)

    try:
        credentials = UserLogin(**payload)
    except ValidationError:
        raise InvalidCredentials()

    user = db.query(User).filter(User.email == credentials.email).first()

    if not user or not verify_password(credentials.password, user.password_hash):
        logger.warning("login_failed", email_domain=credentials.email.rsplit("@", 1)[-1])
        raise InvalidCredentials()

    if not user.is_active:
        raise AccountInactive()

    access_token = create_access_token(user.id, user.role.value)

    response = JSONResponse(
        content=success(
            data={
                "user": {
                    "id": user.id,
                    "email": user.email,
                    "role": user.role.value,
                },
                "access_token": access_token,
                "token_type": "bearer",
            },
            message="Login successful",
        )
    )
    _set_auth_cookie(response, access_token, request)
    return response


@router.post("/logout")
def logout():
    response = JSONResponse(content=success(message="Logged out"))
    response.delete_cookie(AUTH_COOKIE_NAME, path="/")
    return response


@router.get("/me")
def me(current_user: User = Depends(get_current_active_user)):
    return success(data=_user_payload(current_user))
