from typing import Optional

import structlog
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from storefront.core.exceptions import AccountInactive
from storefront.core.security import decode_access_token
from storefront.db.session import get_db
from storefront.models.user import User

logger = structlog.get_logger()

AUTH_COOKIE_NAME = "access_token"


def _extract_token(request: Request) -> Optional[str]:
    """The httpOnly cookie wins; API clients may send a Bearer header instead."""
    token = request.cookies.get(AUTH_COOKIE_NAME)
    if token:
        return token

    scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()

    return None


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    token = _extract_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.get(User, decode_access_token(token))
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )

    structlog.contextvars.bind_contextvars(user_id=user.id)
    return user


def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    if not current_user.is_active:
        logger.warning("inactive_account_rejected", user_id=current_user.id)
        raise AccountInactive()
    return current_user


def require_staff(
    request: Request,
    current_user: User = Depends(get_current_active_user),
) -> User:
    """Single capability check for back-office actions (admin or staff)."""
    action = f"{request.method} {request.url.path}"

    if not current_user.is_staff:
        logger.warning("staff_access_denied", action=action, user_id=current_user.id, role=current_user.role.value)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff access required",
        )

    logger.info("staff_action", action=action, user_id=current_user.id, role=current_user.role.value)
    return current_user
