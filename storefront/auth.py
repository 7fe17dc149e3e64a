"""
Bearer token checks for the Storefront service.

Tokens are issued by the identity service; this module only verifies them
and decides who may touch an order, a cart line or a transaction. Owners
reach their own records, admins reach everything.
"""
import logging
import os
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from . import crud, models
from .database import get_db
from .errors import NotFoundError

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "09d25e094faa6ca2556c818166b7a9563b93f7099f6f0f4caa6cf63b88e8d3e7")
ALGORITHM = "HS256"
ADMIN_ROLE = "admin"

# Missing credentials are reported as 401 by get_current_user
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """Subject of a verified token."""
    id: int
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    def can_access(self, owner_id: int) -> bool:
        return self.is_admin or self.id == owner_id


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> CurrentUser:
    """
    Verify a bearer token and read its subject.

    The token must carry "sub" (user id), "email" and "role" claims.

    Raises:
        HTTPException: 401 if the signature, expiry or claims are invalid
    """
    try:
        claims = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return CurrentUser(id=claims["sub"], email=claims["email"], role=claims["role"])
    except (JWTError, KeyError, ValidationError) as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise _unauthorized("Could not validate credentials") from e


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> CurrentUser:
    """FastAPI dependency resolving the caller from the Authorization header."""
    if credentials is None:
        raise _unauthorized("Not authenticated")
    return decode_token(credentials.credentials)


def require_admin(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """
    FastAPI dependency to require admin role.

    Raises:
        HTTPException: 403 if user is not an admin
    """
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )
    return current_user


def authorize_owner(current_user: CurrentUser, owner_id: int, what: str) -> None:
    """Raise 403 unless the caller owns the record or is an admin."""
    if not current_user.can_access(owner_id):
        logger.info(f"User {current_user.id} denied access to {what} of user {owner_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Not authorized to access this {what}"
        )


def get_owned_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user)
) -> models.Order:
    """
    FastAPI dependency loading an order the caller may act on.

    Raises:
        NotFoundError: If the order does not exist or was deleted
        HTTPException: 403 if the caller neither owns the order nor is an admin
    """
    db_order = crud.get_order(db, order_id)
    if db_order is None:
        raise NotFoundError("Order", order_id)
    authorize_owner(current_user, db_order.user_id, "order")
    return db_order
