"""Bearer-token identity verification.

Tokens are HS256 JWTs carrying ``{"userId": ..., "exp": ...}`` and signed
with ``JWT_SECRET``.  Every protected route resolves the token back to a
stored user, so deleted users lose access even with an unexpired token.
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .crud import get_user
from .exceptions import ForbiddenError, MisconfiguredError, UnauthenticatedError
from .models import Role, UserModel
from .storage import get_db

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

security = HTTPBearer(auto_error=False)


def get_secret() -> str:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        logger.error("JWT_SECRET is not set in environment variables")
        raise MisconfiguredError("JWT_SECRET")
    return secret


def token_lifetime() -> timedelta:
    return timedelta(days=int(os.getenv("JWT_EXPIRE_DAYS", "7")))


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or token_lifetime())
    payload = {"userId": str(user_id), "exp": expire}
    return jwt.encode(payload, get_secret(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> str:
    """Verify the token and return the user id it was issued for."""
    secret = get_secret()
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"Token verification failed: {e}")
        raise UnauthenticatedError("Token verification failed")

    user_id = payload.get("userId")
    if not user_id:
        raise UnauthenticatedError("Token verification failed")
    return user_id


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db=Depends(get_db),
) -> UserModel:
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError("No token, authorization denied")

    user_id = decode_access_token(credentials.credentials)
    user = await get_user(db, user_id)
    if user is None:
        logger.warning(f"User not found for token: {user_id}")
        raise UnauthenticatedError("User not found")
    return user


async def get_current_admin(user: UserModel = Depends(get_current_user)) -> UserModel:
    if user.role != Role.ADMIN:
        raise ForbiddenError()
    return user
