import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models import User
from app.security import decode_access_token

logger = logging.getLogger(__name__)

# auto_error=False so a missing header yields our 401 envelope, not a 403
bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the acting user from the ``Authorization: Bearer <jwt>`` header.

    Every admin-scoped route depends on this.  Raises 401 when the header
    is missing, the token is invalid or expired, or the user it names no
    longer exists.

    Usage in a router::

        @router.post("/publish/{post_id}")
        async def publish(post_id: int, user: User = Depends(get_current_user)):
            ...
    """
    if credentials is None:
        raise _unauthorized("Not authenticated :(")

    user_id = decode_access_token(credentials.credentials)
    if user_id is None:
        logger.warning("Rejected invalid or expired access token")
        raise _unauthorized("Invalid token :(")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        logger.warning("Access token refers to missing user id=%s", user_id)
        raise _unauthorized("Invalid token :(")
    return user
