import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.errors import envelope, failure_message
from app.schemas import LoginRequest, TokenResponse
from app.security import create_access_token
from app.services import user_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login")
async def login(data: LoginRequest, db: AsyncSession = Depends(get_db)):
    with failure_message("Failed to log in :("):
        user = await user_service.authenticate(db, data.username, data.password)
    if user is None:
        logger.warning("Failed login for %r", data.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Wrong username or password :(",
        )
    token = TokenResponse(access_token=create_access_token(user.id))
    return envelope(token.model_dump())
