from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user
from app.errors import envelope, failure_message
from app.models import User
from app.schemas import UserUpdate
from app.services import user_service

router = APIRouter(prefix="/users", tags=["users"])

USER_NOT_FOUND = "User not found :("


@router.get("")
async def list_users(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with failure_message("Failed to get users :("):
        users = await user_service.list_users(db)
    return envelope(users)


@router.get("/self")
async def get_self(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with failure_message("Failed to get user :("):
        data = await user_service.get_user(db, user.id)
    if data is None:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    return envelope(data)


@router.put("/self")
async def update_self(
    data: UserUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with failure_message("Failed to update user :("):
        updated = await user_service.update_user(db, user, data)
    return envelope(updated)


@router.post("/pfp")
async def update_pfp(
    image: UploadFile = File(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with failure_message("Failed to update pfp :("):
        result = await user_service.update_avatar(db, user.id, await image.read())
    if result is None:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    return envelope(result)


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with failure_message("Failed to get user :("):
        data = await user_service.get_user(db, user_id)
    if data is None:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    return envelope(data)


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with failure_message("Failed to delete user :("):
        deleted = await user_service.delete_user(db, user_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    return envelope()
