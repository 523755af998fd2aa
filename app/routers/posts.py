from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user
from app.errors import envelope, failure_message
from app.images import UploadedImage
from app.models import User
from app.schemas import PostCreate, PostUpdate
from app.services import post_service

router = APIRouter(prefix="/posts", tags=["posts"])

POST_NOT_FOUND = "Post not found :("


async def _read(upload: UploadFile) -> UploadedImage:
    return UploadedImage(upload.filename or "image", await upload.read())


async def _read_all(uploads: list[UploadFile] | None) -> list[UploadedImage]:
    return [await _read(u) for u in uploads or []]


@router.get("")
async def list_posts(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with failure_message("Failed to get posts :("):
        posts = await post_service.list_admin_posts(db)
    return envelope(posts)


@router.get("/public")
async def list_public_posts(db: AsyncSession = Depends(get_db)):
    with failure_message("Failed to get posts :("):
        posts = await post_service.list_public_posts(db)
    return envelope(posts)


@router.get("/{post_id}")
async def get_post(
    post_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with failure_message("Failed to get post :("):
        post = await post_service.get_post(db, post_id)
    if post is None:
        raise HTTPException(status_code=404, detail=POST_NOT_FOUND)
    return envelope(post)


@router.post("")
async def create_post(
    title: str = Form(..., min_length=1, max_length=300),
    description: str = Form(...),
    content: str = Form(...),
    category: str = Form(..., min_length=1, max_length=100),
    index: UploadFile = File(..., description="Cover image"),
    images: list[UploadFile] | None = File(None, alias="images[]"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    data = PostCreate(title=title, description=description, content=content, category=category)
    with failure_message("Failed to create post :("):
        post = await post_service.create_post(
            db, data, user, await _read(index), await _read_all(images)
        )
    return envelope(post)


@router.put("/{post_id}")
async def edit_post(
    post_id: int,
    description: str = Form(...),
    content: str = Form(...),
    title: str | None = Form(None),
    category: str | None = Form(None),
    images: list[UploadFile] | None = File(None, alias="images[]"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    data = PostUpdate(description=description, content=content, title=title, category=category)
    with failure_message("Failed to edit post :("):
        post = await post_service.edit_post(db, post_id, data, user, await _read_all(images))
    if post is None:
        raise HTTPException(status_code=404, detail=POST_NOT_FOUND)
    return envelope(post)


@router.post("/publish/{post_id}")
async def publish_post(
    post_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with failure_message("Failed to publish post :("):
        post = await post_service.set_published(db, post_id, True, user)
    if post is None:
        raise HTTPException(status_code=404, detail=POST_NOT_FOUND)
    return envelope()


@router.post("/deactivate/{post_id}")
async def deactivate_post(
    post_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with failure_message("Failed to deactivate post :("):
        post = await post_service.set_published(db, post_id, False, user)
    if post is None:
        raise HTTPException(status_code=404, detail=POST_NOT_FOUND)
    return envelope()


@router.post("/make_featured/{post_id}")
async def make_featured(
    post_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with failure_message("Failed to make post featured :("):
        post = await post_service.make_featured(db, post_id)
    if post is None:
        raise HTTPException(status_code=404, detail=POST_NOT_FOUND)
    return envelope()


@router.post("/upload_image/{post_id}")
async def upload_image(
    post_id: int,
    image: UploadFile = File(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with failure_message("Failed to upload image :("):
        path = await post_service.upload_image(db, post_id, await _read(image))
    if path is None:
        raise HTTPException(status_code=404, detail=POST_NOT_FOUND)
    return envelope(filename=path)


@router.delete("/{post_id}")
async def delete_post(
    post_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with failure_message("Failed to delete post :("):
        deleted = await post_service.delete_post(db, post_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=POST_NOT_FOUND)
    return envelope()
