"""
Image transcoding with Pillow.

Every stored image is re-encoded to WebP: post images are scaled down to a
bounded width with the aspect ratio preserved, avatars are centre-cropped
to a fixed square.  Decoding and encoding are CPU bound, so the async
entry points run them in a worker thread.
"""
import asyncio
import io
from pathlib import PurePosixPath
from typing import NamedTuple

from PIL import Image, ImageOps, UnidentifiedImageError

from app.config import settings
from app.errors import InvalidImageError


class UploadedImage(NamedTuple):
    """An uploaded file already read into memory."""
    filename: str
    data: bytes


def base_name(filename: str) -> str:
    """``"photos/beach.trip.JPG"`` -> ``"beach"``: no directories, nothing after the first dot."""
    name = PurePosixPath(filename.replace("\\", "/")).name
    return name.split(".")[0] or "image"


def _open(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidImageError("uploaded file is not a readable image") from exc
    if img.mode not in ("RGB", "RGBA"):
        has_alpha = "A" in img.getbands() or "transparency" in img.info
        img = img.convert("RGBA" if has_alpha else "RGB")
    return img


def _encode(img: Image.Image) -> bytes:
    out = io.BytesIO()
    img.save(out, format="WEBP", quality=settings.WEBP_QUALITY)
    return out.getvalue()


def post_webp(data: bytes, max_width: int | None = None) -> bytes:
    max_width = max_width or settings.POST_IMAGE_MAX_WIDTH
    img = _open(data)
    if img.width > max_width:
        height = max(1, round(img.height * max_width / img.width))
        img = img.resize((max_width, height), Image.Resampling.LANCZOS)
    return _encode(img)


def avatar_webp(data: bytes, size: int | None = None) -> bytes:
    size = size or settings.AVATAR_SIZE
    img = ImageOps.fit(_open(data), (size, size), Image.Resampling.LANCZOS)
    return _encode(img)


async def to_post_webp(data: bytes) -> bytes:
    return await asyncio.to_thread(post_webp, data)


async def to_avatar_webp(data: bytes) -> bytes:
    return await asyncio.to_thread(avatar_webp, data)
