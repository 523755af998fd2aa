"""
Post service — business logic for blog posts and their images.

Design notes
------------
- The request's session is a single transaction (see ``get_db``).  Service
  functions flush but never commit, so multi-step writes such as the
  featured swap become visible to other readers all at once.
- Images are transcoded and uploaded before the function returns.  A
  failure propagates, the router reports a 500 and the post row is rolled
  back; objects already written for that post are left in the bucket.
- The public feed is served cache-aside from Redis and dropped after every
  post write, then once more when ``get_db`` commits.
- Admin listing is ordered by ascending id, which is what the admin table
  has always shown (newest last).
"""
import logging
import re
from datetime import date, datetime, timezone

from sqlalchemy import select, text, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from app import images
from app.cache import PUBLIC_POSTS_KEY, cache
from app.config import settings
from app.images import UploadedImage
from app.models import Post, User
from app.schemas import PostCreate, PostUpdate
from app.storage import storage

logger = logging.getLogger(__name__)

STATE_DRAFT = "draft"
STATE_PUBLISHED = "published"
STATE_FEATURED = "published (featured)"

# Arbitrary constant shared by every worker taking the featured-swap lock.
_FEATURED_LOCK_KEY = 0x46454154

_SLUG_STRIP_RE = re.compile(r"[^\w-]+", re.ASCII)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def slugify_title(title: str) -> str:
    """Lowercase, spaces to hyphens, drop anything outside ``[A-Za-z0-9_-]``."""
    return _SLUG_STRIP_RE.sub("", title.lower().replace(" ", "-"))


def make_slug(title: str, category: str, day: date) -> str:
    """``("Hello, World! #1", "news", 2024-03-05)`` -> ``"2024_03_05/news/hello-world-1"``."""
    return f"{day.strftime('%Y_%m_%d')}/{category}/{slugify_title(title)}"


def display_state(post: Post) -> str:
    if not post.published:
        return STATE_DRAFT
    return STATE_FEATURED if post.featured else STATE_PUBLISHED


def _format_date(value: datetime | None) -> str | None:
    return value.strftime("%Y-%m-%d") if value else None


def _author_name(post: Post) -> str | None:
    return post.author.fullname if post.author is not None else None


def cover_path(post_id: int) -> str:
    return f"{post_id}/index.webp"


def image_path(post_id: int, filename: str) -> str:
    return f"{post_id}/{images.base_name(filename)}.webp"


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _post_to_dict(post: Post) -> dict:
    return {
        "id": post.id,
        "title": post.title,
        "description": post.description,
        "content": post.content,
        "slug": post.slug,
        "category": post.category,
        "user_id": post.user_id,
        "published": post.published,
        "featured": post.featured,
        "created_at": post.created_at.isoformat() if post.created_at else None,
    }


def _admin_row(post: Post) -> dict:
    return {
        "id": post.id,
        "title": post.title,
        "author": _author_name(post),
        "date": _format_date(post.created_at),
        "state": display_state(post),
    }


def _public_row(post: Post) -> dict:
    return {
        "id": post.id,
        "title": post.title,
        "description": post.description,
        "content": post.content,
        "author": _author_name(post),
        "date": _format_date(post.created_at),
        "slug": post.slug,
        "featured": post.featured,
    }


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _load(db: AsyncSession, post_id: int, for_update: bool = False) -> Post | None:
    q = select(Post).where(Post.id == post_id)
    if for_update:
        q = q.with_for_update().execution_options(populate_existing=True)
    return (await db.execute(q)).scalar_one_or_none()


async def _store_image(path: str, data: bytes, cache_control: str | None) -> str:
    webp = await images.to_post_webp(data)
    return await storage.upload(path, webp, cache_control=cache_control)


async def _store_gallery(post_id: int, gallery: list[UploadedImage]) -> list[str]:
    stored = []
    for image in gallery:
        stored.append(
            await _store_image(
                image_path(post_id, image.filename), image.data, settings.IMAGE_CACHE_CONTROL
            )
        )
    return stored


async def _lock_featured_swap(db: AsyncSession) -> None:
    """
    Serialise concurrent featured swaps for the rest of this transaction.

    Row locks alone cannot stop two swaps targeting different posts from
    both succeeding, so PostgreSQL takes a transaction-scoped advisory lock.
    Other backends rely on their own write serialisation.
    """
    if db.get_bind().dialect.name == "postgresql":
        await db.execute(
            text("SELECT pg_advisory_xact_lock(:key)"), {"key": _FEATURED_LOCK_KEY}
        )


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def list_admin_posts(db: AsyncSession) -> list[dict]:
    """Every post with author name, ``YYYY-MM-DD`` date and display state, by ascending id."""
    q = select(Post).options(joinedload(Post.author)).order_by(Post.id.asc())
    result = await db.execute(q)
    return [_admin_row(p) for p in result.unique().scalars().all()]


async def list_public_posts(db: AsyncSession) -> list[dict]:
    """Published posts with full content for the public site, cached in Redis."""
    cached = await cache.get(PUBLIC_POSTS_KEY)
    if cached is not None:
        return cached

    q = (
        select(Post)
        .where(Post.published.is_(True))
        .options(joinedload(Post.author))
        .order_by(Post.id.asc())
    )
    result = await db.execute(q)
    rows = [_public_row(p) for p in result.unique().scalars().all()]

    await cache.set(PUBLIC_POSTS_KEY, rows, ttl=settings.CACHE_TTL_PUBLIC)
    return rows


async def get_post(db: AsyncSession, post_id: int) -> dict | None:
    post = await _load(db, post_id)
    return _post_to_dict(post) if post is not None else None


async def create_post(
    db: AsyncSession,
    data: PostCreate,
    author: User,
    cover: UploadedImage,
    gallery: list[UploadedImage] | None = None,
) -> dict:
    """
    Insert a new unpublished post, then store its cover at
    ``{id}/index.webp`` and each gallery image at ``{id}/{name}.webp``.

    The row is flushed first because the object keys need its id.
    Returns the post dict plus the list of stored object keys.
    """
    now = datetime.now(timezone.utc)
    post = Post(
        title=data.title,
        description=data.description,
        content=data.content,
        category=data.category,
        slug=make_slug(data.title, data.category, now.date()),
        user_id=author.id,
        published=False,
        featured=False,
        created_at=now,
    )
    db.add(post)
    await db.flush()

    stored = [await _store_image(cover_path(post.id), cover.data, settings.IMAGE_CACHE_CONTROL)]
    stored.extend(await _store_gallery(post.id, gallery or []))

    logger.info("%s created post %r (id=%s, %d image(s))", author.username, post.title, post.id, len(stored))
    await cache.invalidate_posts(db)

    result = _post_to_dict(post)
    result["images"] = stored
    return result


async def edit_post(
    db: AsyncSession,
    post_id: int,
    data: PostUpdate,
    actor: User,
    gallery: list[UploadedImage] | None = None,
) -> dict | None:
    """
    Overwrite description and content and add any new gallery images.

    Title and category are fixed at creation, so the slug never changes.
    Images are only ever added; previously uploaded ones are kept.
    Returns None when the post does not exist.
    """
    post = await _load(db, post_id)
    if post is None:
        return None

    post.description = data.description
    post.content = data.content
    await db.flush()

    stored = await _store_gallery(post.id, gallery or [])

    logger.info("%s edited post %s!", actor.username, post.title)
    await cache.invalidate_posts(db)

    result = _post_to_dict(post)
    result["images"] = stored
    return result


async def set_published(db: AsyncSession, post_id: int, published: bool, actor: User) -> dict | None:
    """Publish or deactivate a post.  Returns None when the post does not exist."""
    post = await _load(db, post_id)
    if post is None:
        return None

    post.published = published
    await db.flush()

    verb = "published" if published else "deactivated"
    logger.info("%s %s post %s!", actor.fullname, verb, post.title)
    await cache.invalidate_posts(db)
    return _post_to_dict(post)


async def make_featured(db: AsyncSession, post_id: int) -> dict | None:
    """
    Make *post_id* the single featured post.

    Already featured is a no-op.  Otherwise every featured post is cleared
    and the target set inside the current transaction, so readers never
    see zero or two featured posts.  Returns None when the post does not
    exist.
    """
    post = await _load(db, post_id, for_update=True)
    if post is None:
        return None
    if post.featured:
        return _post_to_dict(post)

    await _lock_featured_swap(db)
    await db.execute(
        update(Post)
        .where(Post.featured.is_(True), Post.id != post_id)
        .values(featured=False)
        .execution_options(synchronize_session="fetch")
    )
    post.featured = True
    await db.flush()

    logger.info("Post %s (%s) is now featured", post.id, post.title)
    await cache.invalidate_posts(db)
    return _post_to_dict(post)


async def delete_post(db: AsyncSession, post_id: int) -> bool:
    """
    Delete the post row and, when ``PURGE_POST_IMAGES_ON_DELETE`` is set,
    every object stored under ``{id}/``.

    Returns True on success, False when the post does not exist.
    """
    post = await _load(db, post_id)
    if post is None:
        return False

    title = post.title
    await db.delete(post)
    await db.flush()

    if settings.PURGE_POST_IMAGES_ON_DELETE:
        await storage.delete_prefix(f"{post_id}/")

    logger.info("Deleted post %s (%s)", post_id, title)
    await cache.invalidate_posts(db)
    return True


async def upload_image(db: AsyncSession, post_id: int, image: UploadedImage) -> str | None:
    """
    Attach one ad-hoc image to an existing post at ``{id}/{name}.webp``.

    These inline images are stored without a long-lived cache directive.
    Returns the object key, or None when the post does not exist.
    """
    post = await _load(db, post_id)
    if post is None:
        return None
    return await _store_image(image_path(post.id, image.filename), image.data, None)
