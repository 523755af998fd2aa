"""
User service — profiles, the team listing and avatars.

Users are fetched without caching because the list is small and changes
rarely.  The password hash never leaves this module: every serialiser
omits it.
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app import images
from app.cache import cache
from app.config import settings
from app.models import User, avatar_path
from app.schemas import UserUpdate
from app.security import hash_password, verify_password
from app.storage import storage

logger = logging.getLogger(__name__)

# Fields that a self-update may overwrite verbatim when non-empty.
_PROFILE_FIELDS = ("username", "email", "fullname", "description")


# ---------------------------------------------------------------------------
# Team ordering
# ---------------------------------------------------------------------------

def role_ranks(member_role: str | None = None) -> dict[str, int]:
    """Priority of each role label on the team page; lower sorts first."""
    member_role = member_role or settings.MEMBER_ROLE
    return {
        "Coach": 0,
        f"Senior {member_role}": 1,
        member_role: 2,
        f"Junior {member_role}": 3,
        "Alumni": 4,
    }


def role_rank(roles: list[str] | None, ranks: dict[str, int]) -> int:
    """Best rank among *roles*; users with no ranked role sort last."""
    unranked = len(ranks)
    return min((ranks.get(r, unranked) for r in roles or []), default=unranked)


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "fullname": user.fullname,
        "description": user.description,
        "roles": list(user.roles or []),
        "pfp_version": user.pfp_version,
        "pfp": user.avatar_path,
    }


def _team_card(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "fullname": user.fullname,
        "description": user.description,
        "roles": list(user.roles or []),
        "pfp_version": user.pfp_version,
    }


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def authenticate(db: AsyncSession, username: str, password: str) -> User | None:
    """Return the user when *password* matches the stored hash, else None."""
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if user is None or not verify_password(password, user.password):
        return None
    return user


async def get_user(db: AsyncSession, user_id: int) -> dict | None:
    user = await db.get(User, user_id)
    return _user_to_dict(user) if user is not None else None


async def list_users(db: AsyncSession) -> list[dict]:
    """
    Return every user for the team page, ordered by role priority.

    ``sorted`` is stable, so users sharing a rank keep their id order.
    """
    result = await db.execute(select(User).order_by(User.id.asc()))
    ranks = role_ranks()
    users = sorted(result.scalars().all(), key=lambda u: role_rank(u.roles, ranks))
    return [_team_card(u) for u in users]


async def update_user(db: AsyncSession, user: User, data: UserUpdate) -> dict:
    """
    Partially update *user*.

    Profile fields are written only when present and non-empty; a new
    password is stored as a bcrypt hash.  Username/email uniqueness is
    enforced by the database and surfaces as an IntegrityError on flush.
    """
    changes = data.model_dump(exclude_unset=True)
    for field in _PROFILE_FIELDS:
        value = changes.get(field)
        if value:
            setattr(user, field, value)

    if changes.get("password"):
        user.password = hash_password(changes["password"])

    await db.flush()
    # the public feed shows author names
    await cache.invalidate_posts(db)
    return _user_to_dict(user)


async def delete_user(db: AsyncSession, user_id: int) -> bool:
    """
    Delete the user identified by *user_id*.

    Any authenticated user may delete any account; there is no
    ownership check.  Their posts are kept with no author.
    """
    user = await db.get(User, user_id)
    if user is None:
        return False

    await db.delete(user)
    await db.flush()
    logger.info("Deleted user %s (%s)", user_id, user.username)
    await cache.invalidate_posts(db)
    return True


async def update_avatar(db: AsyncSession, user_id: int, data: bytes) -> dict | None:
    """
    Replace the user's avatar and bump ``pfp_version``.

    The image is transcoded before the user row is locked.  With the row
    held (``SELECT ... FOR UPDATE``) the new version is uploaded, the
    previous one deleted on a best-effort basis, and the counter
    incremented, so concurrent updates for one user run one after the
    other.  Returns None when the user does not exist.
    """
    webp = await images.to_avatar_webp(data)

    q = (
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    user = (await db.execute(q)).scalar_one_or_none()
    if user is None:
        return None

    current = user.pfp_version
    new_path = avatar_path(user.id, current + 1)
    await storage.upload(new_path, webp, cache_control=settings.IMAGE_CACHE_CONTROL)
    await storage.delete_quietly(avatar_path(user.id, current))

    user.pfp_version = current + 1
    await db.flush()

    logger.info("%s updated their avatar (v%d)", user.username, user.pfp_version)
    return {"pfp_version": user.pfp_version, "pfp": new_path}
