import json
import logging

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings

logger = logging.getLogger(__name__)

PUBLIC_POSTS_KEY = "posts:public"

# Session.info slot holding keys to drop again once the session commits.
_PENDING_KEY = "cache_invalidate_after_commit"


class CacheManager:
    """
    Cache-aside manager backed by Redis.

    All public methods are safe to call even when Redis is unavailable:
    reads return None and writes are skipped, so the site keeps serving
    from the database.
    """

    def __init__(self) -> None:
        self._redis: redis.Redis | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        self._redis = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await self._redis.ping()
            logger.info("Redis connected: %s", settings.REDIS_URL)
        except Exception as exc:  # pragma: no cover
            logger.warning("Redis ping failed — cache disabled: %s", exc)
            await self._redis.aclose()
            self._redis = None

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    # ------------------------------------------------------------------
    # Core cache operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> dict | list | None:
        if not self._redis:
            return None
        try:
            data = await self._redis.get(key)
        except Exception as exc:
            logger.debug("Cache GET error for key=%r: %s", key, exc)
            return None
        return json.loads(data) if data is not None else None

    async def set(self, key: str, value: dict | list, ttl: int | None = None) -> None:
        """A cache write failure is logged and never breaks the request."""
        if not self._redis:
            return
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl)
        except Exception as exc:
            logger.debug("Cache SET error for key=%r: %s", key, exc)

    async def delete(self, *keys: str) -> None:
        if not self._redis or not keys:
            return
        try:
            await self._redis.delete(*keys)
        except Exception as exc:
            logger.debug("Cache DELETE error for keys=%r: %s", keys, exc)

    # ------------------------------------------------------------------
    # Domain-level invalidation
    # ------------------------------------------------------------------

    async def invalidate_posts(self, session: AsyncSession | None = None) -> None:
        """
        Drop the public feed after any write it shows: post content, flags,
        deletes and author names.

        With *session*, the key is dropped a second time once that session
        commits, so a feed read that re-cached the pre-commit rows in
        between is not served for the whole TTL.
        """
        await self.delete(PUBLIC_POSTS_KEY)
        if session is not None:
            session.info.setdefault(_PENDING_KEY, set()).add(PUBLIC_POSTS_KEY)

    async def after_commit(self, session: AsyncSession) -> None:
        """Drop the keys queued on *session* by writes that have just committed."""
        keys = session.info.pop(_PENDING_KEY, None)
        if keys:
            await self.delete(*sorted(keys))


# Module-level singleton shared across all request handlers.
cache = CacheManager()
