"""
Test infrastructure for the CMS API.

Strategy
--------
- SQLite in-memory via aiosqlite, shared through a StaticPool because an
  in-memory database only exists on the connection that created it.
- The app's get_db dependency is overridden so every request uses the
  test session factory.
- All tables are created before each test and dropped after.
- Redis is disabled by setting cache._redis = None; the CacheManager
  treats that as a permanent miss.
- The object store is replaced by ``InMemoryBucket``, which implements the
  small slice of the google-cloud-storage bucket API that ImageStorage
  uses and records every upload and delete attempt.
"""
import io

import pytest
import pytest_asyncio
from google.api_core import exceptions as gcs_exceptions
from httpx import ASGITransport, AsyncClient
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.cache import cache
from app.database import Base, get_db
from app.main import app
from app.middleware import install_query_counter
from app.models import Post, User
from app.security import create_access_token, hash_password
from app.storage import storage

# ---------------------------------------------------------------------------
# Test database engine — SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        await cache.after_commit(session)


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Object storage double
# ---------------------------------------------------------------------------

class InMemoryBlob:
    def __init__(self, bucket: "InMemoryBucket", name: str) -> None:
        self.bucket = bucket
        self.name = name
        self.cache_control = None

    def upload_from_string(self, data, content_type=None):
        if self.bucket.fail_uploads:
            raise gcs_exceptions.ServiceUnavailable("bucket is down")
        self.bucket.objects[self.name] = {
            "data": data,
            "content_type": content_type,
            "cache_control": self.cache_control,
        }

    def delete(self):
        self.bucket.delete_attempts.append(self.name)
        if self.bucket.fail_deletes:
            raise ConnectionError("connection reset by peer")
        if self.name not in self.bucket.objects:
            raise gcs_exceptions.NotFound(f"No such object: {self.name}")
        del self.bucket.objects[self.name]


class InMemoryBucket:
    def __init__(self) -> None:
        self.objects: dict[str, dict] = {}
        self.delete_attempts: list[str] = []
        self.fail_uploads = False
        self.fail_deletes = False

    def blob(self, name: str) -> InMemoryBlob:
        return InMemoryBlob(self, name)

    def list_blobs(self, prefix: str | None = None):
        return [InMemoryBlob(self, n) for n in list(self.objects) if n.startswith(prefix or "")]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def bucket():
    """Swap the GCS bucket for an in-memory one and disable Redis."""
    fake = InMemoryBucket()
    storage._bucket = fake
    cache._redis = None
    yield fake
    storage._bucket = None


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """A live AsyncSession for tests that call the service layer directly."""
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------

async def create_user(
    username: str = "admin",
    password: str = "secret-password",
    fullname: str | None = "Site Admin",
    roles: list[str] | None = None,
    pfp_version: int = 1,
    **fields,
) -> User:
    """Insert and commit a user outside any request."""
    async with async_session_test() as session:
        user = User(
            username=username,
            email=fields.pop("email", f"{username}@example.com"),
            password=hash_password(password),
            fullname=fullname,
            roles=roles or [],
            pfp_version=pfp_version,
            **fields,
        )
        session.add(user)
        await session.commit()
        return user


async def fetch_post(post_id: int) -> Post | None:
    async with async_session_test() as session:
        return await session.get(Post, post_id)


async def fetch_user(user_id: int) -> User | None:
    async with async_session_test() as session:
        return await session.get(User, user_id)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def image_bytes(width: int = 1600, height: int = 900, fmt: str = "PNG", color="red") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format=fmt)
    return buf.getvalue()


@pytest_asyncio.fixture
async def admin() -> User:
    return await create_user()


@pytest_asyncio.fixture
async def headers(admin: User) -> dict:
    return auth_headers(admin)
