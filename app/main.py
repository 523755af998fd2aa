import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.cache import cache
from app.config import settings
from app.errors import install_exception_handlers
from app.middleware import RequestLogMiddleware
from app.routers import auth, posts, users
from app.storage import storage

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    try:
        await cache.connect()
    except Exception as exc:
        logger.warning("Cache unavailable, serving without Redis: %s", exc)
    storage.connect()
    yield
    # Shutdown
    await cache.disconnect()
    storage.disconnect()


app = FastAPI(
    title="Website CMS API",
    description="Blog posts, team profiles and image uploads for the website",
    version="1.0.0",
    lifespan=lifespan,
)

install_exception_handlers(app)

# Middleware
app.add_middleware(RequestLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(auth.router)
app.include_router(posts.router)
app.include_router(users.router)


@app.get("/health")
async def health():
    return {"success": True, "status": "healthy", "version": "1.0.0"}
