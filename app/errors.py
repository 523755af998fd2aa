"""
Error handling for the API.

Every response, successful or not, uses the same envelope::

    {"success": bool, "data": ..., "message": str}

Two error kinds reach clients: *not found* (404, raised explicitly by the
routers) and *internal failure* (500).  Handlers wrap their work in
``failure_message(...)`` so that any unexpected exception is logged with
its traceback and collapsed into a 500 carrying a fixed per-operation
message.  The underlying error is never surfaced to the caller.
"""
import logging
from contextlib import contextmanager

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class InvalidImageError(Exception):
    """Raised when an uploaded file cannot be decoded as an image."""


class StorageUnavailableError(Exception):
    """Raised when the object store has not been configured."""


@contextmanager
def failure_message(message: str):
    """
    Convert any non-HTTP exception raised in the block into a 500 with
    *message*.  ``HTTPException`` (404, 401, ...) passes through untouched.
    """
    try:
        yield
    except StarletteHTTPException:
        raise
    except Exception as exc:
        logger.exception(message)
        raise HTTPException(status_code=500, detail=message) from exc


def envelope(data=None, **extra) -> dict:
    body = {"success": True}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Invalid request :(",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


def install_exception_handlers(app) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
