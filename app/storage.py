import asyncio
import json
import logging

from google.cloud import storage as gcs
from google.oauth2 import service_account

from app.config import settings
from app.errors import StorageUnavailableError

logger = logging.getLogger(__name__)

WEBP_CONTENT_TYPE = "image/webp"


class ImageStorage:
    """
    Thin async facade over a Google Cloud Storage bucket.

    The SDK is blocking, so every call is pushed to a worker thread with
    ``asyncio.to_thread`` to keep the event loop free.  Until ``connect``
    succeeds every operation raises ``StorageUnavailableError``; callers
    run inside ``failure_message`` so that surfaces as a 500.
    """

    def __init__(self) -> None:
        self._bucket = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Build the bucket handle from the JSON credential blob.  Called at startup."""
        if not settings.GOOGLE_STORAGE_CREDENTIALS:
            logger.warning("GOOGLE_STORAGE_CREDENTIALS not set — image storage disabled")
            return
        info = json.loads(settings.GOOGLE_STORAGE_CREDENTIALS)
        credentials = service_account.Credentials.from_service_account_info(info)
        client = gcs.Client(project=settings.GCS_PROJECT_ID, credentials=credentials)
        self._bucket = client.bucket(settings.GCS_BUCKET)
        logger.info("Image storage bound to bucket %s", settings.GCS_BUCKET)

    def disconnect(self) -> None:
        self._bucket = None

    def _require_bucket(self):
        if self._bucket is None:
            raise StorageUnavailableError("object storage is not configured")
        return self._bucket

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def upload(self, path: str, data: bytes, cache_control: str | None = None) -> str:
        """Store *data* as a WebP object at *path* and return the path."""
        bucket = self._require_bucket()

        def _upload():
            blob = bucket.blob(path)
            if cache_control:
                blob.cache_control = cache_control
            blob.upload_from_string(data, content_type=WEBP_CONTENT_TYPE)

        await asyncio.to_thread(_upload)
        logger.debug("Uploaded %s (%d bytes)", path, len(data))
        return path

    async def delete(self, path: str) -> None:
        """Delete the object at *path*.  Raises ``NotFound`` if it does not exist."""
        bucket = self._require_bucket()
        await asyncio.to_thread(lambda: bucket.blob(path).delete())
        logger.debug("Deleted %s", path)

    async def delete_quietly(self, path: str) -> bool:
        """
        Best-effort delete used for superseded avatars: the previous
        version may never have been uploaded, so any failure (API or
        transport) is logged and dropped.  Returns whether the object was
        removed.
        """
        try:
            await self.delete(path)
        except Exception as exc:
            logger.debug("Ignoring delete failure for %s: %s", path, exc)
            return False
        return True

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every object whose name starts with *prefix*; return the count."""
        bucket = self._require_bucket()

        def _delete_all() -> int:
            blobs = list(bucket.list_blobs(prefix=prefix))
            for blob in blobs:
                blob.delete()
            return len(blobs)

        count = await asyncio.to_thread(_delete_all)
        if count:
            logger.info("Deleted %d object(s) under %s", count, prefix)
        return count


# Module-level singleton shared across all request handlers.
storage = ImageStorage()
