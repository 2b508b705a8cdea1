"""Google Cloud Storage blob store."""

import asyncio
import logging
from typing import Optional
from urllib.parse import quote

from google.api_core.exceptions import NotFound
from google.cloud import storage

from areacms.core.config import settings
from areacms.storage.base import BlobStore

logger = logging.getLogger(__name__)

CACHE_CONTROL = "public, max-age=31536000"


class GCSBlobStore(BlobStore):
    """Blob store backed by a GCS bucket with public-read URLs."""

    def __init__(self, bucket_name: Optional[str] = None, project_id: Optional[str] = None):
        self.bucket_name = bucket_name or settings.GCS_BUCKET_NAME
        self.project_id = project_id or settings.GCP_PROJECT_ID or None
        self._client: Optional[storage.Client] = None
        self._bucket: Optional[storage.Bucket] = None

    def _get_bucket(self) -> storage.Bucket:
        """Lazy-load and cache GCS bucket."""
        if self._bucket is None:
            if not self.bucket_name:
                raise ValueError("GCS_BUCKET_NAME not configured")

            self._client = storage.Client(project=self.project_id)
            self._bucket = self._client.bucket(self.bucket_name)

        return self._bucket

    async def save(self, data: bytes, key: str, content_type: str) -> str:
        blob = self._get_bucket().blob(key)
        blob.cache_control = CACHE_CONTROL
        # Retries are owned by the caller's RetryPolicy
        await asyncio.to_thread(
            blob.upload_from_string, data, content_type=content_type, retry=None
        )
        logger.debug(
            "Blob uploaded to GCS",
            extra={"bucket": self.bucket_name, "storage_key": key, "size_bytes": len(data)},
        )
        return key

    async def delete(self, key: str) -> None:
        blob = self._get_bucket().blob(key)
        try:
            await asyncio.to_thread(blob.delete)
        except NotFound:
            logger.info(
                "Blob already absent from GCS",
                extra={"bucket": self.bucket_name, "storage_key": key},
            )

    async def exists(self, key: str) -> bool:
        blob = self._get_bucket().blob(key)
        return await asyncio.to_thread(blob.exists)

    def url_for(self, key: str) -> str:
        return f"https://storage.googleapis.com/{self.bucket_name}/{quote(key)}"

    def get_backend_name(self) -> str:
        return "gcs"
