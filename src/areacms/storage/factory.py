"""Blob store selection."""

from areacms.core.config import Settings, settings as default_settings
from areacms.storage.base import BlobStore


def get_storage_backend(settings: Settings = default_settings) -> BlobStore:
    """Build the blob store configured by STORAGE_BACKEND.

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "local":
        from areacms.storage.local import LocalBlobStore

        return LocalBlobStore(settings.LOCAL_STORAGE_PATH, settings.PUBLIC_BASE_URL)
    if backend == "gcs":
        from areacms.storage.gcs import GCSBlobStore

        return GCSBlobStore(settings.GCS_BUCKET_NAME, settings.GCP_PROJECT_ID or None)
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")
