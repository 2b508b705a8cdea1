"""Blob store backends."""

from areacms.storage.base import BlobStore
from areacms.storage.factory import get_storage_backend

__all__ = ["BlobStore", "get_storage_backend"]
