"""Abstract blob store interface."""

from abc import ABC, abstractmethod


class BlobStore(ABC):
    """Key -> bytes store addressed by opaque storage keys."""

    @abstractmethod
    async def save(self, data: bytes, key: str, content_type: str) -> str:
        """Store bytes under a key.

        Args:
            data: Payload to store
            key: Storage key, e.g. ``project-7/1700000000000-ab12-photo.jpg``
            content_type: MIME type recorded with the blob

        Returns:
            The storage key
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a blob. Deleting a missing key is not an error."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return whether a blob is stored under ``key``."""
        pass

    @abstractmethod
    def url_for(self, key: str) -> str:
        """Derive a public-read URL for a key."""
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return backend identifier."""
        pass
