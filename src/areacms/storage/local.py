"""Local filesystem blob store."""

import asyncio
import logging
from pathlib import Path
from urllib.parse import quote

from areacms.storage.base import BlobStore

logger = logging.getLogger(__name__)


class LocalBlobStore(BlobStore):
    """Blob store rooted at a local directory."""

    def __init__(self, base_path: str | Path = "data/blobs", public_base_url: str = ""):
        self.base_path = Path(base_path)
        self.public_base_url = public_base_url.rstrip("/")

    def _resolve(self, key: str) -> Path:
        """Map a key to a path inside base_path, rejecting traversal."""
        parts = [part for part in key.replace("\\", "/").split("/") if part]
        if not parts or any(part in (".", "..") for part in parts):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.base_path.joinpath(*parts)

    async def save(self, data: bytes, key: str, content_type: str) -> str:
        target_path = self._resolve(key)

        def _write() -> None:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = target_path.with_name(target_path.name + ".part")
            tmp_path.write_bytes(data)
            tmp_path.replace(target_path)

        await asyncio.to_thread(_write)
        logger.debug("Blob written", extra={"storage_key": key, "size_bytes": len(data)})
        return key

    async def delete(self, key: str) -> None:
        target_path = self._resolve(key)
        await asyncio.to_thread(target_path.unlink, missing_ok=True)

    async def exists(self, key: str) -> bool:
        target_path = self._resolve(key)
        return await asyncio.to_thread(target_path.is_file)

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}/{quote(key)}"

    def get_backend_name(self) -> str:
        return "local"
