"""Test doubles and builders shared across the test suite."""

import asyncio
import io
import time
from typing import Callable, Optional

from PIL import Image

from areacms.core.errors import UploadError
from areacms.db.metadata_store import MetadataStore
from areacms.storage.base import BlobStore
from areacms.uploads.pipeline import UploadPipeline
from areacms.uploads.retry import RetryPolicy
from areacms.uploads.sources import Buffered, RawFilePart, Streamed
from areacms.uploads.transcoder import MediaTranscoder
from areacms.uploads.validator import ContentValidator
from areacms.uploads.writer import DurableStoreWriter

PROJECT_ID = 7
OTHER_PROJECT_ID = 8

IMAGE_TYPES = ["image/jpeg", "image/png", "image/gif", "image/webp", "image/svg+xml"]
AUDIO_TYPES = ["audio/mpeg"]
MAX_FILE_BYTES = 5 * 1024 * 1024
MAX_BATCH_BYTES = 50 * 1024 * 1024


class FakeBlobStore(BlobStore):
    """In-memory blob store with failure injection.

    ``fail_saves`` makes the next N saves raise; ``fail_when`` fails every save
    whose key matches; ``fail_deletes`` makes every delete raise.
    """

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.save_calls: list[str] = []
        self.delete_calls: list[str] = []
        self.fail_saves = 0
        self.fail_when: Optional[Callable[[str], bool]] = None
        self.fail_deletes = False

    async def save(self, data: bytes, key: str, content_type: str) -> str:
        self.save_calls.append(key)
        if self.fail_saves > 0:
            self.fail_saves -= 1
            raise ConnectionError("blob store unavailable")
        if self.fail_when is not None and self.fail_when(key):
            raise ConnectionError(f"save rejected for {key}")
        self.blobs[key] = data
        self.content_types[key] = content_type
        return key

    async def delete(self, key: str) -> None:
        self.delete_calls.append(key)
        if self.fail_deletes:
            raise ConnectionError("delete failed")
        self.blobs.pop(key, None)

    async def exists(self, key: str) -> bool:
        return key in self.blobs

    def url_for(self, key: str) -> str:
        return f"https://blobs.test/{key}"

    def get_backend_name(self) -> str:
        return "fake"


class ThreadedBlobStore(FakeBlobStore):
    """Writes from a worker thread after ``write_delay`` seconds, like the real backends.

    ``slow_when`` limits the delay to matching keys.
    """

    def __init__(self, write_delay: float = 0.3, slow_when: Optional[Callable[[str], bool]] = None):
        super().__init__()
        self.write_delay = write_delay
        self.slow_when = slow_when

    async def save(self, data: bytes, key: str, content_type: str) -> str:
        self.save_calls.append(key)
        delay = self.write_delay if self.slow_when is None or self.slow_when(key) else 0

        def _write():
            time.sleep(delay)
            self.blobs[key] = data
            self.content_types[key] = content_type

        await asyncio.to_thread(_write)
        return key


def make_image(width: int = 64, height: int = 48, fmt: str = "PNG", mode: str = "RGB") -> bytes:
    """Render a solid-color image in the given format."""
    color = (200, 80, 40, 128) if mode == "RGBA" else (200, 80, 40)
    image = Image.new(mode, (width, height), color)
    output = io.BytesIO()
    image.save(output, format=fmt)
    return output.getvalue()


def make_part(
    filename: str,
    data: bytes,
    mime_type: str,
    field_name: str = "file",
    streamed: bool = False,
) -> RawFilePart:
    content = Streamed(io.BytesIO(data)) if streamed else Buffered(data)
    return RawFilePart(
        field_name=field_name,
        original_filename=filename,
        mime_type=mime_type,
        byte_size=len(data),
        content=content,
    )


def build_multipart(
    fields: dict[str, str],
    files: list[tuple[str, str, bytes, str]],
    boundary: str = "areacms-test-boundary",
) -> tuple[str, bytes]:
    """Encode fields and (field, filename, data, mime) files as multipart/form-data."""
    chunks: list[bytes] = []
    for name, value in fields.items():
        chunks.append(
            f'--{boundary}\r\nContent-Disposition: form-data; name="{name}"\r\n\r\n'.encode()
            + value.encode()
            + b"\r\n"
        )
    for field_name, filename, data, mime_type in files:
        chunks.append(
            (
                f"--{boundary}\r\n"
                f'Content-Disposition: form-data; name="{field_name}"; filename="{filename}"\r\n'
                f"Content-Type: {mime_type}\r\n\r\n"
            ).encode()
            + data
            + b"\r\n"
        )
    chunks.append(f"--{boundary}--\r\n".encode())
    return f"multipart/form-data; boundary={boundary}", b"".join(chunks)


def make_validator(**overrides) -> ContentValidator:
    options = dict(
        image_mime_types=IMAGE_TYPES,
        audio_mime_types=AUDIO_TYPES,
        max_file_bytes=MAX_FILE_BYTES,
        max_batch_bytes=MAX_BATCH_BYTES,
        max_files_per_batch=10,
    )
    options.update(overrides)
    return ContentValidator(**options)


def make_pipeline(
    blob_store: BlobStore,
    metadata_store: MetadataStore,
    validator: Optional[ContentValidator] = None,
    **options,
) -> UploadPipeline:
    writer = DurableStoreWriter(
        blob_store=blob_store,
        metadata_store=metadata_store,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=0, attempt_timeout=5),
    )
    return UploadPipeline(
        validator=validator or make_validator(),
        transcoder=MediaTranscoder(timeout_seconds=10),
        writer=writer,
        **options,
    )


async def seed_languages(store: MetadataStore) -> None:
    await store.create_language(PROJECT_ID, "en", "English")
    await store.create_language(PROJECT_ID, "fr", "French")
    await store.create_language(OTHER_PROJECT_ID, "en", "English")


def assert_upload_error(error: BaseException, category: str) -> UploadError:
    assert isinstance(error, UploadError)
    assert error.category == category
    return error
