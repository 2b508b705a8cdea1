"""Durable writes spanning the blob store and the metadata store.

Blob writes happen first, with bounded retry. The metadata transaction runs
next; if it fails, every blob written by this call is deleted again through a
``Saga``. Replaced blobs are only deleted after the replacing transaction
commits, and deletes remove metadata before blobs, so a failure can leave an
orphaned blob but never a row pointing at a missing blob.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Mapping, Optional, Sequence

from areacms.core.errors import FileNotFound, StorageWriteFailed
from areacms.db.metadata_store import BlobPaths, MetadataStore
from areacms.models.files import DeleteResult, FileType, StoredFile, TranslationInput
from areacms.storage.base import BlobStore
from areacms.uploads.keys import generate_storage_key
from areacms.uploads.retry import RetryPolicy
from areacms.uploads.saga import Saga
from areacms.uploads.transcoder import TranscodeResult

logger = logging.getLogger(__name__)


def _consume_result(attempt: "asyncio.Future[str]") -> None:
    if not attempt.cancelled():
        attempt.exception()


class BlobWrite:
    """Every save attempt issued for one storage key.

    Backends write from a worker thread, and cancelling the awaiting
    coroutine does not stop that thread. Attempts are therefore shielded and
    kept here, and ``settle`` waits for all of them before the key may be
    deleted.
    """

    def __init__(self, key: str):
        self.key = key
        self._attempts: list[asyncio.Future] = []

    def attempt(self, save: Awaitable[str]) -> Awaitable[str]:
        task = asyncio.ensure_future(save)
        task.add_done_callback(_consume_result)
        self._attempts.append(task)
        return asyncio.shield(task)

    async def settle(self) -> None:
        if self._attempts:
            await asyncio.gather(*self._attempts, return_exceptions=True)


@dataclass
class DeleteOutcome:
    """Files removed from the metadata store and per-file blob cleanup results."""

    deleted: list[DeleteResult] = field(default_factory=list)
    not_found: list[int] = field(default_factory=list)


class DurableStoreWriter:
    """Uploads payloads and records their metadata atomically."""

    def __init__(
        self,
        blob_store: BlobStore,
        metadata_store: MetadataStore,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.blob_store = blob_store
        self.metadata_store = metadata_store
        self.retry_policy = retry_policy or RetryPolicy()

    async def _save_blob(self, write: BlobWrite, data: bytes, content_type: str) -> str:
        """Write one blob under the retry policy.

        Raises:
            StorageWriteFailed: If every attempt fails
        """
        try:
            return await self.retry_policy.call(
                lambda: write.attempt(self.blob_store.save(data, write.key, content_type))
            )
        except Exception as e:
            logger.error(
                "Blob upload failed after retries",
                extra={
                    "storage_key": write.key,
                    "backend": self.blob_store.get_backend_name(),
                    "max_attempts": self.retry_policy.max_attempts,
                    "error": str(e),
                },
            )
            raise StorageWriteFailed(f"Failed to store {write.key}: {e}") from e

    async def _discard(self, write: BlobWrite) -> None:
        """Delete a blob once every attempt to write it has finished."""
        await write.settle()
        await self.blob_store.delete(write.key)

    async def _save_thumbnail(
        self, write: BlobWrite, project_id: int, original_name: str, payload: TranscodeResult
    ) -> Optional[str]:
        """Upload the thumbnail; failures degrade to no thumbnail."""
        try:
            return await self._save_blob(
                write, payload.thumbnail, payload.thumbnail_mime_type or payload.mime_type
            )
        except StorageWriteFailed as e:
            logger.warning(
                "Thumbnail upload failed, storing file without thumbnail",
                extra={"project_id": project_id, "file_name": original_name, "error": str(e)},
            )

        try:
            await self._discard(write)
        except Exception as e:
            logger.error(
                "Blob delete failed, leaving orphaned blob",
                extra={"storage_key": write.key, "error": str(e)},
            )
        return None

    async def _save_payload(
        self, saga: Saga, project_id: int, original_name: str, payload: TranscodeResult
    ) -> BlobPaths:
        """Upload main blob and thumbnail.

        Each delete is registered before its upload starts, so a write that
        is cancelled or times out is still cleaned up.
        """
        main = BlobWrite(generate_storage_key(project_id, original_name, extension=payload.extension))
        saga.add(f"delete blob {main.key}", lambda: self._discard(main))
        await self._save_blob(main, payload.data, payload.mime_type)

        if payload.thumbnail is None:
            return BlobPaths(path=main.key, thumbnail_path=None)

        thumbnail = BlobWrite(
            generate_storage_key(project_id, original_name, extension=payload.extension, variant="thumb")
        )
        saga.add(f"delete thumbnail {thumbnail.key}", lambda: self._discard(thumbnail))
        thumbnail_key = await self._save_thumbnail(thumbnail, project_id, original_name, payload)
        return BlobPaths(path=main.key, thumbnail_path=thumbnail_key)

    async def store(
        self,
        project_id: int,
        original_name: str,
        file_type: FileType,
        payload: TranscodeResult,
        translations: Optional[Mapping[str, TranslationInput]] = None,
    ) -> StoredFile:
        """Upload a payload and record it with its translations.

        Args:
            project_id: Owning project
            original_name: Client filename, kept as the logical name
            file_type: Declared file type
            payload: Transcoded bytes and optional thumbnail
            translations: Locale -> caption fields

        Returns:
            The committed StoredFile

        Raises:
            StorageWriteFailed: If the main blob cannot be written (nothing is recorded)
            LanguageNotFound: If a locale is unknown (uploaded blobs are removed)
            TransactionFailed: If the metadata commit fails (uploaded blobs are removed)
        """
        async with Saga(f"store {original_name}") as saga:
            paths = await self._save_payload(saga, project_id, original_name, payload)
            stored = await self.metadata_store.create_file(
                project_id=project_id,
                name=original_name,
                file_type=file_type,
                path=paths.path,
                thumbnail_path=paths.thumbnail_path,
                translations=translations,
            )

        logger.info(
            "File stored",
            extra={
                "project_id": project_id,
                "file_id": stored.id,
                "storage_key": stored.path,
                "thumbnail_key": stored.thumbnail_path,
            },
        )
        return stored

    async def replace(
        self,
        existing: StoredFile,
        *,
        original_name: Optional[str] = None,
        payload: Optional[TranscodeResult] = None,
        translations: Optional[Mapping[str, TranslationInput]] = None,
    ) -> StoredFile:
        """Update a stored file, optionally replacing its blobs.

        New blobs are written first; the previous blobs are deleted only
        after the metadata transaction commits.
        """
        async with Saga(f"replace file {existing.id}") as saga:
            paths: Optional[BlobPaths] = None
            if payload is not None:
                paths = await self._save_payload(
                    saga, existing.project_id, original_name or existing.name, payload
                )
            updated = await self.metadata_store.update_file(
                existing.project_id,
                existing.id,
                name=original_name if payload is not None else None,
                blob_paths=paths,
                translations=translations,
            )

        if paths is not None:
            stale = [existing.path, existing.thumbnail_path]
            await self._delete_blobs([key for key in stale if key and key not in (paths.path, paths.thumbnail_path)])

        logger.info(
            "File updated",
            extra={
                "project_id": existing.project_id,
                "file_id": existing.id,
                "replaced_blob": paths is not None,
            },
        )
        return updated

    async def _delete_blobs(self, keys: Sequence[str]) -> list[str]:
        """Best-effort blob deletes; returns error messages for failed keys."""
        errors: list[str] = []
        for key in keys:
            try:
                await self.blob_store.delete(key)
            except Exception as e:
                errors.append(f"{key}: {e}")
                logger.error(
                    "Blob delete failed, leaving orphaned blob",
                    extra={"storage_key": key, "error": str(e)},
                )
        return errors

    async def delete(self, project_id: int, file_id: int) -> DeleteResult:
        """Delete metadata first, then the blobs.

        Raises:
            FileNotFound: If the file does not exist in the project
        """
        outcome = await self.delete_many(project_id, [file_id])
        if not outcome.deleted:
            raise FileNotFound(f"File {file_id} not found")
        return outcome.deleted[0]

    async def delete_many(self, project_id: int, file_ids: Sequence[int]) -> DeleteOutcome:
        """Delete several files in one metadata transaction, then their blobs."""
        removed = await self.metadata_store.delete_files(project_id, file_ids)
        removed_ids = {stored.id for stored in removed}

        outcome = DeleteOutcome(not_found=[fid for fid in file_ids if fid not in removed_ids])
        for stored in removed:
            keys = [key for key in (stored.path, stored.thumbnail_path) if key]
            errors = await self._delete_blobs(keys)
            outcome.deleted.append(
                DeleteResult(id=stored.id, blobs_deleted=not errors, blob_errors=errors)
            )
        return outcome
