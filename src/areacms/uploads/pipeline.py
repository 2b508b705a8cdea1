"""Upload pipeline: validate, transcode and store files.

Within one file the stages run strictly in order. A batch runs each file's
pipeline under a semaphore so at most ``max_concurrency`` files hold their
buffers and blob-store connections at once; outcomes are collected as they
complete and keyed by filename.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from areacms.core.config import Settings
from areacms.core.errors import FileNotFound, ProcessingTimeout, UploadError, ValidationError
from areacms.db.metadata_store import MetadataStore
from areacms.models.files import DeleteResult, FailedUpload, FileType, StoredFile, TranslationInput
from areacms.storage.base import BlobStore
from areacms.uploads.retry import RetryPolicy
from areacms.uploads.sources import RawFilePart, UploadRequest
from areacms.uploads.transcoder import MediaTranscoder
from areacms.uploads.validator import ContentValidator
from areacms.uploads.writer import DeleteOutcome, DurableStoreWriter

logger = logging.getLogger(__name__)


@dataclass
class BatchReport:
    """Partial-success result of a batch upload."""

    succeeded: list[StoredFile] = field(default_factory=list)
    failed: list[FailedUpload] = field(default_factory=list)

    def add_failure(self, name: str, error: UploadError) -> None:
        self.failed.append(FailedUpload(name=name, error=error.category, details=error.message))


class UploadPipeline:
    """Runs uploads, updates and deletes through validator, transcoder and writer."""

    def __init__(
        self,
        validator: ContentValidator,
        transcoder: MediaTranscoder,
        writer: DurableStoreWriter,
        max_concurrency: int = 2,
        file_timeout: Optional[float] = 60.0,
        batch_timeout: Optional[float] = 300.0,
    ):
        self.validator = validator
        self.transcoder = transcoder
        self.writer = writer
        self.max_concurrency = max(1, max_concurrency)
        self.file_timeout = file_timeout
        self.batch_timeout = batch_timeout

    @classmethod
    def from_settings(
        cls, settings: Settings, blob_store: BlobStore, metadata_store: MetadataStore
    ) -> "UploadPipeline":
        writer = DurableStoreWriter(
            blob_store=blob_store,
            metadata_store=metadata_store,
            retry_policy=RetryPolicy.from_settings(settings),
        )
        return cls(
            validator=ContentValidator.from_settings(settings),
            transcoder=MediaTranscoder.from_settings(settings),
            writer=writer,
            max_concurrency=settings.BATCH_MAX_CONCURRENCY,
            file_timeout=settings.FILE_PROCESSING_TIMEOUT_SECONDS,
            batch_timeout=settings.BATCH_TIMEOUT_SECONDS,
        )

    @property
    def blob_store(self) -> BlobStore:
        return self.writer.blob_store

    @property
    def metadata_store(self) -> MetadataStore:
        return self.writer.metadata_store

    async def _process(
        self,
        project_id: int,
        declared_type: FileType,
        part: RawFilePart,
        translations: Mapping[str, TranslationInput],
    ) -> StoredFile:
        """validate -> transcode -> store for one file; the part is always released."""
        try:
            self.validator.validate_part(declared_type, part)
            data = part.read()
            payload = await self.transcoder.transcode(data, part.mime_type)
            del data
            return await self.writer.store(
                project_id=project_id,
                original_name=part.original_filename,
                file_type=declared_type,
                payload=payload,
                translations=translations,
            )
        finally:
            part.close()

    async def upload(self, request: UploadRequest) -> StoredFile:
        """Upload exactly one file.

        Raises:
            UploadError: Any pipeline error for the file
        """
        try:
            if request.rejected:
                raise request.rejected[0].error
            if not request.parts:
                raise ValidationError("No file provided")
            if len(request.parts) > 1:
                raise ValidationError("Only one file may be uploaded here; use the batch endpoint")

            self.validator.validate_translations(request.declared_type, request.translations)
            return await self._process(
                request.project_id, request.declared_type, request.parts[0], request.translations
            )
        finally:
            request.close()

    async def _process_guarded(
        self,
        semaphore: asyncio.Semaphore,
        request: UploadRequest,
        part: RawFilePart,
    ) -> StoredFile:
        async with semaphore:
            try:
                if self.file_timeout is None:
                    return await self._process(
                        request.project_id, request.declared_type, part, request.translations
                    )
                return await asyncio.wait_for(
                    self._process(
                        request.project_id, request.declared_type, part, request.translations
                    ),
                    timeout=self.file_timeout,
                )
            except asyncio.TimeoutError as e:
                raise ProcessingTimeout(
                    f"Processing timed out for {part.original_filename} after {self.file_timeout:g}s"
                ) from e

    async def upload_batch(self, request: UploadRequest) -> BatchReport:
        """Upload many files, isolating per-file failures.

        Request-level problems (no files, too many files, cumulative size,
        audio with several translations) reject the whole batch before any
        file is processed. Everything after that is reported per file.

        Raises:
            ValidationError: For request-level rule violations
            PayloadTooLarge: If the cumulative batch size is too large
        """
        report = BatchReport()
        try:
            for rejected in request.rejected:
                report.add_failure(rejected.original_filename, rejected.error)

            self.validator.validate_batch(request.parts, rejected_count=len(request.rejected))
            self.validator.validate_translations(request.declared_type, request.translations)

            semaphore = asyncio.Semaphore(self.max_concurrency)
            tasks = {
                asyncio.create_task(self._process_guarded(semaphore, request, part)): part
                for part in request.parts
            }
            if not tasks:
                return report

            done, pending = await asyncio.wait(tasks, timeout=self.batch_timeout)

            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                for task in pending:
                    report.add_failure(
                        tasks[task].original_filename,
                        ProcessingTimeout(f"Batch timed out after {self.batch_timeout:g}s"),
                    )

            for task in done:
                name = tasks[task].original_filename
                error = task.exception()
                if error is None:
                    report.succeeded.append(task.result())
                elif isinstance(error, UploadError):
                    report.add_failure(name, error)
                else:
                    logger.error(
                        "Unexpected error processing file",
                        extra={"file_name": name, "error": str(error)},
                        exc_info=error,
                    )
                    report.add_failure(name, UploadError(f"Failed to process file: {error}"))
        finally:
            request.close()

        logger.info(
            "Batch upload finished",
            extra={
                "project_id": request.project_id,
                "succeeded": len(report.succeeded),
                "failed": len(report.failed),
            },
        )
        return report

    async def update(
        self,
        project_id: int,
        file_id: int,
        *,
        requested_type: Optional[FileType] = None,
        part: Optional[RawFilePart] = None,
        translations: Optional[Mapping[str, TranslationInput]] = None,
    ) -> StoredFile:
        """Update a stored file's blob and/or translations.

        The type check runs before any upload work starts.

        Raises:
            FileNotFound: If the file is not in the project
            ValidationError: If the type would change or audio gets several translations
        """
        try:
            existing = await self.metadata_store.get_file(project_id, file_id)
            if existing is None:
                raise FileNotFound(f"File {file_id} not found")

            self.validator.validate_type_change(existing.type, requested_type)
            if translations is not None:
                self.validator.validate_translations(existing.type, translations)

            payload = None
            if part is not None:
                self.validator.validate_part(existing.type, part)
                payload = await self.transcoder.transcode(part.read(), part.mime_type)

            return await self.writer.replace(
                existing,
                original_name=part.original_filename if part is not None else None,
                payload=payload,
                translations=translations,
            )
        finally:
            if part is not None:
                part.close()

    async def delete(self, project_id: int, file_id: int) -> DeleteResult:
        return await self.writer.delete(project_id, file_id)

    async def delete_many(self, project_id: int, file_ids: list[int]) -> DeleteOutcome:
        return await self.writer.delete_many(project_id, file_ids)

    async def get(self, project_id: int, file_id: int) -> StoredFile:
        stored = await self.metadata_store.get_file(project_id, file_id)
        if stored is None:
            raise FileNotFound(f"File {file_id} not found")
        return stored
