"""Per-type acceptance rules applied before any processing begins."""

import logging
from typing import Iterable, Mapping, Optional

from areacms.core.config import Settings
from areacms.core.errors import PayloadTooLarge, UnsupportedMediaType, ValidationError
from areacms.models.files import FileType, TranslationInput
from areacms.uploads.sources import RawFilePart

logger = logging.getLogger(__name__)

# Audio is monolingual content: at most one translation row per file
MAX_AUDIO_TRANSLATIONS = 1


class ContentValidator:
    """Pure accept/reject decisions over already-decoded input."""

    def __init__(
        self,
        image_mime_types: Iterable[str],
        audio_mime_types: Iterable[str],
        max_file_bytes: int,
        max_batch_bytes: int,
        max_files_per_batch: int = 50,
        video_mime_types: Optional[Iterable[str]] = None,
        model_mime_types: Optional[Iterable[str]] = None,
    ):
        self.allowed_mime_types: dict[FileType, Optional[frozenset[str]]] = {
            FileType.IMAGE: frozenset(image_mime_types),
            FileType.AUDIO: frozenset(audio_mime_types),
            FileType.VIDEO: frozenset(video_mime_types) if video_mime_types else None,
            FileType.MODEL: frozenset(model_mime_types) if model_mime_types else None,
        }
        self.max_file_bytes = max_file_bytes
        self.max_batch_bytes = max_batch_bytes
        self.max_files_per_batch = max_files_per_batch

    @classmethod
    def from_settings(cls, settings: Settings) -> "ContentValidator":
        return cls(
            image_mime_types=settings.image_mime_types,
            audio_mime_types=settings.audio_mime_types,
            max_file_bytes=settings.max_file_bytes,
            max_batch_bytes=settings.max_batch_bytes,
            max_files_per_batch=settings.MAX_FILES_PER_BATCH,
            video_mime_types=settings.video_mime_types,
            model_mime_types=settings.model_mime_types,
        )

    def validate_part(self, declared_type: FileType, part: RawFilePart) -> None:
        """Check one file's MIME type and size against its declared type.

        Raises:
            UnsupportedMediaType: If the MIME type is not allowed for the type
            PayloadTooLarge: If the file exceeds the per-file ceiling
        """
        allowed = self.allowed_mime_types[declared_type]
        mime_type = part.mime_type.split(";", 1)[0].strip().lower()
        if allowed is not None and mime_type not in allowed:
            raise UnsupportedMediaType(
                f"Content type {part.mime_type} not allowed for {declared_type.value} files. "
                f"Allowed: {', '.join(sorted(allowed))}"
            )

        if part.byte_size > self.max_file_bytes:
            raise PayloadTooLarge(
                f"File {part.original_filename!r} exceeds maximum allowed size of "
                f"{self.max_file_bytes} bytes"
            )

    def validate_batch(self, parts: list[RawFilePart], rejected_count: int = 0) -> None:
        """Check the file count and cumulative size of a batch.

        Files the decoder already rejected still count towards the file limit.

        Raises:
            ValidationError: If the batch is empty or has too many files
            PayloadTooLarge: If the cumulative size exceeds the batch ceiling
        """
        count = len(parts) + rejected_count
        if not count:
            raise ValidationError("No files provided")
        if count > self.max_files_per_batch:
            raise ValidationError(
                f"Too many files: {count} (maximum {self.max_files_per_batch})"
            )
        total = sum(part.byte_size for part in parts)
        if total > self.max_batch_bytes:
            raise PayloadTooLarge(
                f"Batch size {total} bytes exceeds maximum of {self.max_batch_bytes} bytes"
            )

    def validate_translations(
        self, declared_type: FileType, translations: Mapping[str, TranslationInput]
    ) -> None:
        """Enforce the audio single-translation rule.

        Raises:
            ValidationError: If an audio file carries more than one translation
        """
        if declared_type == FileType.AUDIO and len(translations) > MAX_AUDIO_TRANSLATIONS:
            raise ValidationError(
                f"Audio files accept at most {MAX_AUDIO_TRANSLATIONS} translation, "
                f"got {len(translations)} ({', '.join(sorted(translations))})"
            )

    def validate_type_change(self, stored_type: FileType, requested_type: Optional[FileType]) -> None:
        """Reject updates that try to change a stored file's type.

        Raises:
            ValidationError: If ``requested_type`` differs from ``stored_type``
        """
        if requested_type is not None and requested_type != stored_type:
            raise ValidationError(
                f"File type cannot be changed from {stored_type.value} to {requested_type.value}"
            )
