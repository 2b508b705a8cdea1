"""Ephemeral upload data: file sources, raw parts and the per-request upload."""

import json
import logging
from dataclasses import dataclass, field
from typing import BinaryIO, Union

from pydantic import ValidationError as PydanticValidationError

from areacms.core.errors import MalformedMultipart, UploadError, ValidationError
from areacms.models.files import FileType, TranslationInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Buffered:
    """File content held fully in memory."""

    data: bytes


@dataclass(frozen=True)
class Streamed:
    """File content spooled to a readable handle, positioned anywhere."""

    handle: BinaryIO


FileSource = Union[Buffered, Streamed]


@dataclass
class RawFilePart:
    """One file extracted from a multipart body.

    The content may be read exactly once; reading (or closing) releases the
    buffer or closes the spooled handle.
    """

    field_name: str
    original_filename: str
    mime_type: str
    byte_size: int
    content: FileSource
    _consumed: bool = field(default=False, repr=False)

    @property
    def consumed(self) -> bool:
        return self._consumed

    def read(self) -> bytes:
        """Return the file bytes and release the underlying source."""
        if self._consumed:
            raise RuntimeError(f"Content of {self.original_filename!r} was already consumed")

        match self.content:
            case Buffered(data=data):
                payload = data
            case Streamed(handle=handle):
                try:
                    handle.seek(0)
                    payload = handle.read()
                finally:
                    handle.close()

        self._release()

        if len(payload) != self.byte_size:
            raise MalformedMultipart(
                f"Declared size {self.byte_size} of {self.original_filename!r} "
                f"does not match {len(payload)} bytes read"
            )
        return payload

    def close(self) -> None:
        """Release the source without reading it. Safe to call repeatedly."""
        if self._consumed:
            return
        match self.content:
            case Streamed(handle=handle):
                handle.close()
            case Buffered():
                pass
        self._release()

    def _release(self) -> None:
        self._consumed = True
        self.content = Buffered(b"")


@dataclass
class RejectedPart:
    """A file part the decoder refused to collect, e.g. over the size ceiling."""

    field_name: str
    original_filename: str
    mime_type: str
    error: UploadError


@dataclass
class DecodedForm:
    """Result of decoding one multipart body."""

    fields: dict[str, str] = field(default_factory=dict)
    files: list[RawFilePart] = field(default_factory=list)
    rejected: list[RejectedPart] = field(default_factory=list)

    def files_for(self, *field_names: str) -> list[RawFilePart]:
        return [part for part in self.files if part.field_name in field_names]

    def rejected_for(self, *field_names: str) -> list[RejectedPart]:
        return [part for part in self.rejected if part.field_name in field_names]

    def close(self) -> None:
        for part in self.files:
            part.close()


def parse_file_type(value: str | None) -> FileType:
    """Parse the ``type`` form field."""
    if not value or not value.strip():
        raise ValidationError("No type provided")
    try:
        return FileType(value.strip().lower())
    except ValueError:
        allowed = ", ".join(t.value for t in FileType)
        raise ValidationError(f"Invalid file type {value!r}. Allowed types: {allowed}")


def parse_translations(raw: str | None) -> dict[str, TranslationInput]:
    """Parse the JSON ``metadata`` field into a locale -> translation map.

    Accepts both ``{"translations": {"en": {...}}}`` and a bare
    ``{"en": {...}}`` mapping.
    """
    if raw is None or not raw.strip():
        return {}

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid metadata format: {e.msg}")

    if not isinstance(payload, dict):
        raise ValidationError("Invalid metadata format: expected a JSON object")

    translations = payload.get("translations", payload)
    if translations is None:
        return {}
    if not isinstance(translations, dict):
        raise ValidationError("Invalid metadata format: translations must be an object")

    parsed: dict[str, TranslationInput] = {}
    for locale, value in translations.items():
        if not isinstance(locale, str) or not locale.strip():
            raise ValidationError("Invalid metadata format: empty locale")
        try:
            parsed[locale.strip()] = TranslationInput.model_validate(value or {})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid translation for locale {locale!r}: {e.errors()[0]['msg']}")
    return parsed


@dataclass
class UploadRequest:
    """One HTTP upload call: declared type, file parts and translations."""

    project_id: int
    declared_type: FileType
    parts: list[RawFilePart]
    translations: dict[str, TranslationInput] = field(default_factory=dict)
    rejected: list[RejectedPart] = field(default_factory=list)

    @classmethod
    def from_form(
        cls,
        form: DecodedForm,
        project_id: int,
        file_fields: tuple[str, ...] = ("file", "files"),
    ) -> "UploadRequest":
        """Build an upload request from decoded form data.

        Raises:
            ValidationError: If ``type`` or ``metadata`` are missing or invalid
        """
        declared_type = parse_file_type(form.fields.get("type"))
        translations = parse_translations(form.fields.get("metadata"))
        return cls(
            project_id=project_id,
            declared_type=declared_type,
            parts=form.files_for(*file_fields),
            translations=translations,
            rejected=form.rejected_for(*file_fields),
        )

    def close(self) -> None:
        for part in self.parts:
            part.close()
