"""Multipart form decoding.

Two modes share one callback-driven collector:

- ``FormDecoder.decode`` parses a fully buffered body; file parts become
  ``Buffered`` sources.
- ``FormDecoder.decode_stream`` parses an async chunk iterator; file parts
  are spooled to temporary files and become ``Streamed`` sources. A file that
  grows past the per-file ceiling is aborted on its own and reported in
  ``DecodedForm.rejected`` while the rest of the request keeps decoding.
"""

import logging
import tempfile
from pathlib import PurePosixPath
from typing import AsyncIterator, Optional

import python_multipart as multipart
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import parse_options_header

from areacms.core.errors import MalformedMultipart, PayloadTooLarge
from areacms.uploads.sources import Buffered, DecodedForm, RawFilePart, RejectedPart, Streamed

logger = logging.getLogger(__name__)

DEFAULT_MAX_FIELD_BYTES = 1024 * 1024
DEFAULT_SPOOL_MAX_MEMORY = 1024 * 1024


def _safe_decode(value: bytes, charset: str) -> str:
    try:
        return value.decode(charset)
    except (UnicodeDecodeError, LookupError):
        return value.decode("latin-1")


def get_boundary(content_type: Optional[str]) -> bytes:
    """Extract the multipart boundary from a Content-Type header.

    Raises:
        MalformedMultipart: If the header is missing, not multipart/form-data,
            or carries no boundary
    """
    if not content_type:
        raise MalformedMultipart("Missing Content-Type header")

    media_type, params = parse_options_header(content_type)
    if media_type != b"multipart/form-data":
        raise MalformedMultipart(
            f"Expected multipart/form-data, got {_safe_decode(media_type, 'latin-1') or 'nothing'}"
        )

    boundary = params.get(b"boundary")
    if not boundary:
        raise MalformedMultipart("No boundary found in Content-Type header")
    return boundary


class _PartCollector:
    """Collects fields and files from python-multipart parser callbacks."""

    def __init__(
        self,
        streaming: bool,
        max_file_bytes: Optional[int],
        max_field_bytes: int,
        spool_max_memory: int,
        charset: str = "utf-8",
    ):
        self.streaming = streaming
        self.max_file_bytes = max_file_bytes
        self.max_field_bytes = max_field_bytes
        self.spool_max_memory = spool_max_memory
        self.charset = charset

        self.form = DecodedForm()
        self.ended = False

        self._headers: dict[str, str] = {}
        self._header_field = b""
        self._header_value = b""
        self._reset_part()

    def _reset_part(self) -> None:
        self._field_name = ""
        self._filename: Optional[str] = None
        self._mime_type = "application/octet-stream"
        self._size = 0
        self._value = bytearray()
        self._buffer = bytearray()
        self._spool = None
        self._rejected_error: Optional[PayloadTooLarge] = None

    @property
    def callbacks(self) -> dict:
        return {
            "on_part_begin": self.on_part_begin,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
            "on_end": self.on_end,
        }

    def on_part_begin(self) -> None:
        self._headers = {}
        self._reset_part()

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def on_header_end(self) -> None:
        name = _safe_decode(self._header_field, "latin-1").strip().lower()
        self._headers[name] = _safe_decode(self._header_value, self.charset).strip()
        self._header_field = b""
        self._header_value = b""

    def on_headers_finished(self) -> None:
        disposition = self._headers.get("content-disposition")
        if not disposition:
            raise MalformedMultipart("Missing Content-Disposition header in multipart part")

        disposition_type, options = parse_options_header(disposition)
        if disposition_type != b"form-data" or b"name" not in options:
            raise MalformedMultipart(f"Invalid Content-Disposition header: {disposition!r}")

        self._field_name = _safe_decode(options[b"name"], self.charset)
        if b"filename" in options:
            raw_name = _safe_decode(options[b"filename"], self.charset)
            # Some clients send the full client-side path
            self._filename = PurePosixPath(raw_name.replace("\\", "/")).name or "unnamed"
            self._mime_type = self._headers.get("content-type") or "application/octet-stream"
            if self.streaming:
                self._spool = tempfile.SpooledTemporaryFile(max_size=self.spool_max_memory)

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        chunk = data[start:end]

        if self._filename is None:
            if len(self._value) + len(chunk) > self.max_field_bytes:
                raise PayloadTooLarge(f"Form field {self._field_name!r} exceeds {self.max_field_bytes} bytes")
            self._value.extend(chunk)
            return

        if self._rejected_error is not None:
            return

        self._size += len(chunk)
        if self.max_file_bytes is not None and self._size > self.max_file_bytes:
            self._reject_current_file()
            return

        if self._spool is not None:
            self._spool.write(chunk)
        else:
            self._buffer.extend(chunk)

    def _reject_current_file(self) -> None:
        logger.warning(
            "Aborting file stream over size ceiling",
            extra={"file_name": self._filename, "max_file_bytes": self.max_file_bytes},
        )
        self._rejected_error = PayloadTooLarge(
            f"File {self._filename!r} exceeds maximum size of {self.max_file_bytes} bytes"
        )
        if self._spool is not None:
            self._spool.close()
            self._spool = None
        self._buffer = bytearray()

    def on_part_end(self) -> None:
        if self._filename is None:
            self.form.fields[self._field_name] = _safe_decode(bytes(self._value), self.charset)
            return

        if self._rejected_error is not None:
            self.form.rejected.append(
                RejectedPart(
                    field_name=self._field_name,
                    original_filename=self._filename,
                    mime_type=self._mime_type,
                    error=self._rejected_error,
                )
            )
            return

        if self._spool is not None:
            self._spool.seek(0)
            content = Streamed(self._spool)
            self._spool = None
        else:
            content = Buffered(bytes(self._buffer))
            self._buffer = bytearray()

        self.form.files.append(
            RawFilePart(
                field_name=self._field_name,
                original_filename=self._filename,
                mime_type=self._mime_type,
                byte_size=self._size,
                content=content,
            )
        )

    def on_end(self) -> None:
        self.ended = True

    def abort(self) -> None:
        """Release everything collected so far."""
        if self._spool is not None:
            self._spool.close()
            self._spool = None
        self.form.close()


class FormDecoder:
    """Decodes ``multipart/form-data`` bodies into fields and raw file parts."""

    def __init__(
        self,
        max_file_bytes: Optional[int] = None,
        max_field_bytes: int = DEFAULT_MAX_FIELD_BYTES,
        spool_max_memory: int = DEFAULT_SPOOL_MAX_MEMORY,
    ):
        self.max_file_bytes = max_file_bytes
        self.max_field_bytes = max_field_bytes
        self.spool_max_memory = spool_max_memory

    def _collector(self, streaming: bool) -> _PartCollector:
        return _PartCollector(
            streaming=streaming,
            max_file_bytes=self.max_file_bytes if streaming else None,
            max_field_bytes=self.max_field_bytes,
            spool_max_memory=self.spool_max_memory,
        )

    def decode(self, content_type: Optional[str], body: bytes) -> DecodedForm:
        """Decode a fully buffered multipart body.

        Args:
            content_type: Raw Content-Type header value
            body: Entire request body

        Returns:
            Decoded fields and buffered file parts

        Raises:
            MalformedMultipart: If the body cannot be parsed
        """
        boundary = get_boundary(content_type)
        collector = self._collector(streaming=False)
        parser = multipart.MultipartParser(boundary, collector.callbacks)
        try:
            parser.write(body)
            parser.finalize()
            self._ensure_complete(collector)
        except MultipartParseError as e:
            collector.abort()
            raise MalformedMultipart(f"Invalid multipart body: {e}") from e
        except Exception:
            collector.abort()
            raise
        return collector.form

    async def decode_stream(
        self, content_type: Optional[str], chunks: AsyncIterator[bytes]
    ) -> DecodedForm:
        """Decode a multipart body incrementally, spooling files to disk.

        Args:
            content_type: Raw Content-Type header value
            chunks: Async iterator over the request body

        Returns:
            Decoded fields, streamed file parts and files rejected by the
            per-file size ceiling

        Raises:
            MalformedMultipart: If the body cannot be parsed
        """
        boundary = get_boundary(content_type)
        collector = self._collector(streaming=True)
        parser = multipart.MultipartParser(boundary, collector.callbacks)
        try:
            async for chunk in chunks:
                if chunk:
                    parser.write(chunk)
            parser.finalize()
            self._ensure_complete(collector)
        except MultipartParseError as e:
            collector.abort()
            raise MalformedMultipart(f"Invalid multipart body: {e}") from e
        except BaseException:
            collector.abort()
            raise

        logger.debug(
            "Decoded multipart stream",
            extra={
                "field_count": len(collector.form.fields),
                "file_count": len(collector.form.files),
                "rejected_count": len(collector.form.rejected),
            },
        )
        return collector.form

    @staticmethod
    def _ensure_complete(collector: _PartCollector) -> None:
        if not collector.ended:
            raise MalformedMultipart("Unexpected end of multipart body")
