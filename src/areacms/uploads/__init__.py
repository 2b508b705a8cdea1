"""Media upload pipeline: decode, validate, transcode, store."""

from areacms.uploads.form_decoder import FormDecoder
from areacms.uploads.pipeline import BatchReport, UploadPipeline
from areacms.uploads.sources import Buffered, FileSource, RawFilePart, Streamed, UploadRequest
from areacms.uploads.transcoder import MediaTranscoder, TranscodeResult
from areacms.uploads.validator import ContentValidator
from areacms.uploads.writer import DurableStoreWriter

__all__ = [
    "BatchReport",
    "Buffered",
    "ContentValidator",
    "DurableStoreWriter",
    "FileSource",
    "FormDecoder",
    "MediaTranscoder",
    "RawFilePart",
    "Streamed",
    "TranscodeResult",
    "UploadPipeline",
    "UploadRequest",
]
