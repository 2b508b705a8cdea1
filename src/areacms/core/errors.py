"""Error taxonomy for the upload pipeline.

Every error carries a machine-stable ``category`` and the HTTP status the
API layer renders it with, as ``{"error": category, "details": message}``.
"""


class UploadError(Exception):
    """Base exception for the upload pipeline."""

    category = "UploadError"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.category)
        self.message = message or self.category

    def to_dict(self) -> dict[str, str]:
        return {"error": self.category, "details": self.message}


class MalformedMultipart(UploadError):
    """Raised when a multipart body or one of its part headers cannot be parsed."""

    category = "MalformedMultipart"
    status_code = 400


class UnsupportedMediaType(UploadError):
    """Raised when a file's MIME type is not allowed for its declared type."""

    category = "UnsupportedMediaType"
    status_code = 415


class PayloadTooLarge(UploadError):
    """Raised when a file or batch exceeds its configured size ceiling."""

    category = "PayloadTooLarge"
    status_code = 413


class ValidationError(UploadError):
    """Raised when request fields violate a domain rule."""

    category = "ValidationError"
    status_code = 400


class ProcessingFailed(UploadError):
    """Raised when transcoding fails."""

    category = "ProcessingFailed"
    status_code = 422


class ProcessingTimeout(UploadError):
    """Raised when transcoding or per-file processing exceeds its deadline."""

    category = "ProcessingTimeout"
    status_code = 504


class StorageWriteFailed(UploadError):
    """Raised when a blob write fails after exhausting retries."""

    category = "StorageWriteFailed"
    status_code = 502


class LanguageNotFound(UploadError):
    """Raised when a translation locale is not configured for the project."""

    category = "LanguageNotFound"
    status_code = 500

    def __init__(self, locale: str, project_id: int | None = None):
        message = f"Language not found for locale: {locale}"
        if project_id is not None:
            message = f"{message} (project {project_id})"
        super().__init__(message)
        self.locale = locale


class TransactionFailed(UploadError):
    """Raised when the metadata transaction cannot be committed."""

    category = "TransactionFailed"
    status_code = 500


class FileNotFound(UploadError):
    """Raised when a file id does not exist within the caller's project."""

    category = "NotFound"
    status_code = 404


class Unauthorized(UploadError):
    """Raised when a request carries no resolvable bearer token."""

    category = "Unauthorized"
    status_code = 401
