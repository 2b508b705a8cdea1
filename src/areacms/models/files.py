"""File data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class FileType(str, Enum):
    """Declared content type of a stored file."""

    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    MODEL = "model"


class TranslationInput(BaseModel):
    """Caption fields submitted for one locale."""

    title: Optional[str] = None
    subtitle: Optional[str] = None
    description: Optional[str] = None


class FileTranslation(BaseModel):
    """Persisted caption/description row for one language."""

    id: int
    file_id: int
    language_id: int
    locale: str
    title: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StoredFile(BaseModel):
    """Persisted file metadata. ``path`` and ``thumbnail_path`` are blob keys."""

    id: int
    project_id: int
    name: str
    type: FileType
    path: str
    thumbnail_path: Optional[str] = None
    translations: list[FileTranslation] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StoredFileResponse(StoredFile):
    """Stored file with URLs derived from the blob store."""

    url: str
    thumbnail_url: Optional[str] = None


class UploadResponse(BaseModel):
    """Response model for a single upload or update."""

    success: bool = True
    data: StoredFileResponse


class FailedUpload(BaseModel):
    """One failed file inside a batch upload."""

    name: str
    error: str
    details: str


class BatchTotals(BaseModel):
    processed: int
    failed: int


class BatchUploadResponse(BaseModel):
    """Partial-success report for a batch upload."""

    success: bool = True
    succeeded: list[StoredFileResponse]
    failed: list[FailedUpload]
    total: BatchTotals


class DeleteFilesRequest(BaseModel):
    """Request model for mass deletion."""

    ids: list[int] = Field(..., min_length=1)


class DeleteResult(BaseModel):
    """Outcome of deleting one file: metadata is gone, blobs are best-effort."""

    id: int
    blobs_deleted: bool
    blob_errors: list[str] = Field(default_factory=list)


class DeleteFileResponse(BaseModel):
    success: bool = True
    data: DeleteResult


class DeleteFilesResponse(BaseModel):
    success: bool = True
    deleted: list[DeleteResult]
    not_found: list[int] = Field(default_factory=list)


class FileListResponse(BaseModel):
    data: list[StoredFileResponse]
    page: int
    page_size: int
    total: int
