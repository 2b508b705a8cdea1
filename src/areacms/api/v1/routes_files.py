"""File upload, update, delete and read routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from areacms.api.v1.deps import Principal, decode_form, get_pipeline, get_principal
from areacms.core.errors import ValidationError
from areacms.models.files import (
    BatchTotals,
    BatchUploadResponse,
    DeleteFileResponse,
    DeleteFilesRequest,
    DeleteFilesResponse,
    FileListResponse,
    FileType,
    StoredFile,
    StoredFileResponse,
    UploadResponse,
)
from areacms.storage.base import BlobStore
from areacms.uploads.pipeline import UploadPipeline
from areacms.uploads.sources import DecodedForm, UploadRequest, parse_file_type, parse_translations

router = APIRouter(prefix="/api/v1/files", tags=["files"])
logger = logging.getLogger(__name__)


def to_response(stored: StoredFile, blob_store: BlobStore) -> StoredFileResponse:
    """Attach URLs derived from the blob store to stored metadata."""
    return StoredFileResponse(
        **stored.model_dump(),
        url=blob_store.url_for(stored.path),
        thumbnail_url=blob_store.url_for(stored.thumbnail_path) if stored.thumbnail_path else None,
    )


@router.post("", response_model=UploadResponse)
async def upload_file(
    principal: Principal = Depends(get_principal),
    pipeline: UploadPipeline = Depends(get_pipeline),
    form: DecodedForm = Depends(decode_form),
) -> UploadResponse:
    """Upload one file (``file``) with its ``type`` and optional ``metadata``."""
    upload_request = UploadRequest.from_form(form, principal.project_id, file_fields=("file",))
    stored = await pipeline.upload(upload_request)

    logger.info(
        "Upload completed",
        extra={
            "project_id": principal.project_id,
            "user_id": principal.user_id,
            "file_id": stored.id,
            "backend": pipeline.blob_store.get_backend_name(),
        },
    )
    return UploadResponse(data=to_response(stored, pipeline.blob_store))


@router.post("/mass-upload", response_model=BatchUploadResponse)
async def mass_upload(
    principal: Principal = Depends(get_principal),
    pipeline: UploadPipeline = Depends(get_pipeline),
    form: DecodedForm = Depends(decode_form),
) -> BatchUploadResponse:
    """Upload several files (``files``) sharing one ``type`` and ``metadata``.

    Per-file failures are reported in ``failed``; the response is still 200.
    """
    upload_request = UploadRequest.from_form(form, principal.project_id, file_fields=("files",))
    report = await pipeline.upload_batch(upload_request)

    return BatchUploadResponse(
        success=not report.failed,
        succeeded=[to_response(stored, pipeline.blob_store) for stored in report.succeeded],
        failed=report.failed,
        total=BatchTotals(processed=len(report.succeeded), failed=len(report.failed)),
    )


@router.post("/mass-delete", response_model=DeleteFilesResponse)
async def mass_delete(
    payload: DeleteFilesRequest = Body(...),
    principal: Principal = Depends(get_principal),
    pipeline: UploadPipeline = Depends(get_pipeline),
) -> DeleteFilesResponse:
    """Delete several files; ids outside the caller's project are reported as not found."""
    outcome = await pipeline.delete_many(principal.project_id, payload.ids)
    return DeleteFilesResponse(deleted=outcome.deleted, not_found=outcome.not_found)


@router.put("/{file_id}", response_model=UploadResponse)
async def update_file(
    file_id: int,
    principal: Principal = Depends(get_principal),
    pipeline: UploadPipeline = Depends(get_pipeline),
    form: DecodedForm = Depends(decode_form),
) -> UploadResponse:
    """Update a file: optional replacement ``file``, ``type`` and ``metadata``.

    ``type`` may be sent but must equal the stored type. ``metadata`` replaces
    every existing translation.
    """
    requested_type: Optional[FileType] = None
    if form.fields.get("type"):
        requested_type = parse_file_type(form.fields["type"])

    translations = None
    if form.fields.get("metadata"):
        translations = parse_translations(form.fields["metadata"])

    rejected = form.rejected_for("file")
    if rejected:
        raise rejected[0].error
    parts = form.files_for("file")
    if len(parts) > 1:
        raise ValidationError("Only one replacement file may be uploaded")

    stored = await pipeline.update(
        principal.project_id,
        file_id,
        requested_type=requested_type,
        part=parts[0] if parts else None,
        translations=translations,
    )
    return UploadResponse(data=to_response(stored, pipeline.blob_store))


@router.delete("/{file_id}", response_model=DeleteFileResponse)
async def delete_file(
    file_id: int,
    principal: Principal = Depends(get_principal),
    pipeline: UploadPipeline = Depends(get_pipeline),
) -> DeleteFileResponse:
    result = await pipeline.delete(principal.project_id, file_id)
    return DeleteFileResponse(data=result)


@router.get("/{file_id}", response_model=UploadResponse)
async def get_file(
    file_id: int,
    principal: Principal = Depends(get_principal),
    pipeline: UploadPipeline = Depends(get_pipeline),
) -> UploadResponse:
    stored = await pipeline.get(principal.project_id, file_id)
    return UploadResponse(data=to_response(stored, pipeline.blob_store))


@router.get("", response_model=FileListResponse)
async def list_files(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    type: Optional[FileType] = Query(None),
    principal: Principal = Depends(get_principal),
    pipeline: UploadPipeline = Depends(get_pipeline),
) -> FileListResponse:
    """List the caller's files, newest first."""
    files, total = await pipeline.metadata_store.list_files(
        principal.project_id, file_type=type, page=page, page_size=page_size
    )
    return FileListResponse(
        data=[to_response(stored, pipeline.blob_store) for stored in files],
        page=page,
        page_size=page_size,
        total=total,
    )
