"""Health check endpoint for the areacms backend."""

from fastapi import APIRouter, Request

from areacms.core.config import settings

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Health check endpoint.

    Kept free of database and blob store calls so it answers during startup.

    Returns:
        dict: Service status, name, version and configured blob backend
    """
    pipeline = request.app.state.pipeline
    return {
        "status": "ok",
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "storage_backend": pipeline.blob_store.get_backend_name(),
    }
