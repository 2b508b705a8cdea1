"""Main application entrypoint for the areacms backend."""

import logging
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from areacms.api.middleware import HTTPErrorLoggingMiddleware
from areacms.api.v1 import routes_health
from areacms.api.v1.deps import StaticTokenResolver, TokenResolver
from areacms.api.v1.routes_files import router as files_router
from areacms.core.config import Settings, settings as default_settings
from areacms.core.errors import UploadError
from areacms.core.logging import setup_logging
from areacms.db.metadata_store import MetadataStore
from areacms.storage.factory import get_storage_backend
from areacms.storage.local import LocalBlobStore
from areacms.uploads.form_decoder import FormDecoder
from areacms.uploads.pipeline import UploadPipeline

logger = logging.getLogger(__name__)


async def upload_error_handler(request: Request, exc: UploadError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    details = "; ".join(
        f"{'.'.join(str(loc) for loc in error.get('loc', ()))}: {error.get('msg')}" for error in errors
    )
    return JSONResponse(status_code=400, content={"error": "ValidationError", "details": details})


def create_app(
    pipeline: Optional[UploadPipeline] = None,
    token_resolver: Optional[TokenResolver] = None,
    form_decoder: Optional[FormDecoder] = None,
    app_settings: Settings = default_settings,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators default to the ones configured by ``app_settings``; tests
    pass their own.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    # Initialize logging first
    setup_logging()

    if pipeline is None:
        pipeline = UploadPipeline.from_settings(
            app_settings,
            blob_store=get_storage_backend(app_settings),
            metadata_store=MetadataStore.from_settings(app_settings),
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await pipeline.metadata_store.init()
        logger.info(
            "Service started",
            extra={
                "service": app_settings.SERVICE_NAME,
                "version": app_settings.SERVICE_VERSION,
                "backend": pipeline.blob_store.get_backend_name(),
            },
        )
        yield
        pipeline.transcoder.close()
        await pipeline.metadata_store.close()

    app = FastAPI(
        title=app_settings.SERVICE_NAME,
        version=app_settings.SERVICE_VERSION,
        lifespan=lifespan,
    )

    app.state.pipeline = pipeline
    app.state.token_resolver = token_resolver or StaticTokenResolver.from_settings(app_settings)
    app.state.form_decoder = form_decoder or FormDecoder(
        max_file_bytes=app_settings.max_file_bytes,
        spool_max_memory=app_settings.MULTIPART_SPOOL_MAX_MEMORY_KB * 1024,
    )
    app.state.streaming_threshold_bytes = app_settings.streaming_threshold_bytes

    app.add_middleware(HTTPErrorLoggingMiddleware)
    app.add_exception_handler(UploadError, upload_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)

    # Register routers
    app.include_router(routes_health.router, tags=["health"])
    app.include_router(files_router)

    # Serve local blobs under PUBLIC_BASE_URL's path during development
    blob_mount_path = urlparse(app_settings.PUBLIC_BASE_URL).path.rstrip("/")
    if isinstance(pipeline.blob_store, LocalBlobStore) and blob_mount_path:
        app.mount(
            blob_mount_path,
            StaticFiles(directory=pipeline.blob_store.base_path, check_dir=False),
            name="blobs",
        )

    return app


# Export app instance for ASGI servers
app = create_app()
