"""Configuration management for the areacms backend."""

from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    ENV: str = "local"
    SERVICE_NAME: str = "areacms"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Metadata store
    DATABASE_URL: str = "sqlite+aiosqlite:///./areacms.db"
    DATABASE_ECHO: bool = False

    # Blob store configuration
    STORAGE_BACKEND: str = "local"  # "gcs" or "local"
    GCP_PROJECT_ID: str = ""
    GCS_BUCKET_NAME: str = ""
    LOCAL_STORAGE_PATH: str = "data/blobs"
    PUBLIC_BASE_URL: str = "http://localhost:8000/blobs"

    # Upload constraints
    MAX_FILE_SIZE_MB: int = 10
    MAX_BATCH_SIZE_MB: int = 100
    MAX_FILES_PER_BATCH: int = 50
    ALLOWED_IMAGE_MIME_TYPES: str = "image/jpeg,image/png,image/gif,image/webp,image/svg+xml"
    ALLOWED_AUDIO_MIME_TYPES: str = "audio/mpeg"
    ALLOWED_VIDEO_MIME_TYPES: str = ""  # empty = allow all
    ALLOWED_MODEL_MIME_TYPES: str = ""  # empty = allow all

    # Multipart decoding
    MULTIPART_STREAMING_THRESHOLD_MB: int = 8  # bodies above this are spooled, not buffered
    MULTIPART_SPOOL_MAX_MEMORY_KB: int = 1024

    # Image transcoding
    IMAGE_MAX_DIMENSION: int = 1200
    IMAGE_QUALITY: int = 80
    THUMBNAIL_WIDTH: int = 100
    THUMBNAIL_QUALITY: int = 70
    TRANSCODE_TIMEOUT_SECONDS: float = 30.0
    TRANSCODE_MAX_WORKERS: int = 2

    # Blob writes
    STORAGE_RETRY_ATTEMPTS: int = 3
    STORAGE_RETRY_BASE_DELAY_SECONDS: float = 1.0
    STORAGE_RETRY_MULTIPLIER: float = 2.0
    STORAGE_RETRY_MAX_DELAY_SECONDS: float = 10.0
    UPLOAD_TIMEOUT_SECONDS: float = 30.0

    # Batch uploads
    BATCH_MAX_CONCURRENCY: int = 2
    FILE_PROCESSING_TIMEOUT_SECONDS: float = 60.0
    BATCH_TIMEOUT_SECONDS: float = 300.0

    # Bearer tokens for local development: "token:user_id:project_id,..."
    STATIC_API_TOKENS: str = ""

    @property
    def max_file_bytes(self) -> int:
        """Convert MAX_FILE_SIZE_MB to bytes."""
        return self.MAX_FILE_SIZE_MB * 1024 * 1024

    @property
    def max_batch_bytes(self) -> int:
        """Convert MAX_BATCH_SIZE_MB to bytes."""
        return self.MAX_BATCH_SIZE_MB * 1024 * 1024

    @property
    def streaming_threshold_bytes(self) -> int:
        return self.MULTIPART_STREAMING_THRESHOLD_MB * 1024 * 1024

    @property
    def image_mime_types(self) -> list[str]:
        return _split_csv(self.ALLOWED_IMAGE_MIME_TYPES)

    @property
    def audio_mime_types(self) -> list[str]:
        return _split_csv(self.ALLOWED_AUDIO_MIME_TYPES)

    @property
    def video_mime_types(self) -> list[str] | None:
        """Parse ALLOWED_VIDEO_MIME_TYPES; None means any type is accepted."""
        return _split_csv(self.ALLOWED_VIDEO_MIME_TYPES) or None

    @property
    def model_mime_types(self) -> list[str] | None:
        """Parse ALLOWED_MODEL_MIME_TYPES; None means any type is accepted."""
        return _split_csv(self.ALLOWED_MODEL_MIME_TYPES) or None

    @property
    def static_api_tokens(self) -> dict[str, tuple[str, int]]:
        """Parse STATIC_API_TOKENS into {token: (user_id, project_id)}."""
        tokens: dict[str, tuple[str, int]] = {}
        for entry in _split_csv(self.STATIC_API_TOKENS):
            token, user_id, project_id = entry.split(":", 2)
            tokens[token] = (user_id, int(project_id))
        return tokens


# Singleton settings instance
settings = Settings()
