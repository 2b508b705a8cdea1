"""Image optimization and thumbnail generation."""

import asyncio
import io
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from areacms.core.config import Settings
from areacms.core.errors import ProcessingFailed, ProcessingTimeout

logger = logging.getLogger(__name__)

RASTER_IMAGE_TYPES = frozenset(["image/jpeg", "image/png", "image/gif", "image/webp"])
SVG_MIME_TYPE = "image/svg+xml"
OUTPUT_MIME_TYPE = "image/jpeg"
OUTPUT_EXTENSION = ".jpg"


@dataclass
class TranscodeResult:
    """Optimized payload plus an optional thumbnail rendition."""

    data: bytes
    mime_type: str
    thumbnail: Optional[bytes] = None
    thumbnail_mime_type: Optional[str] = None
    transcoded: bool = False

    @property
    def extension(self) -> Optional[str]:
        """File extension matching the re-encoded format, if re-encoded."""
        return OUTPUT_EXTENSION if self.transcoded else None


def _flatten(image: Image.Image) -> Image.Image:
    """Convert to RGB, compositing transparency onto white."""
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def _encode_jpeg(image: Image.Image, quality: int) -> bytes:
    output = io.BytesIO()
    image.save(output, format="JPEG", quality=quality, optimize=True, progressive=True)
    return output.getvalue()


class MediaTranscoder:
    """Downsizes and re-encodes raster images; everything else passes through.

    Pillow work runs on a dedicated pool of ``max_workers`` threads. A timed-out
    transcode keeps its thread until Pillow returns, so slow inputs can only
    exhaust this pool and never the default executor used by the blob stores.
    """

    def __init__(
        self,
        max_dimension: int = 1200,
        quality: int = 80,
        thumbnail_width: int = 100,
        thumbnail_quality: int = 70,
        timeout_seconds: float = 30.0,
        max_workers: int = 2,
    ):
        self.max_dimension = max_dimension
        self.quality = quality
        self.thumbnail_width = thumbnail_width
        self.thumbnail_quality = thumbnail_quality
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="transcode")

    @classmethod
    def from_settings(cls, settings: Settings) -> "MediaTranscoder":
        return cls(
            max_dimension=settings.IMAGE_MAX_DIMENSION,
            quality=settings.IMAGE_QUALITY,
            thumbnail_width=settings.THUMBNAIL_WIDTH,
            thumbnail_quality=settings.THUMBNAIL_QUALITY,
            timeout_seconds=settings.TRANSCODE_TIMEOUT_SECONDS,
            max_workers=settings.TRANSCODE_MAX_WORKERS,
        )

    @staticmethod
    def is_raster_image(mime_type: str) -> bool:
        """SVG and non-image types are detected by declared MIME type and skipped."""
        return mime_type.split(";", 1)[0].strip().lower() in RASTER_IMAGE_TYPES

    async def transcode(self, data: bytes, mime_type: str) -> TranscodeResult:
        """Optimize an image and render its thumbnail within the time limit.

        Args:
            data: Original file bytes
            mime_type: Declared MIME type

        Returns:
            TranscodeResult; identity for non-raster content

        Raises:
            ProcessingFailed: If the image cannot be decoded or re-encoded
            ProcessingTimeout: If transcoding exceeds ``timeout_seconds``
        """
        if not self.is_raster_image(mime_type):
            return TranscodeResult(data=data, mime_type=mime_type)

        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, self._transcode_image, data),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error(
                "Image transcoding timed out",
                extra={"timeout_seconds": self.timeout_seconds, "size_bytes": len(data)},
            )
            raise ProcessingTimeout(
                f"Image processing exceeded {self.timeout_seconds:g}s"
            ) from e

    def close(self) -> None:
        """Stop the worker pool; queued transcodes are dropped."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _transcode_image(self, data: bytes) -> TranscodeResult:
        try:
            with Image.open(io.BytesIO(data)) as source:
                source.load()
                image = ImageOps.exif_transpose(source)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            raise ProcessingFailed(f"Could not decode image: {e}") from e

        try:
            optimized = self.optimize(image)
        except (OSError, ValueError) as e:
            raise ProcessingFailed(f"Could not re-encode image: {e}") from e

        thumbnail: Optional[bytes] = None
        try:
            thumbnail = self.generate_thumbnail(image)
        except Exception as e:
            # Thumbnails are optional; the file is stored without one
            logger.warning("Thumbnail generation failed", extra={"error": str(e)})

        return TranscodeResult(
            data=optimized,
            mime_type=OUTPUT_MIME_TYPE,
            thumbnail=thumbnail,
            thumbnail_mime_type=OUTPUT_MIME_TYPE if thumbnail is not None else None,
            transcoded=True,
        )

    def optimize(self, image: Image.Image) -> bytes:
        """Fit inside max_dimension x max_dimension without upscaling, then encode."""
        resized = _flatten(image)
        if resized is image:
            resized = image.copy()
        resized.thumbnail((self.max_dimension, self.max_dimension), Image.Resampling.LANCZOS)
        return _encode_jpeg(resized, self.quality)

    def generate_thumbnail(self, image: Image.Image) -> bytes:
        """Render a fixed-width thumbnail, preserving aspect ratio."""
        thumb = _flatten(image)
        if thumb is image:
            thumb = image.copy()
        width = min(self.thumbnail_width, thumb.width)
        height = max(1, round(thumb.height * width / thumb.width))
        thumb = thumb.resize((width, height), Image.Resampling.LANCZOS)
        return _encode_jpeg(thumb, self.thumbnail_quality)
