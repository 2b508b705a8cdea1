"""Storage key generation."""

import re
import secrets
import time
from pathlib import PurePosixPath
from typing import Callable, Optional

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_filename(filename: str) -> str:
    """Remove path traversal and dangerous characters."""
    safe = filename.replace("../", "").replace("..\\", "")
    safe = safe.replace("/", "_").replace("\\", "_")
    safe = _UNSAFE_CHARS.sub("_", safe).lstrip(".")
    return safe[:128] or "file"


def project_prefix(project_id: int) -> str:
    return f"project-{project_id}"


def generate_storage_key(
    project_id: int,
    original_name: str,
    *,
    extension: Optional[str] = None,
    variant: Optional[str] = None,
    clock: Callable[[], float] = time.time,
) -> str:
    """Build a unique blob key: ``project-<id>/[<variant>-]<ms>-<random>-<name>``.

    Args:
        project_id: Owning project
        original_name: Client-supplied filename
        extension: Replaces the original extension when content was re-encoded
        variant: Optional rendition label such as ``thumb``
        clock: Time source in seconds

    Returns:
        Storage key; the random suffix keeps keys unique within the same millisecond
    """
    name = sanitize_filename(original_name)
    if extension:
        stem = PurePosixPath(name).stem or "file"
        name = f"{stem}{extension}"

    timestamp_ms = int(clock() * 1000)
    suffix = secrets.token_hex(8)
    prefix = f"{variant}-" if variant else ""
    return f"{project_prefix(project_id)}/{prefix}{timestamp_ms}-{suffix}-{name}"
