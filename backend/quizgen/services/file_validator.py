"""Upload validation for file-sourced quiz generation.

Security model (allowlist approach):
- Only extensions in settings.SUPPORTED_FILE_TYPES are accepted.
- File size capped at settings.MAX_UPLOAD_SIZE_MB; empty files rejected.
- Filename sanitised to prevent path traversal.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Optional

from quizgen.core.config import settings
from quizgen.core.errors import ValidationError

logger = logging.getLogger(__name__)


class FileValidationError(ValidationError):
    """Raised when file validation fails."""

    code = "INVALID_FILE"


# ── Individual checks ─────────────────────────────────────────


def validate_file_size(file_size: int) -> None:
    if file_size > settings.max_upload_bytes:
        size_mb = file_size / (1024 * 1024)
        raise FileValidationError(
            f"File too large: {size_mb:.2f} MB exceeds {settings.MAX_UPLOAD_SIZE_MB} MB limit",
            context={"file_size": file_size},
        )
    if file_size == 0:
        raise FileValidationError("File is empty")


def validate_extension(filename: str) -> str:
    """Return the lower-cased extension (without dot) if it is supported."""
    ext = Path(filename).suffix.lower().lstrip(".")
    if ext not in settings.SUPPORTED_FILE_TYPES:
        allowed = ", ".join(settings.SUPPORTED_FILE_TYPES)
        raise FileValidationError(
            f"Unsupported file type: .{ext or '?'} (allowed: {allowed})",
            context={"file_name": filename},
        )
    return ext


def sanitize_filename(filename: str) -> str:
    """Sanitize filename to prevent path traversal."""
    filename = Path(filename).name            # strip directory components
    filename = filename.replace("\0", "")     # remove null bytes
    if ".." in filename or "/" in filename or "\\" in filename:
        raise FileValidationError("Invalid filename: path traversal detected")

    safe = re.sub(r"[^\w\s.\-]", "_", filename)   # keep letters, digits, dots, dashes
    safe = re.sub(r"[\s_]+", "_", safe)            # collapse whitespace/underscores

    if len(safe) > 255:
        stem = Path(safe).stem[:200]
        ext = Path(safe).suffix
        safe = stem + ext

    if not safe:
        raise FileValidationError("Filename is invalid or empty after sanitization")
    return safe


# ── Public entry point ────────────────────────────────────────


def validate_upload(file_path: str, filename: Optional[str] = None) -> dict:
    """Check an uploaded file before extraction.

    Returns a dict with metadata on success.
    Raises FileValidationError on failure.
    """
    if not os.path.isfile(file_path):
        raise FileValidationError(f"File not found: {file_path}")

    filename = filename or os.path.basename(file_path)
    safe_filename = sanitize_filename(filename)
    file_ext = validate_extension(safe_filename)
    file_size = os.path.getsize(file_path)
    validate_file_size(file_size)

    logger.info("File validation passed: %s (%s, %d bytes)", filename, file_ext, file_size)
    return {
        "original_filename": filename,
        "safe_filename": safe_filename,
        "file_extension": file_ext,
        "file_size": file_size,
    }
