"""
Utility functions for file system operations, file naming and timestamps.

This module provides helper functions for:
- Sanitizing user-provided filenames before they touch the filesystem
- Ensuring directory creation with proper error handling
- Splitting filenames and guessing content types
- Producing timezone-aware UTC timestamps
"""

from __future__ import annotations

import mimetypes
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# Pattern to match characters that are not safe for filesystem paths
# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")

DEFAULT_MIME = "application/octet-stream"

_PDF_SUFFIX = re.compile(r"\.pdf$", re.IGNORECASE)


def sanitize_filename(filename: str, fallback: str = "document") -> str:
    """
    Generate a filesystem-safe filename from user input.

    The stem is sanitized and the extension (if any) is kept lowercase, so
    external tools that derive their output name from the input name produce
    a predictable path.

    Args:
        filename: The original filename (may include directories)
        fallback: Stem to use if sanitization leaves nothing

    Returns:
        A filesystem-safe filename

    Example:
        >>> sanitize_filename("My Report (final).DOCX")
        "My-Report-final.docx"
        >>> sanitize_filename("../../etc/passwd")
        "passwd"
    """
    stem, suffix = split_extension(Path(filename).name)
    cleaned = SANITIZE_PATTERN.sub("-", stem.strip()).strip("-_.")
    safe_suffix = SANITIZE_PATTERN.sub("", suffix.lower())
    return f"{cleaned or fallback}{safe_suffix}"


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def split_extension(filename: str) -> tuple[str, str]:
    """
    Split a filename into stem and extension components.

    Example:
        >>> split_extension("document.pdf")
        ("document", ".pdf")
        >>> split_extension("/path/to/file.tar.gz")
        ("file.tar", ".gz")
    """
    path = Path(filename)
    return path.stem, path.suffix


def pdf_basename(filename: str) -> str:
    """Strip a trailing ``.pdf`` (any case) from a filename."""
    return _PDF_SUFFIX.sub("", filename)


def guess_mime(filename: str, provided: Optional[str] = None) -> str:
    if provided and provided != DEFAULT_MIME:
        return provided
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or provided or DEFAULT_MIME


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def millis() -> int:
    return int(time.time() * 1000)
