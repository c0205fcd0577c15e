"""
Utility functions for file system operations and string sanitization.

This module provides helper functions for:
- Sanitizing client-supplied filenames for safe filesystem usage
- Ensuring directory creation
- Crash-safe replacement of small documents on disk
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# Pattern to match characters that are not safe for filesystem paths
# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")


def split_extension(filename: str) -> tuple[str, str]:
    """
    Split a filename into stem and extension components.

    A bare extension such as ``.pdf`` is returned as ``("", ".pdf")``.

    Example:
        >>> split_extension("document.pdf")
        ("document", ".pdf")
        >>> split_extension("archive.tar.gz")
        ("archive.tar", ".gz")
    """
    path = Path(filename)
    stem, suffix = path.stem, path.suffix
    if not suffix and stem.startswith(".") and "." not in stem[1:]:
        return "", stem
    return stem, suffix


def sanitize_filename(filename: str, fallback: str = "document") -> str:
    """
    Generate a filesystem-safe filename from a client-supplied name.

    Directory components are discarded and the stem and extension are
    sanitized separately, so the extension survives even when nothing of the
    stem does.

    Args:
        filename: The original filename as sent by the client
        fallback: Stem used when nothing usable survives sanitization

    Returns:
        A filesystem-safe name

    Example:
        >>> sanitize_filename("My Thesis (final).pdf")
        "My-Thesis-final.pdf"
        >>> sanitize_filename("документ.pdf")
        "document.pdf"
        >>> sanitize_filename("../../etc/passwd")
        "passwd"
    """
    # Browsers on Windows may send full paths
    base = filename.replace("\\", "/").rsplit("/", 1)[-1].strip()
    stem, suffix = split_extension(base)
    safe_stem = SANITIZE_PATTERN.sub("-", stem).strip(".-_") or fallback
    safe_suffix = SANITIZE_PATTERN.sub("", suffix)
    if safe_suffix == ".":
        safe_suffix = ""
    return f"{safe_stem}{safe_suffix}"


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


def atomic_write_text(path: Path, content: str) -> None:
    """
    Replace ``path`` with ``content`` without ever exposing a partial file.

    The content is written to a temporary file in the same directory,
    flushed to disk and then moved over the target with ``os.replace``.
    A crash at any point leaves either the old or the new document.

    Raises:
        OSError: If the temporary file cannot be written or moved
    """
    ensure_directory(path.parent)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def atomic_write_json(path: Path, data: Any) -> None:
    atomic_write_text(path, json.dumps(data, indent=2))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
