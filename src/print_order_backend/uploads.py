"""
Upload storage for customer documents.

An upload request carries a batch of files that is accepted or rejected as a
whole: declared types are checked for every file before any byte is
written, sizes are enforced while streaming, and any failure (including a
timeout or a cancelled request) removes every file of the batch that was
already written.

Stored files live in one flat directory. Each gets a unique prefix
(``<epoch ms>-<random>-``) in front of its sanitized original name, and is
created exclusively so an unlikely name clash fails instead of overwriting.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Sequence

from .configuration import Settings
from .errors import StorageFailure, StoredFileNotFoundError, UploadTimeoutError, ValidationError
from .models import ClearFilesResult, FileDeletionFailure, FileRef
from .utils import ensure_directory, sanitize_filename

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/uploads"
_MAX_NAME_LENGTH = 180


def media_type(content_type: Optional[str]) -> str:
    """Bare lower-case MIME type, without parameters such as charset or name."""
    return (content_type or "").split(";", 1)[0].strip().lower()


def describe_size(num_bytes: int) -> str:
    mib = 1024 * 1024
    if num_bytes >= mib and num_bytes % mib == 0:
        return f"{num_bytes // mib}MB"
    return f"{num_bytes} bytes"


class IncomingFile(Protocol):
    """The parts of ``fastapi.UploadFile`` the handler relies on."""

    filename: Optional[str]

    @property
    def content_type(self) -> Optional[str]: ...

    async def read(self, size: int = -1) -> bytes: ...

    async def close(self) -> None: ...


class UploadHandler:
    def __init__(
        self,
        upload_dir: Path,
        allowed_types: Iterable[str],
        max_file_bytes: int,
        sentinel: str = ".gitkeep",
        timeout_seconds: Optional[float] = 60.0,
        chunk_size: int = 1024 * 1024,
    ) -> None:
        self.upload_dir = ensure_directory(Path(upload_dir))
        self.allowed_types = frozenset(media_type(allowed) for allowed in allowed_types)
        self.max_file_bytes = max_file_bytes
        self.sentinel = sentinel
        self.timeout_seconds = timeout_seconds
        self.chunk_size = chunk_size

    @classmethod
    def from_settings(cls, settings: Settings) -> "UploadHandler":
        return cls(
            upload_dir=settings.upload_dir,
            allowed_types=settings.uploads.allowed_types,
            max_file_bytes=settings.uploads.max_file_bytes,
            sentinel=settings.storage.sentinel,
            timeout_seconds=settings.uploads.timeout_seconds,
            chunk_size=settings.uploads.chunk_size,
        )

    def ensure_sentinel(self) -> Path:
        sentinel_path = self.upload_dir / self.sentinel
        sentinel_path.touch(exist_ok=True)
        return sentinel_path

    async def save_batch(self, files: Sequence[IncomingFile]) -> List[FileRef]:
        """
        Validate and persist a batch of uploaded files.

        Returns:
            One ``FileRef`` per input file, in submission order

        Raises:
            ValidationError: Empty batch, disallowed type or oversized file
            UploadTimeoutError: If the batch did not finish within the timeout
            StorageFailure: If a file could not be written
        """
        try:
            if self.timeout_seconds:
                return await asyncio.wait_for(self._save_batch(files), timeout=self.timeout_seconds)
            return await self._save_batch(files)
        except asyncio.TimeoutError as exc:
            logger.error(f"Upload of {len(files)} file(s) timed out after {self.timeout_seconds}s")
            raise UploadTimeoutError("Upload timed out") from exc
        finally:
            for upload in files:
                await upload.close()

    async def _save_batch(self, files: Sequence[IncomingFile]) -> List[FileRef]:
        if not files:
            raise ValidationError("No files uploaded")

        for upload in files:
            content_type = media_type(upload.content_type)
            if content_type not in self.allowed_types:
                logger.info(f"Rejected upload batch: {upload.filename!r} has type {content_type!r}")
                raise ValidationError(
                    "Invalid file type. Only PDF and Word documents are allowed.",
                    details={"file": upload.filename, "type": content_type},
                )

        written: List[Path] = []
        refs: List[FileRef] = []
        try:
            for upload in files:
                refs.append(await self._store_one(upload, written))
        except BaseException:
            self._discard(written)
            raise

        logger.info(f"Stored {len(refs)} uploaded file(s)")
        return refs

    def _stored_name(self, original: str) -> str:
        safe = sanitize_filename(original)
        if len(safe) > _MAX_NAME_LENGTH:
            stem, dot, suffix = safe.rpartition(".")
            if dot and len(suffix) < 16:
                safe = f"{stem[: _MAX_NAME_LENGTH - len(suffix) - 1]}.{suffix}"
            else:
                safe = safe[:_MAX_NAME_LENGTH]
        return f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}-{safe}"

    async def _store_one(self, upload: IncomingFile, written: List[Path]) -> FileRef:
        original = upload.filename or "document"
        stored_name = self._stored_name(original)
        destination = self.upload_dir / stored_name

        try:
            buffer = destination.open("xb")
        except FileExistsError as exc:
            raise StorageFailure("Stored filename collision; upload aborted", details={"file": original}) from exc
        except OSError as exc:
            logger.error(f"Cannot create {destination}: {exc}")
            raise StorageFailure("Failed to store uploaded file", details={"file": original}) from exc
        written.append(destination)

        size = 0
        try:
            with buffer:
                while chunk := await upload.read(self.chunk_size):
                    size += len(chunk)
                    if size > self.max_file_bytes:
                        raise ValidationError(
                            f"File too large. Maximum size is {describe_size(self.max_file_bytes)}.",
                            details={"file": original, "limit": self.max_file_bytes},
                        )
                    buffer.write(chunk)
        except OSError as exc:
            logger.error(f"Failed writing {destination}: {exc}")
            raise StorageFailure("Failed to store uploaded file", details={"file": original}) from exc

        return FileRef(
            name=original,
            size=size,
            type=media_type(upload.content_type),
            path=f"{PUBLIC_PREFIX}/{stored_name}",
        )

    def _discard(self, paths: Iterable[Path]) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.error(f"Could not remove partial upload {path}: {exc}")
        logger.info("Discarded partially stored upload batch")

    def resolve(self, filename: str) -> Path:
        """
        Map a stored filename to its path on disk.

        Raises:
            StoredFileNotFoundError: Unknown name, the sentinel, or a name
                pointing outside the upload directory
        """
        if not filename or filename == self.sentinel:
            raise StoredFileNotFoundError(filename)
        base = self.upload_dir.resolve()
        candidate = (base / filename).resolve()
        if candidate.parent != base or not candidate.is_file():
            raise StoredFileNotFoundError(filename)
        return candidate

    def clear_all_files(self) -> ClearFilesResult:
        """
        Delete every stored file except the sentinel.

        Deletion is best effort: a failure on one entry is recorded and the
        remaining entries are still processed.

        Raises:
            StorageFailure: If the upload directory cannot be listed
        """
        try:
            entries = sorted(self.upload_dir.iterdir())
        except OSError as exc:
            logger.error(f"Cannot list {self.upload_dir}: {exc}")
            raise StorageFailure("Failed to list upload directory") from exc

        result = ClearFilesResult()
        for entry in entries:
            if entry.name == self.sentinel:
                continue
            try:
                entry.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.error(f"Failed to delete {entry.name}: {exc}")
                result.failures.append(FileDeletionFailure(name=entry.name, error=str(exc)))
                continue
            result.deleted += 1

        self.ensure_sentinel()
        logger.warning(f"Cleared {result.deleted} stored file(s), {len(result.failures)} failure(s)")
        return result
