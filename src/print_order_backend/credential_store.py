"""
Admin credential persistence.

A single ``{username, password}`` document is seeded on first boot and only
read afterwards. The seed value comes from configuration; the built-in
default is a placeholder and is reported as insecure when used.
"""

from __future__ import annotations

import json
import logging
import secrets
from pathlib import Path
from threading import Lock
from typing import Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .configuration import DEFAULT_ADMIN_PASSWORD
from .errors import StorageFailure
from .utils import atomic_write_json

logger = logging.getLogger(__name__)


class AdminCredential(BaseModel):
    username: str
    password: str


class CredentialStore:
    def __init__(self, path: Path, seed: AdminCredential) -> None:
        self.path = Path(path)
        self._seed = seed
        self._cached: Optional[AdminCredential] = None
        self._lock = Lock()

    def ensure_seeded(self) -> bool:
        """
        Write the seed credential if no record exists yet.

        Returns:
            True if a record was created, False if one was already present
        """
        with self._lock:
            if self.path.exists():
                return False
            try:
                atomic_write_json(self.path, self._seed.model_dump())
            except OSError as exc:
                raise StorageFailure(f"Failed to seed admin credentials: {exc}") from exc
            self._cached = self._seed
        if self._seed.password == DEFAULT_ADMIN_PASSWORD:
            logger.warning("Seeded admin account with the default placeholder password; set ADMIN_PASSWORD")
        else:
            logger.info(f"Seeded admin account {self._seed.username!r}")
        return True

    def load(self) -> AdminCredential:
        with self._lock:
            if self._cached is None:
                try:
                    raw = json.loads(self.path.read_text(encoding="utf-8"))
                    self._cached = AdminCredential.model_validate(raw)
                except (OSError, ValueError, PydanticValidationError) as exc:
                    logger.error(f"Failed to read admin credentials from {self.path}: {exc}")
                    raise StorageFailure("Failed to read admin credentials") from exc
            return self._cached

    def verify(self, username: str, password: str) -> bool:
        """Exact, case-sensitive match on both fields."""
        stored = self.load()
        username_ok = secrets.compare_digest(username.encode("utf-8"), stored.username.encode("utf-8"))
        password_ok = secrets.compare_digest(password.encode("utf-8"), stored.password.encode("utf-8"))
        return username_ok and password_ok
