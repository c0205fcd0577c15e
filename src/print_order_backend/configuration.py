"""
Layered configuration for the print order backend.

Resolution order (later wins):
    1. Structured defaults declared by the dataclasses below
    2. An optional YAML file named by ``PRINT_ORDER_CONFIG``
    3. Environment variables (``.env`` is loaded first via python-dotenv)

The merged result is validated against the structured schema, so a
malformed value (e.g. ``PORT=abc``) fails at startup instead of at first use.
"""

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from omegaconf import OmegaConf

ALLOWED_UPLOAD_TYPES = [
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
]

# Placeholder seed credential. Insecure: override with ADMIN_USERNAME/ADMIN_PASSWORD.
DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "xerox123"

CONFIG_FILE_ENV = "PRINT_ORDER_CONFIG"

# environment variable -> dotted config key
ENV_OVERRIDES: Dict[str, str] = {
    "HOST": "server.host",
    "PORT": "server.port",
    "STORAGE_BACKEND": "storage.backend",
    "DATA_DIR": "storage.data_dir",
    "UPLOAD_DIR": "storage.upload_dir",
    "MAX_UPLOAD_BYTES": "uploads.max_file_bytes",
    "UPLOAD_TIMEOUT_SECONDS": "uploads.timeout_seconds",
    "ADMIN_USERNAME": "admin.username",
    "ADMIN_PASSWORD": "admin.password",
    "SESSION_TTL_SECONDS": "auth.session_ttl_seconds",
    "ENFORCE_ADMIN_TOKEN": "auth.enforce_admin_token",
    "LOG_LEVEL": "logging.level",
}


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3001


@dataclass
class StorageConfig:
    backend: str = "json"
    data_dir: str = "data"
    upload_dir: str = "uploads"
    sentinel: str = ".gitkeep"
    lock_timeout_seconds: float = 10.0


@dataclass
class UploadConfig:
    max_file_bytes: int = 10 * 1024 * 1024
    allowed_types: List[str] = field(default_factory=lambda: list(ALLOWED_UPLOAD_TYPES))
    timeout_seconds: float = 60.0
    chunk_size: int = 1024 * 1024


@dataclass
class AdminConfig:
    username: str = DEFAULT_ADMIN_USERNAME
    password: str = DEFAULT_ADMIN_PASSWORD


@dataclass
class AuthConfig:
    session_ttl_seconds: int = 3600
    enforce_admin_token: bool = False
    login_attempts_per_minute: int = 10


@dataclass
class CorsConfig:
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class Settings:
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    uploads: UploadConfig = field(default_factory=UploadConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    cors: CorsConfig = field(default_factory=CorsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def data_dir(self) -> Path:
        return Path(self.storage.data_dir)

    @property
    def upload_dir(self) -> Path:
        return Path(self.storage.upload_dir)


def _env_overrides(environ: Dict[str, str]) -> Dict[str, Any]:
    # Raw strings; the structured schema converts them to the declared types
    nested: Dict[str, Any] = {}
    for name, dotted in ENV_OVERRIDES.items():
        value = environ.get(name)
        if not value:
            continue
        section, key = dotted.split(".", 1)
        nested.setdefault(section, {})[key] = value
    return nested


def load_settings(overrides: Optional[Dict[str, Any]] = None, environ: Optional[Dict[str, str]] = None) -> Settings:
    """
    Build a validated ``Settings`` object.

    Args:
        overrides: Nested mapping applied last (used by tests and embedding code)
        environ: Environment mapping; defaults to ``os.environ``

    Raises:
        omegaconf.errors.ValidationError: If a value does not match the schema
    """
    if environ is None:
        load_dotenv()
        environ = dict(os.environ)

    base = OmegaConf.structured(Settings)
    layers = [base]

    config_file = environ.get(CONFIG_FILE_ENV)
    if config_file:
        layers.append(OmegaConf.load(config_file))

    layers.append(OmegaConf.create(_env_overrides(environ)))
    if overrides:
        layers.append(OmegaConf.create(overrides))

    merged = OmegaConf.merge(*layers)
    return OmegaConf.to_object(merged)  # type: ignore[return-value]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.logging.level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
