"""
Configuration settings models for framestore.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

DEFAULT_CACHE_MAX_BYTES = 5 * 1024 * 1024 * 1024  # 5 GiB
DEFAULT_MAX_IMPORT_DIMENSION = 4096
GOOGLE_PHOTOS_PICKER_SCOPE = "https://www.googleapis.com/auth/photospicker.mediaitems.readonly"


class LogLevel(Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class StorageSettings:
    """Local storage and database locations."""
    db_path: str = "data/framestore.db"
    local_path: str = "data/photos"
    library_path: str = "data/library"
    max_import_dimension: int = DEFAULT_MAX_IMPORT_DIMENSION


@dataclass
class CacheSettings:
    """Content-addressable cache configuration."""
    cache_dir: str = "data/.cache"
    max_size_bytes: int = DEFAULT_CACHE_MAX_BYTES


@dataclass
class GoogleOAuthSettings:
    """Google OAuth client configuration shared by Google Photos providers."""
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = "http://localhost:8080/api/storage/google-photos/oauth/callback"
    frontend_url: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass
class ServerSettings:
    """HTTP API server configuration."""
    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: list = field(default_factory=list)


@dataclass
class AppConfig:
    """Top-level application configuration."""
    storage: StorageSettings = field(default_factory=StorageSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    google: GoogleOAuthSettings = field(default_factory=GoogleOAuthSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    log_level: LogLevel = LogLevel.INFO
    log_file: Optional[str] = None
    encryption_key: Optional[str] = None
