"""
Configuration validation for framestore.
"""

from typing import List
from .settings import AppConfig


class ValidationError(Exception):
    """Raised when the loaded configuration cannot be used."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("Invalid configuration: " + "; ".join(errors))


class ConfigValidator:
    """Validates configuration settings."""

    @staticmethod
    def validate_config(config: AppConfig) -> List[str]:
        """Validate the entire application configuration."""
        errors = []
        errors.extend(ConfigValidator._validate_paths(config))
        errors.extend(ConfigValidator._validate_cache(config))
        errors.extend(ConfigValidator._validate_google(config))
        errors.extend(ConfigValidator._validate_server(config))
        return errors

    @staticmethod
    def _validate_paths(config: AppConfig) -> List[str]:
        errors = []
        if not config.storage.db_path:
            errors.append("FRAMESTORE_DB_PATH must not be empty")
        if not config.storage.local_path:
            errors.append("FRAMESTORE_LOCAL_PATH must not be empty")
        if not config.storage.library_path:
            errors.append("FRAMESTORE_LIBRARY_PATH must not be empty")
        if config.storage.max_import_dimension <= 0:
            errors.append("FRAMESTORE_MAX_IMPORT_DIMENSION must be positive")
        return errors

    @staticmethod
    def _validate_cache(config: AppConfig) -> List[str]:
        errors = []
        if not config.cache.cache_dir:
            errors.append("FRAMESTORE_CACHE_DIR must not be empty")
        if config.cache.max_size_bytes <= 0:
            errors.append("FRAMESTORE_CACHE_MAX_BYTES must be positive")
        return errors

    @staticmethod
    def _validate_google(config: AppConfig) -> List[str]:
        """Client id and secret are optional, but only as a pair."""
        errors = []
        if bool(config.google.client_id) != bool(config.google.client_secret):
            errors.append(
                "GOOGLE_PHOTOS_CLIENT_ID and GOOGLE_PHOTOS_CLIENT_SECRET must be set together"
            )
        if config.google.client_id and not config.google.redirect_uri.startswith(("http://", "https://")):
            errors.append("GOOGLE_PHOTOS_REDIRECT_URI must be an http(s) URL")
        return errors

    @staticmethod
    def _validate_server(config: AppConfig) -> List[str]:
        errors = []
        if not 1 <= config.server.port <= 65535:
            errors.append(f"FRAMESTORE_PORT out of range: {config.server.port}")
        return errors
