"""
Configuration for framestore.
"""

from .settings import (
    AppConfig,
    StorageSettings,
    CacheSettings,
    GoogleOAuthSettings,
    ServerSettings,
    LogLevel,
    GOOGLE_PHOTOS_PICKER_SCOPE,
)
from .environment import EnvironmentLoader
from .validation import ConfigValidator, ValidationError


def load_config(load_env_file: bool = True) -> AppConfig:
    """Load configuration from the environment and validate it."""
    config = EnvironmentLoader.load_config(load_env_file=load_env_file)
    errors = ConfigValidator.validate_config(config)
    if errors:
        raise ValidationError(errors)
    return config


__all__ = [
    "AppConfig",
    "StorageSettings",
    "CacheSettings",
    "GoogleOAuthSettings",
    "ServerSettings",
    "LogLevel",
    "GOOGLE_PHOTOS_PICKER_SCOPE",
    "EnvironmentLoader",
    "ConfigValidator",
    "ValidationError",
    "load_config",
]
