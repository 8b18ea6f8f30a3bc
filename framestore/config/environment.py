"""
Environment variable handling for framestore configuration.
"""

import os
from typing import List
from dotenv import load_dotenv
from .settings import (
    AppConfig, StorageSettings, CacheSettings, GoogleOAuthSettings,
    ServerSettings, LogLevel, DEFAULT_CACHE_MAX_BYTES, DEFAULT_MAX_IMPORT_DIMENSION
)


class EnvironmentLoader:
    """Loads configuration from environment variables."""

    @staticmethod
    def load_config(load_env_file: bool = True) -> AppConfig:
        """Load configuration from environment variables."""
        if load_env_file:
            # .env values win over the shell so a checked-out deployment is reproducible
            load_dotenv(override=True)

        storage = StorageSettings(
            db_path=os.getenv('FRAMESTORE_DB_PATH', 'data/framestore.db'),
            local_path=os.getenv('FRAMESTORE_LOCAL_PATH', 'data/photos'),
            library_path=os.getenv('FRAMESTORE_LIBRARY_PATH', 'data/library'),
            max_import_dimension=int(
                os.getenv('FRAMESTORE_MAX_IMPORT_DIMENSION', str(DEFAULT_MAX_IMPORT_DIMENSION))
            ),
        )

        cache = CacheSettings(
            cache_dir=os.getenv('FRAMESTORE_CACHE_DIR', 'data/.cache'),
            max_size_bytes=int(os.getenv('FRAMESTORE_CACHE_MAX_BYTES', str(DEFAULT_CACHE_MAX_BYTES))),
        )

        google = GoogleOAuthSettings(
            client_id=os.getenv('GOOGLE_PHOTOS_CLIENT_ID', ''),
            client_secret=os.getenv('GOOGLE_PHOTOS_CLIENT_SECRET', ''),
            redirect_uri=os.getenv(
                'GOOGLE_PHOTOS_REDIRECT_URI',
                'http://localhost:8080/api/storage/google-photos/oauth/callback',
            ),
            frontend_url=os.getenv('FRAMESTORE_FRONTEND_URL', ''),
        )

        server = ServerSettings(
            host=os.getenv('FRAMESTORE_HOST', '0.0.0.0'),
            port=int(os.getenv('FRAMESTORE_PORT', '8080')),
            cors_origins=EnvironmentLoader._parse_list(os.getenv('FRAMESTORE_CORS_ORIGINS', '')),
        )

        log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
        log_level = LogLevel.INFO
        try:
            log_level = LogLevel(log_level_str)
        except ValueError:
            pass  # Use default

        return AppConfig(
            storage=storage,
            cache=cache,
            google=google,
            server=server,
            log_level=log_level,
            log_file=os.getenv('FRAMESTORE_LOG_FILE') or None,
            encryption_key=os.getenv('FRAMESTORE_CONFIG_ENCRYPTION_KEY') or None,
        )

    @staticmethod
    def _parse_list(value: str) -> List[str]:
        """Parse a comma-separated list from an environment variable."""
        if not value:
            return []
        return [item.strip() for item in value.split(',') if item.strip()]
