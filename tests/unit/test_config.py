"""
Tests for configuration loading, validation and blob encryption.
"""

import json

import pytest
from cryptography.fernet import Fernet

from framestore.config import (
    AppConfig,
    ConfigValidator,
    EnvironmentLoader,
    GoogleOAuthSettings,
    LogLevel,
    ValidationError,
    load_config,
)
from framestore.data import SQLiteProviderRepository
from framestore.exceptions import ProviderConfigurationError
from framestore.models import GooglePhotosConfig, ProviderConfig, ProviderKind
from framestore.security import ConfigCipher

ENV_KEYS = [
    "FRAMESTORE_DB_PATH",
    "FRAMESTORE_LOCAL_PATH",
    "FRAMESTORE_LIBRARY_PATH",
    "FRAMESTORE_MAX_IMPORT_DIMENSION",
    "FRAMESTORE_CACHE_DIR",
    "FRAMESTORE_CACHE_MAX_BYTES",
    "GOOGLE_PHOTOS_CLIENT_ID",
    "GOOGLE_PHOTOS_CLIENT_SECRET",
    "GOOGLE_PHOTOS_REDIRECT_URI",
    "FRAMESTORE_FRONTEND_URL",
    "FRAMESTORE_HOST",
    "FRAMESTORE_PORT",
    "FRAMESTORE_CORS_ORIGINS",
    "LOG_LEVEL",
    "FRAMESTORE_LOG_FILE",
    "FRAMESTORE_CONFIG_ENCRYPTION_KEY",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestEnvironmentLoader:
    """Tests for reading settings from the environment."""

    def test_defaults(self, clean_env):
        config = EnvironmentLoader.load_config(load_env_file=False)

        assert config.storage.db_path == "data/framestore.db"
        assert config.cache.max_size_bytes == 5 * 1024 * 1024 * 1024
        assert config.server.port == 8080
        assert config.server.cors_origins == []
        assert config.log_level == LogLevel.INFO
        assert config.encryption_key is None
        assert not config.google.is_configured

    def test_overrides(self, clean_env):
        clean_env.setenv("FRAMESTORE_CACHE_MAX_BYTES", "1048576")
        clean_env.setenv("FRAMESTORE_CORS_ORIGINS", "http://a.test, http://b.test,,")
        clean_env.setenv("GOOGLE_PHOTOS_CLIENT_ID", "cid")
        clean_env.setenv("GOOGLE_PHOTOS_CLIENT_SECRET", "secret")
        clean_env.setenv("LOG_LEVEL", "debug")
        clean_env.setenv("FRAMESTORE_PORT", "9000")

        config = EnvironmentLoader.load_config(load_env_file=False)

        assert config.cache.max_size_bytes == 1048576
        assert config.server.cors_origins == ["http://a.test", "http://b.test"]
        assert config.google.is_configured
        assert config.log_level == LogLevel.DEBUG
        assert config.server.port == 9000

    def test_unknown_log_level_falls_back(self, clean_env):
        clean_env.setenv("LOG_LEVEL", "chatty")
        assert EnvironmentLoader.load_config(load_env_file=False).log_level == LogLevel.INFO


class TestConfigValidator:
    """Tests for configuration validation."""

    def test_default_config_is_valid(self):
        assert ConfigValidator.validate_config(AppConfig()) == []

    def test_half_configured_google_client(self):
        config = AppConfig(google=GoogleOAuthSettings(client_id="cid"))
        errors = ConfigValidator.validate_config(config)
        assert any("must be set together" in e for e in errors)

    def test_bad_values(self):
        config = AppConfig()
        config.cache.max_size_bytes = 0
        config.server.port = 70000
        config.google = GoogleOAuthSettings(client_id="cid", client_secret="s", redirect_uri="ftp://x")

        errors = ConfigValidator.validate_config(config)

        assert len(errors) == 3

    def test_load_config_raises(self, clean_env):
        clean_env.setenv("FRAMESTORE_CACHE_MAX_BYTES", "-1")
        with pytest.raises(ValidationError) as exc_info:
            load_config(load_env_file=False)
        assert exc_info.value.errors == ["FRAMESTORE_CACHE_MAX_BYTES must be positive"]


class TestConfigCipher:
    """Tests for encrypting provider configuration blobs."""

    def test_round_trip_with_passphrase(self):
        cipher = ConfigCipher("correct horse battery staple")
        stored = cipher.encrypt('{"refresh_token": "rt"}')
        assert stored.startswith("enc:")
        assert "rt" not in stored
        assert cipher.decrypt(stored) == '{"refresh_token": "rt"}'

    def test_round_trip_with_fernet_key(self):
        cipher = ConfigCipher(Fernet.generate_key().decode())
        assert cipher.decrypt(cipher.encrypt("blob")) == "blob"

    def test_without_key_stores_plaintext(self):
        cipher = ConfigCipher(None)
        assert not cipher.enabled
        assert cipher.encrypt("blob") == "blob"
        assert cipher.decrypt("blob") == "blob"
        with pytest.raises(ProviderConfigurationError):
            cipher.decrypt(ConfigCipher("key").encrypt("blob"))

    def test_wrong_key(self):
        stored = ConfigCipher("one key").encrypt("blob")
        with pytest.raises(ProviderConfigurationError):
            ConfigCipher("another key").decrypt(stored)

    def test_legacy_plaintext_passes_through(self):
        assert ConfigCipher("key").decrypt('{"base_path": "/photos"}') == '{"base_path": "/photos"}'

    @pytest.mark.asyncio
    async def test_repository_encrypts_at_rest(self, db):
        repo = SQLiteProviderRepository(db, ConfigCipher("frame key"))
        config = GooglePhotosConfig(client_secret="s3cret", refresh_token="rt")
        provider_id = await repo.add(ProviderConfig(
            id=0, kind=ProviderKind.GOOGLE_PHOTOS, name="Google Photos", configuration=config.to_json(),
        ))

        row = await db.fetch_one("SELECT configuration FROM storage_providers WHERE id = ?", (provider_id,))
        assert row["configuration"].startswith("enc:")
        assert "s3cret" not in row["configuration"]

        loaded = await repo.get(provider_id)
        assert GooglePhotosConfig.from_json(loaded.configuration).refresh_token == "rt"

        with pytest.raises(ProviderConfigurationError):
            await SQLiteProviderRepository(db, ConfigCipher("wrong key")).get(provider_id)


class TestGooglePhotosConfig:
    """Tests for the Google Photos configuration blob."""

    def test_blobs_with_retired_cache_keys_still_load(self):
        config = GooglePhotosConfig.from_json(json.dumps({
            "refresh_token": "rt",
            "granted_scopes": "scope-a scope-b",
            "enable_local_cache": False,
            "max_cache_size_bytes": 1024,
        }))

        assert config.refresh_token == "rt"
        assert config.granted_scopes == ["scope-a", "scope-b"]
        assert "enable_local_cache" not in config.to_dict()
        assert "max_cache_size_bytes" not in config.to_dict()
