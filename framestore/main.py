"""
Main application entry point for framestore.

This module wires together:
- Configuration from the environment
- SQLite persistence and migrations
- Content-addressable media cache
- Storage provider registry and sync engine
- Google OAuth token management and the Photos Picker
- HTTP API server
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import httpx

from .config import AppConfig, load_config
from .data import (
    SQLiteCachedFileRepository,
    SQLiteConnection,
    SQLitePhotoCatalog,
    SQLitePickerSessionRepository,
    SQLiteProviderRepository,
    run_migrations,
)
from .exceptions import handle_unexpected_error
from .security import ConfigCipher
from .storage import (
    ContentCache,
    GoogleOAuthFlow,
    LibraryImporter,
    OAuthTokenManager,
    PickerApiClient,
    PickerSessionService,
    ProviderRegistry,
    SyncEngine,
)
from .api import StorageServer, create_app

HTTP_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


class FramestoreApp:
    """Main application class for framestore."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.connection: Optional[SQLiteConnection] = None
        self.http_client: Optional[httpx.AsyncClient] = None
        self.provider_repository: Optional[SQLiteProviderRepository] = None
        self.catalog: Optional[SQLitePhotoCatalog] = None
        self.token_manager: Optional[OAuthTokenManager] = None
        self.oauth_flow: Optional[GoogleOAuthFlow] = None
        self.cache: Optional[ContentCache] = None
        self.registry: Optional[ProviderRegistry] = None
        self.sync_engine: Optional[SyncEngine] = None
        self.picker_service: Optional[PickerSessionService] = None
        self.server: Optional[StorageServer] = None
        self.running = False

        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[logging.StreamHandler(sys.stdout)]
        )
        self.logger = logging.getLogger(__name__)

    def _configure_logging(self) -> None:
        """Apply the configured level and optional log file."""
        root = logging.getLogger()
        root.setLevel(self.config.log_level.value)
        if not self.config.log_file:
            return
        try:
            log_path = Path(self.config.log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(str(log_path))
            handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
            root.addHandler(handler)
        except (OSError, PermissionError) as e:
            # File logging not available, use stdout only
            self.logger.warning(f"Could not open log file {self.config.log_file}: {e}")

    async def initialize(self, config: Optional[AppConfig] = None):
        """Initialize all application components.

        Args:
            config: Configuration to use; loaded from the environment when omitted
        """
        try:
            self.logger.info("Initializing framestore...")

            self.config = config or load_config()
            self._configure_logging()
            self.logger.info("Configuration loaded successfully")

            await self._initialize_database()
            await self._initialize_storage()
            self._initialize_server()

            self.logger.info("All components initialized successfully")

        except Exception as e:
            error = handle_unexpected_error(e)
            self.logger.error(f"Failed to initialize application: {error.to_log_string()}")
            raise

    async def _initialize_database(self):
        """Open the database and bring its schema up to date."""
        db_path = self.config.storage.db_path
        self.logger.info(f"Initializing database at {db_path}...")
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.connection = SQLiteConnection(db_path, pool_size=5)
        await self.connection.connect()
        await run_migrations(self.connection)

        self.logger.info("Database initialized successfully")

    async def _initialize_storage(self):
        """Build the cache, providers, sync engine and picker service."""
        config = self.config
        cipher = ConfigCipher(config.encryption_key)

        self.provider_repository = SQLiteProviderRepository(self.connection, cipher)
        self.catalog = SQLitePhotoCatalog(self.connection)
        picker_repository = SQLitePickerSessionRepository(self.connection)

        self.cache = ContentCache(
            SQLiteCachedFileRepository(self.connection),
            config.cache.cache_dir,
            max_size_bytes=config.cache.max_size_bytes,
        )
        report = await self.cache.reconcile()
        if report.total:
            self.logger.info(
                f"Cache reconciled: {report.partial_files_removed} partial, "
                f"{report.orphan_files_removed} orphaned, "
                f"{report.missing_records_removed} missing"
            )

        self.http_client = httpx.AsyncClient(timeout=HTTP_TIMEOUT, follow_redirects=True)
        self.token_manager = OAuthTokenManager(self.provider_repository, config.google, self.http_client)

        self.registry = ProviderRegistry(
            self.provider_repository,
            config.storage.local_path,
            token_manager=self.token_manager,
            cache=self.cache,
            catalog=self.catalog,
            http_client=self.http_client,
        )
        self.oauth_flow = GoogleOAuthFlow(self.token_manager, self.registry)

        importer = LibraryImporter(self.catalog, config.storage.library_path)
        self.sync_engine = SyncEngine(
            self.registry,
            self.provider_repository,
            self.catalog,
            self.cache,
            importer,
        )

        self.picker_service = PickerSessionService(
            PickerApiClient(self.http_client, self.token_manager),
            picker_repository,
            self.registry,
            self.sync_engine,
            max_dimension=config.storage.max_import_dimension,
        )

        default_provider = await self.registry.get_or_create_default_local_provider()
        self.logger.info(f"Default local provider ready (id {default_provider.provider_id})")

        if not config.google.is_configured:
            self.logger.warning(
                "GOOGLE_PHOTOS_CLIENT_ID and GOOGLE_PHOTOS_CLIENT_SECRET not set. "
                "Google Photos providers need their own client credentials."
            )

    def _initialize_server(self):
        app = create_app(
            self.config.server,
            registry=self.registry,
            provider_repository=self.provider_repository,
            sync_engine=self.sync_engine,
            cache=self.cache,
            token_manager=self.token_manager,
            oauth_flow=self.oauth_flow,
            picker_service=self.picker_service,
            google_settings=self.config.google,
        )
        self.server = StorageServer(self.config.server, app)

    async def start(self):
        """Start the API server and run until stopped."""
        if not self.config or not self.server:
            raise RuntimeError("Application not initialized. Call initialize() first.")

        self.running = True
        loop = asyncio.get_event_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._signal_handler, sig)
            except NotImplementedError:
                # Signal handlers are unavailable on some platforms
                pass

        await self.server.start_server()
        self.logger.info("framestore is now online")

        while self.running and self.server.is_running:
            await asyncio.sleep(1)

        await self.stop()

    async def stop(self):
        """Stop the application gracefully, shutting down all services."""
        if self.connection is None:
            return
        self.logger.info("Initiating graceful shutdown...")
        self.running = False

        if self.server:
            await self.server.stop_server()

        if self.registry:
            await self.registry.clear_cache()

        if self.http_client:
            await self.http_client.aclose()
            self.http_client = None

        await self.connection.disconnect()
        self.connection = None

        self.logger.info("framestore stopped cleanly")

    def _signal_handler(self, signum):
        """Handle shutdown signals (SIGINT, SIGTERM)."""
        signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
        self.logger.info(f"Received {signal_name}, initiating graceful shutdown...")
        self.running = False


async def main():
    """Main entry point for framestore."""
    app = FramestoreApp()
    try:
        await app.initialize()
        await app.start()
    except KeyboardInterrupt:
        await app.stop()
    except Exception as e:
        logging.error(f"Fatal error: {e}", exc_info=True)
        await app.stop()
        sys.exit(1)


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
