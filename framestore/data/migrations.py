"""
Schema migrations for the framestore database.
"""

import logging
from typing import List, Tuple

from .sqlite import SQLiteConnection

logger = logging.getLogger(__name__)

MIGRATIONS: List[Tuple[int, str, str]] = [
    (
        1,
        "initial storage schema",
        """
        CREATE TABLE IF NOT EXISTS storage_providers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            kind TEXT NOT NULL,
            name TEXT NOT NULL,
            is_enabled INTEGER NOT NULL DEFAULT 1,
            configuration TEXT,
            last_sync_date TEXT
        );

        CREATE TABLE IF NOT EXISTS cached_files (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            file_hash TEXT NOT NULL UNIQUE,
            original_url TEXT NOT NULL,
            provider_id INTEGER NOT NULL,
            provider_file_id TEXT,
            picker_session_id TEXT,
            local_path TEXT NOT NULL,
            file_size INTEGER NOT NULL,
            content_type TEXT NOT NULL,
            cached_date TEXT NOT NULL,
            last_accessed_date TEXT NOT NULL,
            access_count INTEGER NOT NULL DEFAULT 1
        );
        CREATE INDEX IF NOT EXISTS idx_cached_files_provider_file
            ON cached_files (provider_id, provider_file_id);
        CREATE INDEX IF NOT EXISTS idx_cached_files_last_accessed
            ON cached_files (last_accessed_date);

        CREATE TABLE IF NOT EXISTS picker_sessions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL UNIQUE,
            provider_id INTEGER NOT NULL,
            picker_uri TEXT NOT NULL,
            media_items_set INTEGER NOT NULL DEFAULT 0,
            poll_interval TEXT,
            timeout_in TEXT,
            created_at TEXT NOT NULL,
            expires_at TEXT
        );

        CREATE TABLE IF NOT EXISTS photos (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            filename TEXT NOT NULL,
            original_filename TEXT NOT NULL,
            file_path TEXT NOT NULL,
            file_size INTEGER NOT NULL,
            width INTEGER,
            height INTEGER,
            media_type TEXT NOT NULL,
            content_type TEXT,
            content_hash TEXT,
            date_taken TEXT,
            date_added TEXT NOT NULL,
            provider_id INTEGER NOT NULL,
            provider_file_id TEXT NOT NULL
        );
        CREATE UNIQUE INDEX IF NOT EXISTS idx_photos_provider_file
            ON photos (provider_id, provider_file_id);
        """,
    ),
]


class MigrationRunner:
    """Applies pending schema migrations in version order."""

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def current_version(self) -> int:
        await self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                description TEXT NOT NULL,
                applied_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        row = await self.connection.fetch_one(
            "SELECT COALESCE(MAX(version), 0) AS version FROM schema_version"
        )
        return int(row["version"]) if row else 0

    async def run(self) -> int:
        """
        Apply every migration newer than the stored version.

        Returns:
            Number of migrations applied
        """
        current = await self.current_version()
        applied = 0
        for version, description, script in MIGRATIONS:
            if version <= current:
                continue
            logger.info(f"Applying migration {version}: {description}")
            await self.connection.execute_script(script)
            await self.connection.execute(
                "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                (version, description),
            )
            applied += 1
        if applied:
            logger.info(f"Database schema at version {MIGRATIONS[-1][0]}")
        return applied


async def run_migrations(connection: SQLiteConnection) -> int:
    """Bring the database schema up to date."""
    return await MigrationRunner(connection).run()
