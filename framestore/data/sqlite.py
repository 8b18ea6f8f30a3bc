"""
SQLite implementation of data repositories using aiosqlite.

This module provides connection pooling and async repositories for
providers, cache bookkeeping, picker sessions and the photo catalog.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import aiosqlite

from .base import (
    DatabaseConnection,
    ProviderRepository,
    CachedFileRepository,
    PickerSessionRepository,
    PhotoCatalog,
)
from ..models.base import from_iso, to_iso
from ..models.cache import CachedFileRecord
from ..models.catalog import PhotoRecord
from ..models.files import MediaType
from ..models.picker import PickerPollingConfig, PickerSession
from ..models.provider import ProviderConfig, ProviderKind
from ..security import ConfigCipher


class SQLiteConnection(DatabaseConnection):
    """SQLite database connection with connection pooling."""

    def __init__(self, db_path: str, pool_size: int = 5):
        self.db_path = db_path
        self.pool_size = pool_size
        self._connections: List[aiosqlite.Connection] = []
        self._available: asyncio.Queue = asyncio.Queue(maxsize=pool_size)
        self._lock = asyncio.Lock()
        self._initialized = False

    async def connect(self) -> None:
        """Establish database connection pool."""
        async with self._lock:
            if self._initialized:
                return

            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            for _ in range(self.pool_size):
                conn = await aiosqlite.connect(self.db_path)
                conn.row_factory = aiosqlite.Row
                # WAL lets readers proceed while a sync is writing
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA foreign_keys=ON")
                await conn.execute("PRAGMA busy_timeout=5000")
                self._connections.append(conn)
                await self._available.put(conn)

            self._initialized = True

    async def disconnect(self) -> None:
        """Close all database connections."""
        async with self._lock:
            if not self._initialized:
                return

            for conn in self._connections:
                await conn.close()

            self._connections.clear()
            self._available = asyncio.Queue(maxsize=self.pool_size)
            self._initialized = False

    @asynccontextmanager
    async def _get_connection(self):
        """Get a connection from the pool."""
        if not self._initialized:
            await self.connect()

        conn = await self._available.get()
        try:
            yield conn
        finally:
            await self._available.put(conn)

    async def execute(self, query: str, params: Optional[tuple] = None) -> Any:
        """Execute a database query."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params or ())
            await conn.commit()
            return cursor

    async def execute_script(self, script: str) -> None:
        """Execute several statements at once."""
        async with self._get_connection() as conn:
            await conn.executescript(script)
            await conn.commit()

    async def fetch_one(self, query: str, params: Optional[tuple] = None) -> Optional[Dict[str, Any]]:
        """Fetch a single row from the database."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params or ())
            row = await cursor.fetchone()
            if row:
                return dict(row)
            return None

    async def fetch_all(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Fetch all rows from the database."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params or ())
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]


class SQLiteProviderRepository(ProviderRepository):
    """SQLite implementation of the provider repository."""

    def __init__(self, connection: SQLiteConnection, cipher: Optional[ConfigCipher] = None):
        self.connection = connection
        self.cipher = cipher or ConfigCipher(None)

    async def get(self, provider_id: int) -> Optional[ProviderConfig]:
        row = await self.connection.fetch_one(
            "SELECT * FROM storage_providers WHERE id = ?", (provider_id,)
        )
        return self._row_to_config(row) if row else None

    async def list_all(self) -> List[ProviderConfig]:
        rows = await self.connection.fetch_all("SELECT * FROM storage_providers ORDER BY id")
        return [self._row_to_config(row) for row in rows]

    async def list_by_kind(self, kind: ProviderKind) -> List[ProviderConfig]:
        rows = await self.connection.fetch_all(
            "SELECT * FROM storage_providers WHERE kind = ? ORDER BY id", (kind.value,)
        )
        return [self._row_to_config(row) for row in rows]

    async def add(self, config: ProviderConfig) -> int:
        cursor = await self.connection.execute(
            """
            INSERT INTO storage_providers (kind, name, is_enabled, configuration, last_sync_date)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                config.kind.value,
                config.name,
                1 if config.is_enabled else 0,
                self.cipher.encrypt(config.configuration),
                to_iso(config.last_sync_date),
            ),
        )
        config.id = cursor.lastrowid
        return config.id

    async def update(self, config: ProviderConfig) -> None:
        await self.connection.execute(
            """
            UPDATE storage_providers
            SET name = ?, is_enabled = ?, configuration = ?
            WHERE id = ?
            """,
            (
                config.name,
                1 if config.is_enabled else 0,
                self.cipher.encrypt(config.configuration),
                config.id,
            ),
        )

    async def update_last_sync(self, provider_id: int, when: datetime) -> None:
        await self.connection.execute(
            "UPDATE storage_providers SET last_sync_date = ? WHERE id = ?",
            (to_iso(when), provider_id),
        )

    async def delete(self, provider_id: int) -> bool:
        cursor = await self.connection.execute("DELETE FROM storage_providers WHERE id = ?", (provider_id,))
        return cursor.rowcount > 0

    def _row_to_config(self, row: Dict[str, Any]) -> ProviderConfig:
        return ProviderConfig(
            id=row["id"],
            kind=ProviderKind(row["kind"]),
            name=row["name"],
            is_enabled=bool(row["is_enabled"]),
            configuration=self.cipher.decrypt(row["configuration"]),
            last_sync_date=from_iso(row["last_sync_date"]),
        )


class SQLiteCachedFileRepository(CachedFileRepository):
    """SQLite implementation of cache bookkeeping."""

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def get_by_hash(self, file_hash: str) -> Optional[CachedFileRecord]:
        row = await self.connection.fetch_one(
            "SELECT * FROM cached_files WHERE file_hash = ?", (file_hash,)
        )
        return self._row_to_record(row) if row else None

    async def get_by_provider_file_id(
        self, provider_id: int, provider_file_id: str
    ) -> Optional[CachedFileRecord]:
        row = await self.connection.fetch_one(
            """
            SELECT * FROM cached_files
            WHERE provider_id = ? AND provider_file_id = ?
            ORDER BY last_accessed_date DESC
            LIMIT 1
            """,
            (provider_id, provider_file_id),
        )
        return self._row_to_record(row) if row else None

    async def insert(self, record: CachedFileRecord) -> CachedFileRecord:
        cursor = await self.connection.execute(
            """
            INSERT INTO cached_files (
                file_hash, original_url, provider_id, provider_file_id, picker_session_id,
                local_path, file_size, content_type, cached_date, last_accessed_date, access_count
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.file_hash,
                record.original_url,
                record.provider_id,
                record.provider_file_id,
                record.picker_session_id,
                record.local_path,
                record.file_size,
                record.content_type,
                to_iso(record.cached_date),
                to_iso(record.last_accessed_date),
                record.access_count,
            ),
        )
        record.id = cursor.lastrowid
        return record

    async def update(self, record: CachedFileRecord) -> None:
        await self.connection.execute(
            """
            UPDATE cached_files
            SET provider_file_id = ?, picker_session_id = ?, local_path = ?, file_size = ?,
                content_type = ?, last_accessed_date = ?, access_count = ?
            WHERE file_hash = ?
            """,
            (
                record.provider_file_id,
                record.picker_session_id,
                record.local_path,
                record.file_size,
                record.content_type,
                to_iso(record.last_accessed_date),
                record.access_count,
                record.file_hash,
            ),
        )

    async def touch(self, file_hash: str, when: datetime) -> None:
        await self.connection.execute(
            """
            UPDATE cached_files
            SET last_accessed_date = ?, access_count = access_count + 1
            WHERE file_hash = ?
            """,
            (to_iso(when), file_hash),
        )

    async def delete(self, file_hash: str) -> bool:
        cursor = await self.connection.execute(
            "DELETE FROM cached_files WHERE file_hash = ?", (file_hash,)
        )
        return cursor.rowcount > 0

    async def list_all(self) -> List[CachedFileRecord]:
        rows = await self.connection.fetch_all("SELECT * FROM cached_files")
        return [self._row_to_record(row) for row in rows]

    async def list_by_provider(self, provider_id: int) -> List[CachedFileRecord]:
        rows = await self.connection.fetch_all(
            "SELECT * FROM cached_files WHERE provider_id = ?", (provider_id,)
        )
        return [self._row_to_record(row) for row in rows]

    async def list_for_eviction(self) -> List[CachedFileRecord]:
        rows = await self.connection.fetch_all(
            """
            SELECT * FROM cached_files
            ORDER BY last_accessed_date ASC, access_count ASC, cached_date ASC, id ASC
            """
        )
        return [self._row_to_record(row) for row in rows]

    async def list_paged(self, offset: int, limit: int) -> List[CachedFileRecord]:
        rows = await self.connection.fetch_all(
            """
            SELECT * FROM cached_files
            ORDER BY last_accessed_date DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (limit, offset),
        )
        return [self._row_to_record(row) for row in rows]

    async def total_size(self) -> int:
        row = await self.connection.fetch_one(
            "SELECT COALESCE(SUM(file_size), 0) AS total FROM cached_files"
        )
        return int(row["total"]) if row else 0

    async def count(self) -> int:
        row = await self.connection.fetch_one("SELECT COUNT(*) AS n FROM cached_files")
        return int(row["n"]) if row else 0

    def _row_to_record(self, row: Dict[str, Any]) -> CachedFileRecord:
        return CachedFileRecord(
            id=row["id"],
            file_hash=row["file_hash"],
            original_url=row["original_url"],
            provider_id=row["provider_id"],
            provider_file_id=row["provider_file_id"],
            picker_session_id=row["picker_session_id"],
            local_path=row["local_path"],
            file_size=row["file_size"],
            content_type=row["content_type"],
            cached_date=from_iso(row["cached_date"]),
            last_accessed_date=from_iso(row["last_accessed_date"]),
            access_count=row["access_count"],
        )


class SQLitePickerSessionRepository(PickerSessionRepository):
    """SQLite implementation of picker session storage."""

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def save(self, session: PickerSession) -> None:
        await self.connection.execute(
            """
            INSERT INTO picker_sessions (
                session_id, provider_id, picker_uri, media_items_set,
                poll_interval, timeout_in, created_at, expires_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(session_id) DO UPDATE SET
                picker_uri = excluded.picker_uri,
                media_items_set = excluded.media_items_set,
                poll_interval = excluded.poll_interval,
                timeout_in = excluded.timeout_in,
                expires_at = excluded.expires_at
            """,
            (
                session.session_id,
                session.provider_id,
                session.picker_uri,
                1 if session.media_items_set else 0,
                session.polling_config.poll_interval,
                session.polling_config.timeout_in,
                to_iso(session.created_at),
                to_iso(session.expires_at),
            ),
        )

    async def get(self, session_id: str) -> Optional[PickerSession]:
        row = await self.connection.fetch_one(
            "SELECT * FROM picker_sessions WHERE session_id = ?", (session_id,)
        )
        return self._row_to_session(row) if row else None

    async def delete(self, session_id: str) -> bool:
        cursor = await self.connection.execute(
            "DELETE FROM picker_sessions WHERE session_id = ?", (session_id,)
        )
        return cursor.rowcount > 0

    async def list_for_provider(self, provider_id: int) -> List[PickerSession]:
        rows = await self.connection.fetch_all(
            "SELECT * FROM picker_sessions WHERE provider_id = ? ORDER BY created_at DESC",
            (provider_id,),
        )
        return [self._row_to_session(row) for row in rows]

    def _row_to_session(self, row: Dict[str, Any]) -> PickerSession:
        return PickerSession(
            session_id=row["session_id"],
            picker_uri=row["picker_uri"],
            provider_id=row["provider_id"],
            created_at=from_iso(row["created_at"]),
            media_items_set=bool(row["media_items_set"]),
            expires_at=from_iso(row["expires_at"]),
            polling_config=PickerPollingConfig(
                poll_interval=row["poll_interval"],
                timeout_in=row["timeout_in"],
            ),
        )


class SQLitePhotoCatalog(PhotoCatalog):
    """SQLite implementation of the photo catalog."""

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def add_photo(self, photo: PhotoRecord) -> int:
        cursor = await self.connection.execute(
            """
            INSERT INTO photos (
                filename, original_filename, file_path, file_size, width, height,
                media_type, content_type, content_hash, date_taken, date_added,
                provider_id, provider_file_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                photo.filename,
                photo.original_filename,
                photo.file_path,
                photo.file_size,
                photo.width,
                photo.height,
                photo.media_type.value,
                photo.content_type,
                photo.content_hash,
                to_iso(photo.date_taken),
                to_iso(photo.date_added),
                photo.provider_id,
                photo.provider_file_id,
            ),
        )
        photo.id = cursor.lastrowid
        return photo.id

    async def get_by_provider_file(
        self, provider_id: int, provider_file_id: str
    ) -> Optional[PhotoRecord]:
        row = await self.connection.fetch_one(
            "SELECT * FROM photos WHERE provider_id = ? AND provider_file_id = ?",
            (provider_id, provider_file_id),
        )
        return self._row_to_photo(row) if row else None

    async def get_provider_file_ids(self, provider_id: int) -> Set[str]:
        rows = await self.connection.fetch_all(
            "SELECT provider_file_id FROM photos WHERE provider_id = ?", (provider_id,)
        )
        return {row["provider_file_id"] for row in rows}

    async def list_by_provider(self, provider_id: int) -> List[PhotoRecord]:
        rows = await self.connection.fetch_all(
            "SELECT * FROM photos WHERE provider_id = ? ORDER BY id", (provider_id,)
        )
        return [self._row_to_photo(row) for row in rows]

    async def update_file_size(self, photo_id: int, file_size: int) -> None:
        await self.connection.execute(
            "UPDATE photos SET file_size = ? WHERE id = ?", (file_size, photo_id)
        )

    async def remove_photo(self, photo_id: int) -> bool:
        cursor = await self.connection.execute("DELETE FROM photos WHERE id = ?", (photo_id,))
        return cursor.rowcount > 0

    async def count(self) -> int:
        row = await self.connection.fetch_one("SELECT COUNT(*) AS n FROM photos")
        return int(row["n"]) if row else 0

    def _row_to_photo(self, row: Dict[str, Any]) -> PhotoRecord:
        return PhotoRecord(
            id=row["id"],
            filename=row["filename"],
            original_filename=row["original_filename"],
            file_path=row["file_path"],
            file_size=row["file_size"],
            width=row["width"],
            height=row["height"],
            media_type=MediaType(row["media_type"]),
            content_type=row["content_type"],
            content_hash=row["content_hash"],
            date_taken=from_iso(row["date_taken"]),
            date_added=from_iso(row["date_added"]),
            provider_id=row["provider_id"],
            provider_file_id=row["provider_file_id"],
        )
