"""
Data access layer for framestore.

Public Interface:
    - Repository interfaces for providers, cache bookkeeping, picker
      sessions and the photo catalog
    - SQLite connection pool and implementations
    - Migration utilities

Example Usage:
    ```python
    from framestore.data import SQLiteConnection, SQLitePhotoCatalog, run_migrations

    connection = SQLiteConnection("data/framestore.db")
    await connection.connect()
    await run_migrations(connection)

    catalog = SQLitePhotoCatalog(connection)
    known_ids = await catalog.get_provider_file_ids(provider_id)
    ```
"""

from .base import (
    DatabaseConnection,
    ProviderRepository,
    CachedFileRepository,
    PickerSessionRepository,
    PhotoCatalog,
)
from .sqlite import (
    SQLiteConnection,
    SQLiteProviderRepository,
    SQLiteCachedFileRepository,
    SQLitePickerSessionRepository,
    SQLitePhotoCatalog,
)
from .migrations import MigrationRunner, run_migrations

__all__ = [
    "DatabaseConnection",
    "ProviderRepository",
    "CachedFileRepository",
    "PickerSessionRepository",
    "PhotoCatalog",
    "SQLiteConnection",
    "SQLiteProviderRepository",
    "SQLiteCachedFileRepository",
    "SQLitePickerSessionRepository",
    "SQLitePhotoCatalog",
    "MigrationRunner",
    "run_migrations",
]
