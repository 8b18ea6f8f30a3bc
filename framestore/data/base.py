"""
Abstract repository interfaces for the storage data layer.

Concrete implementations should inherit from these abstract base classes.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from ..models.cache import CachedFileRecord
from ..models.catalog import PhotoRecord
from ..models.picker import PickerSession
from ..models.provider import ProviderConfig, ProviderKind


class DatabaseConnection(ABC):
    """Abstract database connection interface."""

    @abstractmethod
    async def connect(self) -> None:
        """Establish database connection."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close database connection."""
        pass

    @abstractmethod
    async def execute(self, query: str, params: Optional[tuple] = None) -> Any:
        """Execute a database query and commit."""
        pass

    @abstractmethod
    async def fetch_one(self, query: str, params: Optional[tuple] = None) -> Optional[Dict[str, Any]]:
        """Fetch a single row from the database."""
        pass

    @abstractmethod
    async def fetch_all(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Fetch all rows from the database."""
        pass


class ProviderRepository(ABC):
    """Abstract repository for storage provider rows."""

    @abstractmethod
    async def get(self, provider_id: int) -> Optional[ProviderConfig]:
        """
        Retrieve a provider by id.

        Args:
            provider_id: The provider's id

        Returns:
            The provider if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_all(self) -> List[ProviderConfig]:
        """List every provider, enabled or not."""
        pass

    @abstractmethod
    async def list_by_kind(self, kind: ProviderKind) -> List[ProviderConfig]:
        """List providers of one kind."""
        pass

    @abstractmethod
    async def add(self, config: ProviderConfig) -> int:
        """
        Insert a provider row.

        Args:
            config: Provider to insert; its id is ignored

        Returns:
            The id assigned to the new row
        """
        pass

    @abstractmethod
    async def update(self, config: ProviderConfig) -> None:
        """Persist name, enabled flag and configuration blob."""
        pass

    @abstractmethod
    async def update_last_sync(self, provider_id: int, when: datetime) -> None:
        """Record when the provider last finished a sync."""
        pass

    @abstractmethod
    async def delete(self, provider_id: int) -> bool:
        """
        Remove a provider row.

        Returns:
            True if a row was deleted
        """
        pass


class CachedFileRepository(ABC):
    """Abstract repository for cache bookkeeping."""

    @abstractmethod
    async def get_by_hash(self, file_hash: str) -> Optional[CachedFileRecord]:
        pass

    @abstractmethod
    async def get_by_provider_file_id(
        self, provider_id: int, provider_file_id: str
    ) -> Optional[CachedFileRecord]:
        pass

    @abstractmethod
    async def insert(self, record: CachedFileRecord) -> CachedFileRecord:
        """
        Insert a new record.

        Returns:
            The record with its id assigned
        """
        pass

    @abstractmethod
    async def update(self, record: CachedFileRecord) -> None:
        """Persist bookkeeping fields of an existing record."""
        pass

    @abstractmethod
    async def touch(self, file_hash: str, when: datetime) -> None:
        """Set last access time and increment the access count."""
        pass

    @abstractmethod
    async def delete(self, file_hash: str) -> bool:
        pass

    @abstractmethod
    async def list_all(self) -> List[CachedFileRecord]:
        pass

    @abstractmethod
    async def list_by_provider(self, provider_id: int) -> List[CachedFileRecord]:
        pass

    @abstractmethod
    async def list_for_eviction(self) -> List[CachedFileRecord]:
        """
        List every record in eviction order.

        Returns:
            Records ordered by last access, then access count, then cache date, oldest first
        """
        pass

    @abstractmethod
    async def list_paged(self, offset: int, limit: int) -> List[CachedFileRecord]:
        """List records, most recently accessed first."""
        pass

    @abstractmethod
    async def total_size(self) -> int:
        pass

    @abstractmethod
    async def count(self) -> int:
        pass


class PickerSessionRepository(ABC):
    """Abstract repository for picker sessions."""

    @abstractmethod
    async def save(self, session: PickerSession) -> None:
        """Insert or update a session."""
        pass

    @abstractmethod
    async def get(self, session_id: str) -> Optional[PickerSession]:
        pass

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        pass

    @abstractmethod
    async def list_for_provider(self, provider_id: int) -> List[PickerSession]:
        pass


class PhotoCatalog(ABC):
    """The photo catalog, as far as storage needs it."""

    @abstractmethod
    async def add_photo(self, photo: PhotoRecord) -> int:
        """
        Persist a catalog entry.

        Args:
            photo: Entry to add; its id is ignored

        Returns:
            The id assigned to the entry
        """
        pass

    @abstractmethod
    async def get_by_provider_file(
        self, provider_id: int, provider_file_id: str
    ) -> Optional[PhotoRecord]:
        pass

    @abstractmethod
    async def get_provider_file_ids(self, provider_id: int) -> Set[str]:
        """Provider-native ids of every photo imported from a provider."""
        pass

    @abstractmethod
    async def list_by_provider(self, provider_id: int) -> List[PhotoRecord]:
        pass

    @abstractmethod
    async def update_file_size(self, photo_id: int, file_size: int) -> None:
        pass

    @abstractmethod
    async def remove_photo(self, photo_id: int) -> bool:
        pass

    @abstractmethod
    async def count(self) -> int:
        pass
