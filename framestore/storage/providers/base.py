"""
Base class for storage providers.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from ...models.files import StorageFileInfo, UploadResult
from ...models.provider import ProviderKind
from ..streams import ByteStream


class StorageProvider(ABC):
    """
    Uniform interface over a source of media files.

    initialize() must be called before any other operation. File ids are
    provider-native: a relative path for Local, a media item id or base URL
    for Google Photos.
    """

    kind: ProviderKind
    supports_upload: bool = False
    supports_watch: bool = False

    def __init__(self):
        self.provider_id: Optional[int] = None
        self.display_name: str = ""
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def direct_path(self, file_id: str) -> Optional[Path]:
        """
        Local path the file can be served from without caching.

        Returns:
            The path for providers whose files already live on local disk, else None
        """
        return None

    @abstractmethod
    async def initialize(self, provider_id: int, display_name: str, configuration: Optional[str]) -> None:
        """
        Bind the provider to its row and parse its configuration.

        Calling it again re-applies the configuration.

        Args:
            provider_id: Row id of the provider
            display_name: Human-readable name
            configuration: JSON configuration blob, may be empty

        Raises:
            ProviderConfigurationError: If the configuration is invalid
        """
        pass

    @abstractmethod
    async def list_files(self, folder_id: Optional[str] = None) -> List[StorageFileInfo]:
        """
        List media files.

        Args:
            folder_id: Folder to list, or None for the whole provider

        Returns:
            File entries in enumeration order
        """
        pass

    @abstractmethod
    async def download_bytes(self, file_id: str) -> bytes:
        """Read a whole file into memory."""
        pass

    @abstractmethod
    async def open_stream(self, file_id: str) -> ByteStream:
        """
        Open a file for streaming.

        Returns:
            A stream the caller must close
        """
        pass

    @abstractmethod
    async def upload(self, file_name: str, stream: ByteStream, content_type: str) -> UploadResult:
        """Store a new file."""
        pass

    @abstractmethod
    async def delete(self, file_id: str) -> bool:
        """
        Delete a file.

        Returns:
            True if a file was deleted, False if it did not exist
        """
        pass

    @abstractmethod
    async def exists(self, file_id: str) -> bool:
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """Check that the provider is reachable and usable."""
        pass
