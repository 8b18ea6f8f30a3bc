"""
Google Photos storage provider.

Google Photos only exposes media the user explicitly picks (see the picker
module), so this provider is read-only: its listing is the set of items
already imported from it, and bytes are served from the cache or fetched
from a media item's base URL with an OAuth bearer token.
"""

import logging
from typing import List, Optional

import httpx

from ...config.settings import GOOGLE_PHOTOS_PICKER_SCOPE
from ...data.base import PhotoCatalog
from ...exceptions import (
    AuthorizationError,
    ProviderConfigurationError,
    ReauthorizationRequiredError,
    StorageError,
    StorageFileNotFoundError,
    TransientProviderError,
    UnsupportedOperationError,
)
from ...models.files import StorageFileInfo, UploadResult
from ...models.provider import GooglePhotosConfig, ProviderKind
from ..streams import ByteStream, HttpByteStream
from .base import StorageProvider

logger = logging.getLogger(__name__)


def build_download_url(base_url: str, is_video: bool = False, max_width: int = 0, max_height: int = 0) -> str:
    """
    Append the download suffix a Google Photos base URL needs.

    Videos get '=dv', images with both bounds positive get '=w{W}-h{H}',
    anything else downloads the original with '=d'.
    """
    if is_video:
        return f"{base_url}=dv"
    if max_width > 0 and max_height > 0:
        return f"{base_url}=w{max_width}-h{max_height}"
    return f"{base_url}=d"


def classify_http_error(error: httpx.HTTPError, action: str) -> StorageError:
    """Map an httpx failure onto the storage error taxonomy."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in (401, 403):
            return ReauthorizationRequiredError(
                f"{action} was not authorized ({status}); reconnect Google Photos",
                context={"status": status},
                cause=error,
            )
        if status == 404:
            return StorageFileNotFoundError(f"{action}: not found", context={"status": status}, cause=error)
        if status == 429 or status >= 500:
            return TransientProviderError(f"{action} failed with {status}", context={"status": status}, cause=error)
        return StorageError(f"{action} failed with {status}", context={"status": status}, cause=error)
    return TransientProviderError(f"{action} failed: {error}", cause=error)


class GooglePhotosProvider(StorageProvider):
    """Read-only provider over media picked from Google Photos."""

    kind = ProviderKind.GOOGLE_PHOTOS
    supports_upload = False
    supports_watch = False

    def __init__(self, token_manager, cache, catalog: PhotoCatalog, http_client: httpx.AsyncClient):
        super().__init__()
        self.token_manager = token_manager
        self.cache = cache
        self.catalog = catalog
        self.http_client = http_client
        self.config = GooglePhotosConfig()

    async def initialize(self, provider_id: int, display_name: str, configuration: Optional[str]) -> None:
        try:
            config = GooglePhotosConfig.from_json(configuration)
        except (ValueError, TypeError) as e:
            raise ProviderConfigurationError(
                f"Invalid configuration for Google Photos provider '{display_name}': {e}",
                context={"provider_id": provider_id},
                cause=e,
            )
        self.provider_id = provider_id
        self.display_name = display_name
        self.config = config
        self._initialized = True

    async def list_files(self, folder_id: Optional[str] = None) -> List[StorageFileInfo]:
        photos = await self.catalog.list_by_provider(self.provider_id)
        return [
            StorageFileInfo(
                file_id=photo.provider_file_id,
                file_name=photo.original_filename,
                file_size=photo.file_size,
                media_type=photo.media_type,
                content_type=photo.content_type,
                created_date=photo.date_taken,
                content_hash=photo.content_hash,
                width=photo.width,
                height=photo.height,
            )
            for photo in photos
        ]

    async def open_stream(self, file_id: str) -> ByteStream:
        record = await self.cache.get_by_provider_file_id(self.provider_id, file_id)
        if record is not None:
            return self.cache.open_record(record)

        if file_id.startswith(("https://", "http://")):
            return await self.open_remote(file_id)

        raise StorageFileNotFoundError(
            f"Google Photos item {file_id} is not cached and has no download URL",
            context={"provider_id": self.provider_id, "file_id": file_id},
        )

    async def open_remote(
        self,
        base_url: str,
        is_video: bool = False,
        max_width: int = 0,
        max_height: int = 0,
    ) -> HttpByteStream:
        """
        Stream a media item from its base URL.

        Raises:
            ReauthorizationRequiredError: If Google rejects the token
            TransientProviderError: On network errors, 429 or 5xx
        """
        token = await self.token_manager.get_valid_access_token(self.provider_id)
        url = build_download_url(base_url, is_video, max_width, max_height)
        try:
            return await HttpByteStream.open(
                self.http_client, url, headers={"Authorization": f"Bearer {token}"}
            )
        except httpx.HTTPError as e:
            raise classify_http_error(e, "Media download")

    async def download_bytes(self, file_id: str) -> bytes:
        async with await self.open_stream(file_id) as stream:
            return await stream.read_all()

    async def upload(self, file_name: str, stream: ByteStream, content_type: str) -> UploadResult:
        raise UnsupportedOperationError(
            "Google Photos does not support uploads; use the picker to import photos",
            context={"provider_id": self.provider_id},
        )

    async def delete(self, file_id: str) -> bool:
        raise UnsupportedOperationError(
            "Google Photos does not support deleting files",
            context={"provider_id": self.provider_id},
        )

    async def exists(self, file_id: str) -> bool:
        if await self.catalog.get_by_provider_file(self.provider_id, file_id) is not None:
            return True
        return await self.cache.contains_provider_file(self.provider_id, file_id)

    async def test_connection(self) -> bool:
        try:
            _, config = await self.token_manager.load(self.provider_id)
        except StorageError as e:
            logger.warning(f"Google Photos provider {self.provider_id} test failed: {e.message}")
            return False

        client_id, client_secret = self.token_manager.client_credentials(config)
        if not client_id or not client_secret:
            logger.warning(f"Google Photos provider {self.provider_id} has no client credentials")
            return False
        if not config.refresh_token:
            logger.warning(f"Google Photos provider {self.provider_id} is not authorized")
            return False
        if config.granted_scopes and not config.has_scope(GOOGLE_PHOTOS_PICKER_SCOPE):
            logger.warning(f"Google Photos provider {self.provider_id} lacks the picker scope")
            return False

        try:
            await self.token_manager.get_valid_access_token(self.provider_id)
        except (AuthorizationError, TransientProviderError) as e:
            logger.warning(f"Google Photos provider {self.provider_id} test failed: {e.to_log_string()}")
            return False
        return True
