"""
Storage integration: providers, registry, cache, sync, OAuth and picker.
"""

from .streams import ByteStream, FileByteStream, HttpByteStream, MemoryByteStream
from .providers import StorageProvider, LocalStorageProvider, GooglePhotosProvider, build_download_url
from .registry import ProviderRegistry
from .cache import ContentCache
from .oauth import OAuthTokenManager, GoogleOAuthFlow
from .importer import ImageImporter, LibraryImporter
from .sync import SyncEngine
from .picker import PickerApiClient, PickerSessionService

__all__ = [
    "ByteStream",
    "FileByteStream",
    "HttpByteStream",
    "MemoryByteStream",
    "StorageProvider",
    "LocalStorageProvider",
    "GooglePhotosProvider",
    "build_download_url",
    "ProviderRegistry",
    "ContentCache",
    "OAuthTokenManager",
    "GoogleOAuthFlow",
    "ImageImporter",
    "LibraryImporter",
    "SyncEngine",
    "PickerApiClient",
    "PickerSessionService",
]
