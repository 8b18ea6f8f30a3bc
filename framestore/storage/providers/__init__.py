"""
Storage provider implementations.
"""

from .base import StorageProvider
from .local import LocalStorageProvider
from .google_photos import GooglePhotosProvider, build_download_url, classify_http_error

__all__ = [
    "StorageProvider",
    "LocalStorageProvider",
    "GooglePhotosProvider",
    "build_download_url",
    "classify_http_error",
]
