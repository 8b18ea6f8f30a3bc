"""
HTTP API for storage providers, sync, cache and Google Photos.
"""

from .router import create_storage_router
from .server import StorageServer, create_app

__all__ = [
    "create_storage_router",
    "create_app",
    "StorageServer",
]
