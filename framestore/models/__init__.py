"""
Data models for framestore.
"""

from .base import utc_now, to_iso, from_iso
from .provider import ProviderKind, ProviderConfig, LocalStorageConfig, GooglePhotosConfig
from .files import MediaType, StorageFileInfo, ScannedFile, UploadResult
from .cache import CachedFileRecord, CacheFileRequest, CacheStatus, ReconcileReport
from .picker import (
    PickerSession,
    PickerPollingConfig,
    PickedMediaItem,
    PickerImportResult,
    PollOutcome,
    parse_duration,
)
from .sync import SyncRequest, SyncOutcome, SyncStatus, SyncResult, ScanResult
from .catalog import PhotoRecord, ImportRequest

__all__ = [
    "utc_now",
    "to_iso",
    "from_iso",
    "ProviderKind",
    "ProviderConfig",
    "LocalStorageConfig",
    "GooglePhotosConfig",
    "MediaType",
    "StorageFileInfo",
    "ScannedFile",
    "UploadResult",
    "CachedFileRecord",
    "CacheFileRequest",
    "CacheStatus",
    "ReconcileReport",
    "PickerSession",
    "PickerPollingConfig",
    "PickedMediaItem",
    "PickerImportResult",
    "PollOutcome",
    "parse_duration",
    "SyncRequest",
    "SyncOutcome",
    "SyncStatus",
    "SyncResult",
    "ScanResult",
    "PhotoRecord",
    "ImportRequest",
]
