"""
Content-addressable cache models.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, TYPE_CHECKING

from .base import to_iso

if TYPE_CHECKING:
    from ..storage.streams import ByteStream


@dataclass
class CachedFileRecord:
    """Bookkeeping row for one distinct blob in the cache."""
    file_hash: str
    original_url: str
    provider_id: int
    local_path: str
    file_size: int
    content_type: str
    cached_date: datetime
    last_accessed_date: datetime
    access_count: int = 1
    provider_file_id: Optional[str] = None
    picker_session_id: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_hash": self.file_hash,
            "original_url": self.original_url,
            "provider_id": self.provider_id,
            "provider_file_id": self.provider_file_id,
            "picker_session_id": self.picker_session_id,
            "file_size": self.file_size,
            "content_type": self.content_type,
            "cached_date": to_iso(self.cached_date),
            "last_accessed_date": to_iso(self.last_accessed_date),
            "access_count": self.access_count,
        }


@dataclass
class CacheFileRequest:
    """
    Bytes to store in the cache.

    The hash is computed while the stream is written to disk. When
    expected_hash is given the stored bytes must match it.
    """
    original_url: str
    provider_id: int
    stream: "ByteStream"
    content_type: str = "application/octet-stream"
    provider_file_id: Optional[str] = None
    picker_session_id: Optional[str] = None
    expected_hash: Optional[str] = None


@dataclass
class CacheStatus:
    """Aggregate cache usage."""
    total_size_bytes: int
    file_count: int
    max_size_bytes: int

    @property
    def usage_percent(self) -> float:
        if self.max_size_bytes <= 0:
            return 0.0
        return round(self.total_size_bytes * 100.0 / self.max_size_bytes, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_size_bytes": self.total_size_bytes,
            "file_count": self.file_count,
            "max_size_bytes": self.max_size_bytes,
            "usage_percent": self.usage_percent,
        }


@dataclass
class ReconcileReport:
    """What a startup reconciliation pass cleaned up."""
    partial_files_removed: int = 0
    orphan_files_removed: int = 0
    missing_records_removed: int = 0

    @property
    def total(self) -> int:
        return self.partial_files_removed + self.orphan_files_removed + self.missing_records_removed
