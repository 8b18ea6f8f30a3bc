"""
Sync request, progress and result models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .base import to_iso


class SyncOutcome(Enum):
    """Terminal status of a sync run."""
    SUCCESS = "success"
    PARTIAL = "partial"  # Some files failed
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SyncRequest:
    """Options for one sync run."""
    folder_id: Optional[str] = None
    skip_existing: bool = True
    remove_deleted: bool = True
    max_files: int = 0  # 0 means unlimited
    recursive: bool = True


@dataclass
class SyncResult:
    """Result of a sync run."""
    provider_id: int
    provider_name: str = ""
    status: SyncOutcome = SyncOutcome.SUCCESS
    error_message: Optional[str] = None
    files_added: int = 0
    files_updated: int = 0
    files_removed: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    total_files_found: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status in (SyncOutcome.SUCCESS, SyncOutcome.PARTIAL)

    @property
    def total_files_processed(self) -> int:
        return self.files_added + self.files_updated + self.files_skipped + self.files_failed

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "provider_name": self.provider_name,
            "status": self.status.value,
            "success": self.success,
            "error_message": self.error_message,
            "files_added": self.files_added,
            "files_updated": self.files_updated,
            "files_removed": self.files_removed,
            "files_skipped": self.files_skipped,
            "files_failed": self.files_failed,
            "total_files_processed": self.total_files_processed,
            "total_files_found": self.total_files_found,
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time),
            "duration_seconds": self.duration_seconds,
            "errors": list(self.errors),
        }


@dataclass
class SyncStatus:
    """Live progress of a provider's sync."""
    provider_id: int
    is_in_progress: bool = False
    progress_percent: int = 0
    current_operation: Optional[str] = None
    files_processed: int = 0
    total_files: int = 0
    start_time: Optional[datetime] = None
    last_sync_result: Optional[SyncResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "is_in_progress": self.is_in_progress,
            "progress_percent": self.progress_percent,
            "current_operation": self.current_operation,
            "files_processed": self.files_processed,
            "total_files": self.total_files,
            "start_time": to_iso(self.start_time),
            "last_sync_result": self.last_sync_result.to_dict() if self.last_sync_result else None,
        }


@dataclass
class ScanResult:
    """Dry-run diff of a provider against the catalog."""
    provider_id: int
    success: bool = True
    error_message: Optional[str] = None
    total_files_found: int = 0
    new_files_count: int = 0
    existing_files_count: int = 0
    new_files_total_size: int = 0
    sample_new_files: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "success": self.success,
            "error_message": self.error_message,
            "total_files_found": self.total_files_found,
            "new_files_count": self.new_files_count,
            "existing_files_count": self.existing_files_count,
            "new_files_total_size": self.new_files_total_size,
            "sample_new_files": list(self.sample_new_files),
        }
