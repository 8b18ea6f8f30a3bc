"""
File listing and upload models shared by all providers.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .base import to_iso


class MediaType(Enum):
    """Kind of media a file holds."""
    PHOTO = "photo"
    VIDEO = "video"


@dataclass
class StorageFileInfo:
    """A file (or folder) as reported by a provider listing."""
    file_id: str
    file_name: str
    file_size: int = 0
    media_type: MediaType = MediaType.PHOTO
    full_path: Optional[str] = None
    content_type: Optional[str] = None
    created_date: Optional[datetime] = None
    modified_date: Optional[datetime] = None
    content_hash: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    is_folder: bool = False
    parent_folder_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_id": self.file_id,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "media_type": self.media_type.value,
            "content_type": self.content_type,
            "created_date": to_iso(self.created_date),
            "modified_date": to_iso(self.modified_date),
            "width": self.width,
            "height": self.height,
            "is_folder": self.is_folder,
        }


@dataclass
class ScannedFile:
    """A single filesystem entry discovered during enumeration."""
    full_path: str
    relative_path: str
    file_name: str
    extension: str
    file_size: int
    content_type: str
    media_type: MediaType
    created_time: datetime
    modified_time: datetime
    is_hidden: bool = False


@dataclass
class UploadResult:
    """Outcome of a provider upload."""
    success: bool
    error_message: Optional[str] = None
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    file_path: Optional[str] = None
    file_size: int = 0
    content_type: Optional[str] = None

    @classmethod
    def failed(cls, message: str) -> "UploadResult":
        return cls(success=False, error_message=message)
