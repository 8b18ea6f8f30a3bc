"""
Catalog entry and import request models.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from .base import to_iso
from .files import MediaType


@dataclass
class PhotoRecord:
    """A catalog entry, limited to the fields storage needs."""
    filename: str
    original_filename: str
    file_path: str
    file_size: int
    media_type: MediaType
    provider_id: int
    provider_file_id: str
    date_added: datetime
    content_type: Optional[str] = None
    content_hash: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    date_taken: Optional[datetime] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "original_filename": self.original_filename,
            "file_path": self.file_path,
            "file_size": self.file_size,
            "media_type": self.media_type.value,
            "content_type": self.content_type,
            "content_hash": self.content_hash,
            "width": self.width,
            "height": self.height,
            "date_taken": to_iso(self.date_taken),
            "date_added": to_iso(self.date_added),
            "provider_id": self.provider_id,
            "provider_file_id": self.provider_file_id,
        }


@dataclass
class ImportRequest:
    """
    A file ready to be catalogued.

    source_path points at bytes already on local disk, either the provider's
    own file (direct-serve) or a cache blob. When copy_to_library is set the
    importer copies the bytes into the library before recording them.
    """
    provider_id: int
    provider_file_id: str
    file_name: str
    source_path: Path
    file_size: int
    content_type: str
    media_type: MediaType
    content_hash: Optional[str] = None
    copy_to_library: bool = False
    date_taken: Optional[datetime] = None
    width: Optional[int] = None
    height: Optional[int] = None
