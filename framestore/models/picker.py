"""
Google Photos Picker session models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .base import from_iso, to_iso

DEFAULT_POLL_INTERVAL_SECONDS = 3.0
DEFAULT_SESSION_TIMEOUT_SECONDS = 3600.0


def parse_duration(value: Optional[str], default: float) -> float:
    """
    Parse a protobuf duration string such as "3s" or "1.5s".

    Args:
        value: Duration string from the API
        default: Seconds to use when the value is missing or malformed

    Returns:
        Duration in seconds
    """
    if not value or not isinstance(value, str) or not value.endswith("s"):
        return default
    try:
        seconds = float(value[:-1])
    except ValueError:
        return default
    if seconds < 0:
        return default
    return seconds


class PollOutcome(Enum):
    """Terminal outcome of waiting for a picker selection."""
    RESOLVED = "resolved"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


@dataclass
class PickerPollingConfig:
    """Polling hints returned by the picker API."""
    poll_interval: Optional[str] = None
    timeout_in: Optional[str] = None

    @property
    def poll_interval_seconds(self) -> float:
        return parse_duration(self.poll_interval, DEFAULT_POLL_INTERVAL_SECONDS)

    @property
    def timeout_seconds(self) -> float:
        return parse_duration(self.timeout_in, DEFAULT_SESSION_TIMEOUT_SECONDS)


@dataclass
class PickerSession:
    """One picker interaction, mirrored from the remote service."""
    session_id: str
    picker_uri: str
    provider_id: int
    created_at: datetime
    media_items_set: bool = False
    expires_at: Optional[datetime] = None
    polling_config: PickerPollingConfig = field(default_factory=PickerPollingConfig)

    def apply_remote(self, data: Dict[str, Any]) -> None:
        """Copy remote state onto this session. The resolved flag only ever comes from here."""
        self.media_items_set = bool(data.get("mediaItemsSet", False))
        if data.get("pickerUri"):
            self.picker_uri = data["pickerUri"]
        if data.get("expireTime"):
            self.expires_at = from_iso(data["expireTime"])
        polling = data.get("pollingConfig")
        if polling:
            self.polling_config = PickerPollingConfig(
                poll_interval=polling.get("pollInterval"),
                timeout_in=polling.get("timeoutIn"),
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "picker_uri": self.picker_uri,
            "provider_id": self.provider_id,
            "media_items_set": self.media_items_set,
            "created_at": to_iso(self.created_at),
            "expires_at": to_iso(self.expires_at),
            "poll_interval": self.polling_config.poll_interval,
            "timeout_in": self.polling_config.timeout_in,
        }


@dataclass
class PickedMediaItem:
    """A media item the user selected in the picker."""
    id: str
    type: str
    base_url: str
    mime_type: str
    filename: str
    create_time: Optional[datetime] = None
    width: int = 0
    height: int = 0
    video_processing_status: Optional[str] = None

    @property
    def is_video(self) -> bool:
        return self.type == "VIDEO"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PickedMediaItem":
        media_file = data.get("mediaFile") or {}
        metadata = media_file.get("mediaFileMetadata") or {}
        video = metadata.get("videoMetadata") or {}
        return cls(
            id=data.get("id", ""),
            type=data.get("type", "TYPE_UNSPECIFIED"),
            base_url=media_file.get("baseUrl", ""),
            mime_type=media_file.get("mimeType", "application/octet-stream"),
            filename=media_file.get("filename", ""),
            create_time=from_iso(data.get("createTime")),
            width=int(metadata.get("width") or 0),
            height=int(metadata.get("height") or 0),
            video_processing_status=video.get("processingStatus"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "mime_type": self.mime_type,
            "filename": self.filename,
            "create_time": to_iso(self.create_time),
            "width": self.width,
            "height": self.height,
        }


@dataclass
class PickerImportResult:
    """Counts from importing a resolved picker session."""
    imported: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "imported": self.imported,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }
