"""
Storage provider models.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .base import from_iso, to_iso


class ProviderKind(Enum):
    """Kinds of storage provider."""
    LOCAL = "local"
    GOOGLE_PHOTOS = "google_photos"
    GOOGLE_DRIVE = "google_drive"
    ONEDRIVE = "onedrive"


@dataclass
class ProviderConfig:
    """A configured storage provider row."""
    id: int
    kind: ProviderKind
    name: str
    is_enabled: bool = True
    configuration: Optional[str] = None
    last_sync_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        # configuration may hold secrets and is never serialized
        return {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "is_enabled": self.is_enabled,
            "last_sync_date": to_iso(self.last_sync_date),
        }


def _load_blob(configuration: Optional[str]) -> Dict[str, Any]:
    """Decode a configuration blob; blank means defaults."""
    if configuration is None or not configuration.strip():
        return {}
    data = json.loads(configuration)
    if not isinstance(data, dict):
        raise ValueError("configuration must be a JSON object")
    return data


@dataclass
class LocalStorageConfig:
    """Configuration blob of a Local provider."""
    base_path: str = ""
    organize_by_date: bool = True
    watch_for_changes: bool = True

    def to_json(self) -> str:
        return json.dumps({
            "base_path": self.base_path,
            "organize_by_date": self.organize_by_date,
            "watch_for_changes": self.watch_for_changes,
        })

    @classmethod
    def from_json(cls, configuration: Optional[str]) -> "LocalStorageConfig":
        """
        Parse a Local configuration blob.

        Raises:
            ValueError: If the blob is not a JSON object
        """
        data = _load_blob(configuration)
        return cls(
            base_path=data.get("base_path", "") or "",
            organize_by_date=bool(data.get("organize_by_date", True)),
            watch_for_changes=bool(data.get("watch_for_changes", True)),
        )


@dataclass
class GooglePhotosConfig:
    """Configuration blob of a Google Photos provider, including OAuth state."""
    client_id: str = ""
    client_secret: str = ""
    refresh_token: str = ""
    access_token: str = ""
    access_token_expiry: Optional[datetime] = None
    granted_scopes: List[str] = field(default_factory=list)

    def has_scope(self, scope: str) -> bool:
        return scope in self.granted_scopes

    def clear_tokens(self) -> None:
        """Forget every token and scope; client credentials are kept."""
        self.refresh_token = ""
        self.access_token = ""
        self.access_token_expiry = None
        self.granted_scopes = []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": self.refresh_token,
            "access_token": self.access_token,
            "access_token_expiry": to_iso(self.access_token_expiry),
            "granted_scopes": list(self.granted_scopes),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, configuration: Optional[str]) -> "GooglePhotosConfig":
        """
        Parse a Google Photos configuration blob.

        Raises:
            ValueError: If the blob is not a JSON object or a field is malformed
        """
        data = _load_blob(configuration)
        scopes = data.get("granted_scopes") or []
        if isinstance(scopes, str):
            scopes = scopes.split()
        return cls(
            client_id=data.get("client_id", "") or "",
            client_secret=data.get("client_secret", "") or "",
            refresh_token=data.get("refresh_token", "") or "",
            access_token=data.get("access_token", "") or "",
            access_token_expiry=from_iso(data.get("access_token_expiry")),
            granted_scopes=list(scopes),
        )
