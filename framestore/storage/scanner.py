"""
Media file discovery and naming helpers.

Knows which extensions are photos or videos, maps extensions to content
types, walks directories into ScannedFile entries, and picks collision-free
filenames for uploads.
"""

import logging
import os
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from ..models.files import MediaType, ScannedFile

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp",
    ".tiff", ".tif", ".heic", ".heif", ".avif",
})

VIDEO_EXTENSIONS = frozenset({
    ".mp4", ".mov", ".avi", ".mkv", ".webm", ".m4v", ".3gp", ".wmv", ".flv",
})

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tiff": "image/tiff",
    ".tif": "image/tiff",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".avif": "image/avif",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".m4v": "video/x-m4v",
    ".3gp": "video/3gpp",
    ".wmv": "video/x-ms-wmv",
    ".flv": "video/x-flv",
}

DEFAULT_CONTENT_TYPE = "application/octet-stream"
THUMBNAIL_DIR_NAME = ".thumbnails"
MAX_COLLISION_COUNTER = 999

_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def get_extension(file_name: str) -> str:
    return os.path.splitext(file_name)[1].lower()


def is_supported_image(file_name: str) -> bool:
    return get_extension(file_name) in IMAGE_EXTENSIONS


def is_supported_video(file_name: str) -> bool:
    return get_extension(file_name) in VIDEO_EXTENSIONS


def is_supported_media(file_name: str) -> bool:
    ext = get_extension(file_name)
    return ext in IMAGE_EXTENSIONS or ext in VIDEO_EXTENSIONS


def get_content_type(file_name: str) -> str:
    return CONTENT_TYPES.get(get_extension(file_name), DEFAULT_CONTENT_TYPE)


def get_media_type(file_name: str) -> MediaType:
    return MediaType.VIDEO if is_supported_video(file_name) else MediaType.PHOTO


def is_in_reserved_dir(relative_path: str, reserved_dirs: Iterable[str]) -> bool:
    """True when any path segment is one of the reserved directory names."""
    parts = relative_path.replace("\\", "/").split("/")[:-1]
    reserved = set(reserved_dirs)
    return any(part in reserved for part in parts)


def sanitize_filename(file_name: str) -> str:
    """Replace characters that are invalid in filenames; an empty stem becomes 'photo'."""
    base = os.path.basename(file_name.replace("\\", "/"))
    stem, ext = os.path.splitext(base)
    stem = _INVALID_FILENAME_CHARS.sub("_", stem).strip()
    ext = _INVALID_FILENAME_CHARS.sub("_", ext)
    if not stem:
        stem = "photo"
    return f"{stem}{ext}"


def generate_unique_filename(directory: Path, file_name: str, now: Optional[datetime] = None) -> str:
    """
    Pick a filename that does not exist yet in a directory.

    Tries the sanitized original name first, then appends a timestamp and a
    three-digit counter, and after 999 collisions falls back to a random suffix.

    Args:
        directory: Target directory
        file_name: Requested filename
        now: Timestamp used for the suffix, defaults to the current UTC time

    Returns:
        A filename (without directory) that is free in the directory
    """
    safe_name = sanitize_filename(file_name)
    if not (directory / safe_name).exists():
        return safe_name

    stem, ext = os.path.splitext(safe_name)
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d_%H%M%S")
    for counter in range(1, MAX_COLLISION_COUNTER + 1):
        candidate = f"{stem}_{stamp}_{counter:03d}{ext}"
        if not (directory / candidate).exists():
            return candidate

    return f"{stem}_{uuid.uuid4().hex}{ext}"


def scan_directory(
    root: Path,
    recursive: bool = True,
    excluded_dirs: Iterable[str] = (THUMBNAIL_DIR_NAME,),
) -> List[ScannedFile]:
    """
    Enumerate supported media files under a directory.

    Blocking; callers on the event loop run it in an executor. Files that
    cannot be read are skipped.

    Args:
        root: Directory to scan; a missing directory yields an empty list
        recursive: Descend into subdirectories
        excluded_dirs: Directory names never descended into

    Returns:
        Scanned files in walk order
    """
    root = Path(root)
    results: List[ScannedFile] = []
    if not root.is_dir():
        return results

    excluded = set(excluded_dirs)
    for dirpath, dirnames, filenames in os.walk(root):
        if recursive:
            dirnames[:] = sorted(d for d in dirnames if d not in excluded)
        else:
            dirnames[:] = []

        for name in sorted(filenames):
            if not is_supported_media(name):
                continue
            full_path = Path(dirpath) / name
            try:
                stat = full_path.stat()
            except OSError as e:
                logger.debug(f"Skipping unreadable file {full_path}: {e}")
                continue
            results.append(ScannedFile(
                full_path=str(full_path),
                relative_path=full_path.relative_to(root).as_posix(),
                file_name=name,
                extension=get_extension(name),
                file_size=stat.st_size,
                content_type=get_content_type(name),
                media_type=get_media_type(name),
                created_time=datetime.fromtimestamp(stat.st_ctime, tz=timezone.utc),
                modified_time=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                is_hidden=name.startswith("."),
            ))

    return results
