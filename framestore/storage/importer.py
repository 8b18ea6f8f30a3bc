"""
Image import: turns bytes on local disk into catalog entries.
"""

import asyncio
import logging
import os
import shutil
import uuid
from abc import ABC, abstractmethod
from functools import partial
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from ..data.base import PhotoCatalog
from ..models.base import utc_now
from ..models.catalog import ImportRequest, PhotoRecord
from ..models.files import MediaType
from . import scanner
from .streams import sha256_file

logger = logging.getLogger(__name__)


def probe_image_size(path: Path) -> Optional[Tuple[int, int]]:
    """Read pixel dimensions from an image header. Blocking."""
    try:
        with Image.open(path) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as e:
        logger.debug(f"Could not read image dimensions of {path}: {e}")
        return None


class ImageImporter(ABC):
    """Collaborator that records imported files in the catalog."""

    @abstractmethod
    async def import_file(self, request: ImportRequest) -> PhotoRecord:
        """
        Catalog a file.

        Nothing is left in the catalog or the library if the import fails
        or is cancelled.

        Args:
            request: Where the bytes are and where they came from

        Returns:
            The persisted catalog entry
        """
        pass

    @abstractmethod
    async def remove(self, photo: PhotoRecord) -> None:
        """Remove a catalog entry whose source file is gone."""
        pass


class LibraryImporter(ImageImporter):
    """
    Default importer.

    Direct-serve files are catalogued in place. Remote bytes are copied from
    the cache into {library}/media/{YYYY}/{MM}/ so the catalog does not
    depend on blobs the cache may evict.
    """

    def __init__(self, catalog: PhotoCatalog, library_path: str, clock=utc_now):
        self.catalog = catalog
        self.library_path = Path(library_path)
        self._clock = clock

    @property
    def media_root(self) -> Path:
        return self.library_path / "media"

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def import_file(self, request: ImportRequest) -> PhotoRecord:
        now = self._clock()
        copied: Optional[Path] = None
        try:
            if request.copy_to_library:
                copied = await self._run(self._copy_into_library, request.source_path, request.file_name, now)
                file_path = copied
            else:
                file_path = request.source_path

            content_hash = request.content_hash
            if content_hash is None:
                content_hash = await self._run(sha256_file, file_path)

            width, height = request.width, request.height
            if request.media_type == MediaType.PHOTO and not (width and height):
                size = await self._run(probe_image_size, file_path)
                if size:
                    width, height = size

            file_size = request.file_size or await self._run(lambda: file_path.stat().st_size)

            photo = PhotoRecord(
                filename=file_path.name,
                original_filename=request.file_name,
                file_path=str(file_path),
                file_size=file_size,
                media_type=request.media_type,
                content_type=request.content_type,
                content_hash=content_hash,
                width=width,
                height=height,
                date_taken=request.date_taken,
                date_added=now,
                provider_id=request.provider_id,
                provider_file_id=request.provider_file_id,
            )
            await self.catalog.add_photo(photo)
        except BaseException:
            if copied is not None:
                await self._run(copied.unlink, missing_ok=True)
            raise

        logger.debug(f"Imported {request.file_name} from provider {request.provider_id} as photo {photo.id}")
        return photo

    def _copy_into_library(self, source: Path, file_name: str, now) -> Path:
        target_dir = self.media_root / f"{now.year:04d}" / f"{now.month:02d}"
        target_dir.mkdir(parents=True, exist_ok=True)
        name = scanner.generate_unique_filename(target_dir, file_name, now)
        target = target_dir / name
        temp = target_dir / f".{name}.{uuid.uuid4().hex}.tmp"
        try:
            shutil.copyfile(source, temp)
            os.replace(temp, target)
        finally:
            temp.unlink(missing_ok=True)
        return target

    async def remove(self, photo: PhotoRecord) -> None:
        await self.catalog.remove_photo(photo.id)
        path = Path(photo.file_path)
        # Only library copies are ours to delete; direct-serve files belong to the provider
        if self.media_root.resolve() in path.resolve().parents:
            await self._run(path.unlink, missing_ok=True)
        logger.info(f"Removed photo {photo.id} ({photo.original_filename}) from catalog")
