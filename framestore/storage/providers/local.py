"""
Local filesystem storage provider.
"""

import asyncio
import logging
import os
import uuid
from functools import partial
from pathlib import Path
from typing import Iterable, List, Optional

from ...exceptions import AccessDeniedError, ProviderConfigurationError, StorageFileNotFoundError
from ...models.base import utc_now
from ...models.files import StorageFileInfo, UploadResult
from ...models.provider import LocalStorageConfig, ProviderKind
from .. import scanner
from ..streams import ByteStream, FileByteStream
from .base import StorageProvider

logger = logging.getLogger(__name__)


class LocalStorageProvider(StorageProvider):
    """
    Provider backed by a directory on local disk.

    File ids are '/'-separated paths relative to the base directory. Every id
    is resolved and checked to stay inside the base before it is touched.
    """

    kind = ProviderKind.LOCAL
    supports_upload = True
    supports_watch = True

    def __init__(
        self,
        default_base_path: Optional[str] = None,
        excluded_dirs: Iterable[str] = (scanner.THUMBNAIL_DIR_NAME,),
        clock=utc_now,
    ):
        super().__init__()
        self.default_base_path = default_base_path
        self.excluded_dirs = tuple(excluded_dirs)
        self.config = LocalStorageConfig()
        self.base_path: Optional[Path] = None
        self._clock = clock

    async def initialize(self, provider_id: int, display_name: str, configuration: Optional[str]) -> None:
        try:
            config = LocalStorageConfig.from_json(configuration)
        except ValueError as e:
            raise ProviderConfigurationError(
                f"Invalid configuration for local provider '{display_name}': {e}",
                context={"provider_id": provider_id},
                cause=e,
            )

        base = config.base_path or self.default_base_path
        if not base:
            raise ProviderConfigurationError(
                f"Local provider '{display_name}' has no base path",
                context={"provider_id": provider_id},
            )

        self.provider_id = provider_id
        self.display_name = display_name
        self.config = config
        self.base_path = Path(base).expanduser().resolve()
        self.supports_watch = config.watch_for_changes
        self._initialized = True
        logger.debug(f"Local provider {provider_id} rooted at {self.base_path}")

    def get_absolute_path(self, file_id: str) -> Path:
        """
        Resolve a file id to an absolute path inside the base directory.

        Raises:
            AccessDeniedError: If the resolved path escapes the base directory
        """
        relative = (file_id or "").replace("\\", "/")
        candidate = (self.base_path / relative).resolve()
        if candidate != self.base_path and self.base_path not in candidate.parents:
            logger.warning(f"Rejected path outside storage root for provider {self.provider_id}: {file_id!r}")
            raise AccessDeniedError(
                "Access to path outside storage root is not allowed",
                context={"provider_id": self.provider_id, "file_id": file_id},
            )
        return candidate

    def direct_path(self, file_id: str) -> Optional[Path]:
        return self.get_absolute_path(file_id)

    def get_file_id(self, path: Path) -> str:
        return Path(path).relative_to(self.base_path).as_posix()

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def list_files(self, folder_id: Optional[str] = None) -> List[StorageFileInfo]:
        target = self.get_absolute_path(folder_id) if folder_id else self.base_path
        scanned = await self._run(
            scanner.scan_directory, target, recursive=True, excluded_dirs=self.excluded_dirs
        )
        files = []
        for entry in scanned:
            file_id = self.get_file_id(Path(entry.full_path))
            parent = Path(file_id).parent.as_posix()
            files.append(StorageFileInfo(
                file_id=file_id,
                file_name=entry.file_name,
                full_path=entry.full_path,
                file_size=entry.file_size,
                content_type=entry.content_type,
                media_type=entry.media_type,
                created_date=entry.created_time,
                modified_date=entry.modified_time,
                parent_folder_id=None if parent == "." else parent,
            ))
        return files

    async def download_bytes(self, file_id: str) -> bytes:
        path = self._existing_file(file_id)
        return await self._run(path.read_bytes)

    async def open_stream(self, file_id: str) -> ByteStream:
        path = self._existing_file(file_id)
        return FileByteStream(path, content_type=scanner.get_content_type(path.name))

    def _existing_file(self, file_id: str) -> Path:
        path = self.get_absolute_path(file_id)
        if not path.is_file():
            raise StorageFileNotFoundError(
                f"File not found: {file_id}",
                context={"provider_id": self.provider_id, "file_id": file_id},
            )
        return path

    async def upload(self, file_name: str, stream: ByteStream, content_type: str) -> UploadResult:
        if not scanner.is_supported_media(file_name):
            return UploadResult.failed(f"Unsupported file type: {scanner.get_extension(file_name) or file_name}")

        now = self._clock()
        target_dir = self.base_path
        if self.config.organize_by_date:
            target_dir = self.base_path / f"{now.year:04d}" / f"{now.month:02d}"
        await self._run(target_dir.mkdir, parents=True, exist_ok=True)

        unique_name = await self._run(scanner.generate_unique_filename, target_dir, file_name, now)
        target = target_dir / unique_name
        temp = target_dir / f".{unique_name}.{uuid.uuid4().hex}.uploading"

        size = 0
        handle = await self._run(open, temp, "wb")
        try:
            async for chunk in stream:
                await self._run(handle.write, chunk)
                size += len(chunk)
            await self._run(handle.close)
            await self._run(os.replace, temp, target)
        except BaseException:
            await self._run(handle.close)
            await self._run(temp.unlink, missing_ok=True)
            raise

        file_id = self.get_file_id(target)
        logger.info(f"Uploaded {file_name} to local provider {self.provider_id} as {file_id}")
        return UploadResult(
            success=True,
            file_id=file_id,
            file_name=unique_name,
            file_path=str(target),
            file_size=size,
            content_type=content_type or scanner.get_content_type(unique_name),
        )

    async def delete(self, file_id: str) -> bool:
        path = self.get_absolute_path(file_id)
        if not path.is_file():
            return False
        await self._run(path.unlink)
        logger.info(f"Deleted {file_id} from local provider {self.provider_id}")
        return True

    async def exists(self, file_id: str) -> bool:
        return self.get_absolute_path(file_id).is_file()

    async def test_connection(self) -> bool:
        try:
            return await self._run(self._probe)
        except OSError as e:
            logger.warning(f"Local provider {self.provider_id} connection test failed: {e}")
            return False

    def _probe(self) -> bool:
        self.base_path.mkdir(parents=True, exist_ok=True)
        os.listdir(self.base_path)
        probe = self.base_path / f".framestore-test-{uuid.uuid4().hex}"
        probe.write_text("test")
        probe.unlink()
        return True
