"""
Content-addressable LRU cache for remote media.

Blobs are keyed by the SHA-256 of their bytes and stored under
{root}/{h[0:2]}/{h[2:4]}/{h}{ext}. The hash is computed while the bytes
stream to a temp file under {root}/.partial, which is atomically renamed into
place before the record is inserted. A record therefore never points at a
partial file, and anything left in .partial after a crash is removed by
reconcile().
"""

import asyncio
import hashlib
import logging
import os
import uuid
import weakref
from collections import Counter
from functools import partial
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from ..data.base import CachedFileRepository
from ..exceptions import CacheIntegrityError
from ..models.base import utc_now
from ..models.cache import CachedFileRecord, CacheFileRequest, CacheStatus, ReconcileReport
from .streams import ByteStream, FileByteStream

logger = logging.getLogger(__name__)

PARTIAL_DIR_NAME = ".partial"
DEFAULT_PAGE_SIZE = 50

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/bmp": ".bmp",
    "image/heic": ".heic",
    "image/heif": ".heif",
    "image/avif": ".avif",
    "image/tiff": ".tiff",
    "video/mp4": ".mp4",
    "video/mpeg": ".mpeg",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "video/webm": ".webm",
}


def extension_for_content_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ".bin"
    return _EXTENSIONS.get(content_type.split(";")[0].strip().lower(), ".bin")


class ContentCache:
    """
    Hash-keyed blob store with LRU eviction under a byte budget.

    Writes of one hash are serialized by a per-hash lock, and evictions by a
    cache-wide lock. Sizes are only ever derived from records, so the sum of
    record sizes is the cache's total size. Pinned blobs are skipped by
    eviction until every holder has unpinned them; explicit deletes still
    remove them.
    """

    def __init__(
        self,
        repository: CachedFileRepository,
        cache_root: str,
        max_size_bytes: int = 0,
        clock=utc_now,
    ):
        self.repository = repository
        self.cache_root = Path(cache_root)
        self.max_size_bytes = max_size_bytes
        self._clock = clock
        self._hash_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._evict_lock = asyncio.Lock()
        self._pins: Counter = Counter()

    @property
    def partial_dir(self) -> Path:
        return self.cache_root / PARTIAL_DIR_NAME

    def relative_blob_path(self, file_hash: str, content_type: Optional[str]) -> str:
        return f"{file_hash[0:2]}/{file_hash[2:4]}/{file_hash}{extension_for_content_type(content_type)}"

    def absolute_path(self, record: CachedFileRecord) -> Path:
        return self.cache_root / record.local_path

    def _lock_for(self, file_hash: str) -> asyncio.Lock:
        lock = self._hash_locks.get(file_hash)
        if lock is None:
            lock = asyncio.Lock()
            self._hash_locks[file_hash] = lock
        return lock

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    # Read path

    async def get(self, file_hash: str) -> Optional[CachedFileRecord]:
        """
        Look up a blob by hash, bumping its recency.

        A record whose file has vanished is dropped and reported as a miss.
        """
        record = await self.repository.get_by_hash(file_hash)
        return await self._hit(record)

    async def get_by_provider_file_id(
        self, provider_id: int, provider_file_id: str, pin: bool = False
    ) -> Optional[CachedFileRecord]:
        """
        Look up a blob by the provider item it came from, bumping its recency.

        Args:
            provider_id: Provider the item belongs to
            provider_file_id: Provider-native id of the item
            pin: Also pin the blob; the caller must unpin() it when done
        """
        record = await self.repository.get_by_provider_file_id(provider_id, provider_file_id)
        if record is None:
            return None
        async with self._lock_for(record.file_hash):
            record = await self._hit(record)
            if record is not None and pin:
                self.pin(record.file_hash)
        return record

    async def contains_provider_file(self, provider_id: int, provider_file_id: str) -> bool:
        """Check for a provider item without touching its recency."""
        record = await self.repository.get_by_provider_file_id(provider_id, provider_file_id)
        return record is not None

    async def _hit(self, record: Optional[CachedFileRecord]) -> Optional[CachedFileRecord]:
        if record is None:
            return None
        if not await self._run(self.absolute_path(record).is_file):
            logger.warning(f"Cached file missing for {record.file_hash}, dropping record")
            await self.repository.delete(record.file_hash)
            return None
        now = self._clock()
        await self.repository.touch(record.file_hash, now)
        record.last_accessed_date = now
        record.access_count += 1
        return record

    async def get_stream(self, file_hash: str) -> Optional[ByteStream]:
        record = await self.get(file_hash)
        if record is None:
            return None
        return self.open_record(record)

    def open_record(self, record: CachedFileRecord) -> ByteStream:
        """Stream the blob of a record that was already looked up, without another recency bump."""
        return FileByteStream(self.absolute_path(record), content_type=record.content_type)

    # Pins

    def pin(self, file_hash: str) -> None:
        self._pins[file_hash] += 1

    def unpin(self, file_hash: str) -> None:
        self._pins[file_hash] -= 1
        if self._pins[file_hash] <= 0:
            del self._pins[file_hash]

    def is_pinned(self, file_hash: str) -> bool:
        return self._pins[file_hash] > 0

    # Write path

    async def put(self, request: CacheFileRequest, pin: bool = False) -> CachedFileRecord:
        """
        Store bytes from a stream, or refresh bookkeeping if they are already cached.

        The stream is consumed but not closed; the caller owns it.

        Args:
            request: Stream plus provenance of the bytes
            pin: Pin the stored blob; the caller must unpin() it when done

        Returns:
            The record for the stored blob

        Raises:
            CacheIntegrityError: If the bytes do not match request.expected_hash
                or could not be written to disk
        """
        temp_path, file_hash, size = await self._write_partial(request.stream)

        try:
            if request.expected_hash and request.expected_hash.lower() != file_hash:
                raise CacheIntegrityError(
                    f"Content hash mismatch for {request.original_url}",
                    context={"expected": request.expected_hash, "actual": file_hash},
                )

            async with self._lock_for(file_hash):
                record = await self._commit(request, temp_path, file_hash, size)
                if pin:
                    self.pin(file_hash)
        finally:
            await self._run(temp_path.unlink, missing_ok=True)

        try:
            if self.max_size_bytes > 0:
                total = await self.repository.total_size()
                if total > self.max_size_bytes:
                    await self.evict_lru(self.max_size_bytes, exclude=[file_hash])
        except BaseException:
            if pin:
                self.unpin(file_hash)
            raise

        return record

    async def _write_partial(self, stream: ByteStream) -> Tuple[Path, str, int]:
        """Stream bytes into a temp file, hashing as they go."""
        await self._run(self.partial_dir.mkdir, parents=True, exist_ok=True)
        temp_path = self.partial_dir / f"{uuid.uuid4().hex}.part"
        hasher = hashlib.sha256()
        size = 0
        try:
            handle = await self._run(open, temp_path, "wb")
            try:
                async for chunk in stream:
                    hasher.update(chunk)
                    size += len(chunk)
                    await self._run(handle.write, chunk)
            finally:
                await self._run(handle.close)
        except OSError as e:
            await self._run(temp_path.unlink, missing_ok=True)
            raise CacheIntegrityError(f"Failed to write cache file: {e}", cause=e)
        except BaseException:
            # Cancellation or a failing source stream leaves nothing behind
            await self._run(temp_path.unlink, missing_ok=True)
            raise
        return temp_path, hasher.hexdigest(), size

    async def _commit(
        self, request: CacheFileRequest, temp_path: Path, file_hash: str, size: int
    ) -> CachedFileRecord:
        now = self._clock()
        existing = await self.repository.get_by_hash(file_hash)

        if existing is not None:
            target = self.absolute_path(existing)
            if not await self._run(target.is_file):
                logger.warning(f"Restoring missing cache file for {file_hash}")
                await self._place(temp_path, target)
            existing.last_accessed_date = now
            existing.access_count += 1
            if not existing.provider_file_id and request.provider_file_id:
                existing.provider_file_id = request.provider_file_id
            if not existing.picker_session_id and request.picker_session_id:
                existing.picker_session_id = request.picker_session_id
            await self.repository.update(existing)
            logger.debug(f"Cache hit on put for {file_hash}")
            return existing

        relative = self.relative_blob_path(file_hash, request.content_type)
        target = self.cache_root / relative
        await self._place(temp_path, target)

        record = CachedFileRecord(
            file_hash=file_hash,
            original_url=request.original_url,
            provider_id=request.provider_id,
            provider_file_id=request.provider_file_id,
            picker_session_id=request.picker_session_id,
            local_path=relative,
            file_size=size,
            content_type=request.content_type,
            cached_date=now,
            last_accessed_date=now,
            access_count=1,
        )
        try:
            record = await self.repository.insert(record)
        except BaseException:
            await self._run(target.unlink, missing_ok=True)
            raise

        logger.info(f"Cached {file_hash} ({size} bytes) from provider {request.provider_id}")
        return record

    async def _place(self, temp_path: Path, target: Path) -> None:
        try:
            await self._run(target.parent.mkdir, parents=True, exist_ok=True)
            await self._run(os.replace, temp_path, target)
        except OSError as e:
            raise CacheIntegrityError(f"Failed to move cache file into place: {e}", cause=e)

    # Bookkeeping

    async def total_size(self) -> int:
        return await self.repository.total_size()

    async def count(self) -> int:
        return await self.repository.count()

    async def get_status(self) -> CacheStatus:
        return CacheStatus(
            total_size_bytes=await self.total_size(),
            file_count=await self.count(),
            max_size_bytes=self.max_size_bytes,
        )

    async def list_paged(self, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> Tuple[List[CachedFileRecord], int]:
        """
        List records, most recently accessed first.

        Args:
            page: 1-based page number
            page_size: Records per page

        Returns:
            Tuple of (records on the page, total record count)
        """
        page = max(page, 1)
        page_size = max(page_size, 1)
        records = await self.repository.list_paged((page - 1) * page_size, page_size)
        return records, await self.repository.count()

    # Removal

    async def delete(self, file_hash: str) -> bool:
        async with self._lock_for(file_hash):
            record = await self.repository.get_by_hash(file_hash)
            if record is None:
                return False
            await self._remove(record)
            return True

    async def _remove(self, record: CachedFileRecord) -> None:
        # Record first: a crash after this leaves an orphan file, which reconcile() removes
        await self.repository.delete(record.file_hash)
        try:
            await self._run(self.absolute_path(record).unlink, missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete cached file {record.local_path}: {e}")

    async def evict_lru(self, max_size_bytes: int, exclude: Iterable[str] = ()) -> int:
        """
        Evict least recently used blobs until the total fits the budget.

        Order is oldest last access first, then lowest access count, then
        oldest cache date.

        Args:
            max_size_bytes: Byte budget to get under
            exclude: Hashes that must not be evicted

        Returns:
            Number of blobs evicted
        """
        excluded = set(exclude)
        evicted = 0
        freed = 0
        async with self._evict_lock:
            total = await self.repository.total_size()
            if total <= max_size_bytes:
                return 0
            for record in await self.repository.list_for_eviction():
                if total <= max_size_bytes:
                    break
                if record.file_hash in excluded:
                    continue
                async with self._lock_for(record.file_hash):
                    if self.is_pinned(record.file_hash):
                        continue
                    if await self.repository.get_by_hash(record.file_hash) is None:
                        continue
                    await self._remove(record)
                total -= record.file_size
                freed += record.file_size
                evicted += 1

        if evicted:
            logger.info(f"Evicted {evicted} cached files ({freed} bytes) to fit {max_size_bytes} bytes")
        return evicted

    async def clear_all(self) -> int:
        return await self._clear(await self.repository.list_all())

    async def clear_for_provider(self, provider_id: int) -> int:
        return await self._clear(await self.repository.list_by_provider(provider_id))

    async def _clear(self, records: List[CachedFileRecord]) -> int:
        for record in records:
            async with self._lock_for(record.file_hash):
                await self._remove(record)
        if records:
            logger.info(f"Cleared {len(records)} cached files")
        return len(records)

    # Startup

    async def reconcile(self) -> ReconcileReport:
        """
        Repair the cache after an unclean shutdown.

        Removes partial writes, records whose file is gone, and files that no
        record references.
        """
        report = ReconcileReport()
        records = await self.repository.list_all()
        referenced = set()

        for record in records:
            path = self.absolute_path(record)
            if await self._run(path.is_file):
                referenced.add(path.resolve())
            else:
                await self.repository.delete(record.file_hash)
                report.missing_records_removed += 1

        partial_removed, orphans_removed = await self._run(self._sweep_disk, referenced)
        report.partial_files_removed = partial_removed
        report.orphan_files_removed = orphans_removed

        if report.total:
            logger.info(
                f"Cache reconciled: {report.partial_files_removed} partial files, "
                f"{report.orphan_files_removed} orphan files, "
                f"{report.missing_records_removed} records without files removed"
            )
        return report

    def _sweep_disk(self, referenced: set) -> Tuple[int, int]:
        partial_removed = 0
        orphans_removed = 0
        if not self.cache_root.is_dir():
            return 0, 0

        if self.partial_dir.is_dir():
            for entry in self.partial_dir.iterdir():
                if entry.is_file():
                    entry.unlink(missing_ok=True)
                    partial_removed += 1

        for dirpath, dirnames, filenames in os.walk(self.cache_root):
            dirnames[:] = [d for d in dirnames if d != PARTIAL_DIR_NAME]
            for name in filenames:
                path = Path(dirpath) / name
                if path.resolve() not in referenced:
                    path.unlink(missing_ok=True)
                    orphans_removed += 1

        return partial_removed, orphans_removed
