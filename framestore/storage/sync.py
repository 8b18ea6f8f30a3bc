"""
Sync engine: reconciles a provider's listing with the photo catalog.

A sync enumerates the provider, drops unsupported files and reserved
directories, diffs against what is already catalogued, and imports new files
one at a time. Local files are catalogued in place; remote files stream
through the content cache first. One file failing never stops the run;
integrity violations (path escapes, cache write failures) do.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set

from ..data.base import PhotoCatalog, ProviderRepository
from ..exceptions import (
    AccessDeniedError,
    CacheIntegrityError,
    StorageError,
    handle_unexpected_error,
)
from ..models.base import utc_now
from ..models.cache import CacheFileRequest
from ..models.catalog import ImportRequest, PhotoRecord
from ..models.files import StorageFileInfo
from ..models.sync import ScanResult, SyncOutcome, SyncRequest, SyncResult, SyncStatus
from . import scanner
from .cache import ContentCache
from .importer import ImageImporter
from .providers.base import StorageProvider
from .registry import ProviderRegistry
from .streams import ByteStream

logger = logging.getLogger(__name__)

PROVIDER_NOT_FOUND_MESSAGE = "Storage provider not found or disabled"
SYNC_IN_PROGRESS_MESSAGE = "A sync is already in progress for this provider"
SYNC_CANCELLED_MESSAGE = "Sync was cancelled"
SCAN_SAMPLE_SIZE = 10

# Integrity violations abort the whole run instead of being recorded per file
FATAL_ERRORS = (AccessDeniedError, CacheIntegrityError)

StreamOpener = Callable[[], Awaitable[ByteStream]]


class SyncEngine:
    """Runs and tracks provider syncs."""

    def __init__(
        self,
        registry: ProviderRegistry,
        provider_repository: ProviderRepository,
        catalog: PhotoCatalog,
        cache: ContentCache,
        importer: ImageImporter,
        clock=utc_now,
    ):
        self.registry = registry
        self.provider_repository = provider_repository
        self.catalog = catalog
        self.cache = cache
        self.importer = importer
        self._clock = clock
        self._status: Dict[int, SyncStatus] = {}
        self._tasks: Dict[int, asyncio.Task] = {}
        self._cancel_requested: Set[int] = set()

    # Status and control

    def get_sync_status(self, provider_id: int) -> SyncStatus:
        """Live progress of a provider's current or last sync."""
        status = self._status.get(provider_id)
        if status is None:
            status = SyncStatus(provider_id=provider_id)
        return status

    def is_syncing(self, provider_id: int) -> bool:
        task = self._tasks.get(provider_id)
        return task is not None and not task.done()

    async def cancel_sync(self, provider_id: int) -> bool:
        """
        Cancel a running sync.

        Returns:
            True if a sync was running and has been asked to stop
        """
        task = self._tasks.get(provider_id)
        if task is None or task.done():
            return False
        self._cancel_requested.add(provider_id)
        task.cancel()
        logger.info(f"Cancellation requested for sync of provider {provider_id}")
        return True

    # Sync

    async def sync(self, provider_id: int, request: Optional[SyncRequest] = None) -> SyncResult:
        """
        Sync one provider into the catalog.

        Overlapping syncs of the same provider are rejected with a failed
        result. Cancelling the calling task cancels the sync; cancel_sync()
        stops it and returns a cancelled result instead.

        Args:
            provider_id: Provider to sync
            request: Sync options, defaults apply when omitted

        Returns:
            Counts and per-file errors of the run
        """
        request = request or SyncRequest()
        if self.is_syncing(provider_id):
            now = self._clock()
            return SyncResult(
                provider_id=provider_id,
                status=SyncOutcome.FAILED,
                error_message=SYNC_IN_PROGRESS_MESSAGE,
                start_time=now,
                end_time=now,
            )

        task = asyncio.ensure_future(self._run_sync(provider_id, request))
        self._tasks[provider_id] = task
        try:
            return await task
        finally:
            if self._tasks.get(provider_id) is task:
                del self._tasks[provider_id]
            self._cancel_requested.discard(provider_id)

    async def sync_all(self, request: Optional[SyncRequest] = None) -> List[SyncResult]:
        """Sync every enabled provider, one after another."""
        results = []
        for config in await self.provider_repository.list_all():
            if not config.is_enabled:
                continue
            results.append(await self.sync(config.id, request))
        return results

    async def _run_sync(self, provider_id: int, request: SyncRequest) -> SyncResult:
        start = self._clock()
        result = SyncResult(provider_id=provider_id, start_time=start)
        status = SyncStatus(
            provider_id=provider_id,
            is_in_progress=True,
            progress_percent=0,
            current_operation="Scanning files...",
            start_time=start,
            last_sync_result=self._status.get(provider_id, SyncStatus(provider_id)).last_sync_result,
        )
        self._status[provider_id] = status

        try:
            provider = await self.registry.get_provider(provider_id)
            if provider is None:
                result.status = SyncOutcome.FAILED
                result.error_message = PROVIDER_NOT_FOUND_MESSAGE
                return result
            result.provider_name = provider.display_name
            logger.info(f"Starting sync of provider {provider_id} ({provider.display_name})")

            listing = await provider.list_files(request.folder_id)
            candidates = self._filter_candidates(listing, request)
            result.total_files_found = len(candidates)

            existing = {photo.provider_file_id: photo for photo in await self.catalog.list_by_provider(provider_id)}

            to_process = candidates
            if request.max_files > 0:
                to_process = candidates[:request.max_files]

            total = len(to_process)
            status.total_files = total
            status.progress_percent = 10
            status.current_operation = f"Found {len(candidates)} files, processing..."

            for index, info in enumerate(to_process, start=1):
                await self._process_file(provider, info, existing.get(info.file_id), request, result)
                status.files_processed = index
                status.progress_percent = 10 + int(80 * index / total)
                status.current_operation = f"Processing files ({index}/{total})..."

            if request.remove_deleted and request.folder_id is None:
                status.progress_percent = 95
                status.current_operation = "Checking for deleted files..."
                listed = {info.file_id for info in candidates}
                for file_id, photo in existing.items():
                    if file_id not in listed:
                        await self.importer.remove(photo)
                        result.files_removed += 1

            await self.provider_repository.update_last_sync(provider_id, self._clock())
            result.status = SyncOutcome.PARTIAL if result.files_failed else SyncOutcome.SUCCESS
            logger.info(
                f"Sync of provider {provider_id} finished: {result.files_added} added, "
                f"{result.files_updated} updated, {result.files_skipped} skipped, "
                f"{result.files_removed} removed, {result.files_failed} failed"
            )
            return result

        except asyncio.CancelledError:
            if provider_id not in self._cancel_requested:
                raise
            result.status = SyncOutcome.CANCELLED
            result.error_message = SYNC_CANCELLED_MESSAGE
            logger.info(f"Sync of provider {provider_id} cancelled")
            return result
        except StorageError as e:
            logger.error(f"Sync of provider {provider_id} failed: {e.to_log_string()}")
            result.status = SyncOutcome.FAILED
            result.error_message = e.message
            return result
        except Exception as e:
            error = handle_unexpected_error(e, {"provider_id": provider_id})
            result.status = SyncOutcome.FAILED
            result.error_message = error.message
            return result
        finally:
            result.end_time = self._clock()
            status.is_in_progress = False
            status.progress_percent = 100
            status.current_operation = None
            status.last_sync_result = result

    async def _process_file(
        self,
        provider: StorageProvider,
        info: StorageFileInfo,
        existing: Optional[PhotoRecord],
        request: SyncRequest,
        result: SyncResult,
    ) -> None:
        try:
            if existing is not None:
                if not request.skip_existing and info.file_size and info.file_size != existing.file_size:
                    await self.catalog.update_file_size(existing.id, info.file_size)
                    result.files_updated += 1
                else:
                    result.files_skipped += 1
                return

            await self.import_file(provider, info)
            result.files_added += 1
        except FATAL_ERRORS as e:
            result.files_failed += 1
            result.errors.append(f"Error processing {info.file_name}: {e.message}")
            raise
        except StorageError as e:
            logger.warning(f"Failed to import {info.file_id}: {e.to_log_string()}")
            result.files_failed += 1
            result.errors.append(f"Error processing {info.file_name}: {e.message}")
        except Exception as e:
            logger.warning(f"Failed to import {info.file_id}: {e}", exc_info=True)
            result.files_failed += 1
            result.errors.append(f"Error processing {info.file_name}: {e}")

    def _filter_candidates(self, listing: List[StorageFileInfo], request: SyncRequest) -> List[StorageFileInfo]:
        reserved = self.registry.reserved_dir_names()
        candidates = []
        for info in listing:
            if info.is_folder:
                continue
            if not scanner.is_supported_media(info.file_name):
                continue
            if scanner.is_in_reserved_dir(info.file_id, reserved):
                continue
            if not request.recursive and info.parent_folder_id not in (None, request.folder_id):
                continue
            candidates.append(info)
        return candidates

    # Per-file import

    async def import_file(
        self,
        provider: StorageProvider,
        info: StorageFileInfo,
        open_stream: Optional[StreamOpener] = None,
        original_url: Optional[str] = None,
        picker_session_id: Optional[str] = None,
    ) -> PhotoRecord:
        """
        Import a single provider file into the catalog.

        Files the provider can serve from local disk are catalogued in place.
        Anything else is looked up in the cache by provider file id and only
        downloaded into the cache on a miss.

        Args:
            provider: Provider the file belongs to
            info: Listing entry of the file
            open_stream: Opens the remote bytes, defaults to provider.open_stream
            original_url: URL recorded in the cache, defaults to the file id
            picker_session_id: Picker session the file was chosen in

        Returns:
            The new catalog entry
        """
        media_type = info.media_type
        content_type = info.content_type or scanner.get_content_type(info.file_name)

        direct = provider.direct_path(info.file_id)
        if direct is not None:
            request = ImportRequest(
                provider_id=provider.provider_id,
                provider_file_id=info.file_id,
                file_name=info.file_name,
                source_path=direct,
                file_size=info.file_size,
                content_type=content_type,
                media_type=media_type,
                content_hash=info.content_hash,
                date_taken=info.created_date,
                width=info.width,
                height=info.height,
            )
            return await self.importer.import_file(request)

        # The blob stays pinned until the importer has copied it out of the cache
        record = await self.cache.get_by_provider_file_id(provider.provider_id, info.file_id, pin=True)
        if record is None:
            opener = open_stream or (lambda: provider.open_stream(info.file_id))
            async with await opener() as stream:
                record = await self.cache.put(CacheFileRequest(
                    original_url=original_url or info.file_id,
                    provider_id=provider.provider_id,
                    stream=stream,
                    content_type=content_type,
                    provider_file_id=info.file_id,
                    picker_session_id=picker_session_id,
                ), pin=True)

        try:
            request = ImportRequest(
                provider_id=provider.provider_id,
                provider_file_id=info.file_id,
                file_name=info.file_name,
                source_path=self.cache.absolute_path(record),
                file_size=record.file_size,
                content_type=record.content_type,
                media_type=media_type,
                content_hash=record.file_hash,
                copy_to_library=True,
                date_taken=info.created_date,
                width=info.width,
                height=info.height,
            )
            return await self.importer.import_file(request)
        finally:
            self.cache.unpin(record.file_hash)

    # Dry run

    async def scan(self, provider_id: int) -> ScanResult:
        """Report what a sync would import without importing anything."""
        try:
            provider = await self.registry.get_provider(provider_id)
            if provider is None:
                return ScanResult(provider_id=provider_id, success=False, error_message=PROVIDER_NOT_FOUND_MESSAGE)

            candidates = self._filter_candidates(await provider.list_files(None), SyncRequest())
            known = await self.catalog.get_provider_file_ids(provider_id)
        except StorageError as e:
            logger.error(f"Scan of provider {provider_id} failed: {e.to_log_string()}")
            return ScanResult(provider_id=provider_id, success=False, error_message=e.message)

        new_files = [info for info in candidates if info.file_id not in known]
        return ScanResult(
            provider_id=provider_id,
            total_files_found=len(candidates),
            new_files_count=len(new_files),
            existing_files_count=len(candidates) - len(new_files),
            new_files_total_size=sum(info.file_size for info in new_files),
            sample_new_files=[info.to_dict() for info in new_files[:SCAN_SAMPLE_SIZE]],
        )
