"""
Google Photos Picker session protocol.

A picker session lets the user choose items in Google's own UI. The flow is:
create a session and show its picker URI, poll until the remote service
reports that items are set, list the picked items, import them through the
sync engine's per-file path, then delete the session.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ..data.base import PickerSessionRepository
from ..exceptions import (
    PickerError,
    PickerSessionNotReadyError,
    ProviderConfigurationError,
    ProviderNotFoundError,
    StorageError,
)
from ..models.base import utc_now
from ..models.files import MediaType, StorageFileInfo
from ..models.picker import PickedMediaItem, PickerImportResult, PickerSession, PollOutcome
from .cache import extension_for_content_type
from .providers.google_photos import GooglePhotosProvider, classify_http_error
from .streams import ByteStream

logger = logging.getLogger(__name__)

PICKER_API_BASE = "https://photospicker.googleapis.com/v1"
PICKER_PAGE_SIZE = 100
DEFAULT_MAX_DIMENSION = 4096


class PickerApiClient:
    """Thin client for the Photos Picker REST API."""

    def __init__(self, http_client: httpx.AsyncClient, token_manager, base_url: str = PICKER_API_BASE):
        self.http_client = http_client
        self.token_manager = token_manager
        self.base_url = base_url.rstrip("/")

    async def _request(
        self,
        method: str,
        path: str,
        provider_id: int,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        token = await self.token_manager.get_valid_access_token(provider_id)
        try:
            response = await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise classify_http_error(e, f"Picker {method} {path}")
        if not response.content:
            return {}
        return response.json()

    async def create_session(self, provider_id: int, max_item_count: Optional[int] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if max_item_count and max_item_count > 0:
            body["pickingConfig"] = {"maxItemCount": str(max_item_count)}
        return await self._request("POST", "/sessions", provider_id, json=body)

    async def get_session(self, provider_id: int, session_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/sessions/{session_id}", provider_id)

    async def list_media_items(
        self, provider_id: int, session_id: str, page_token: Optional[str] = None
    ) -> Dict[str, Any]:
        params = {"sessionId": session_id, "pageSize": PICKER_PAGE_SIZE}
        if page_token:
            params["pageToken"] = page_token
        return await self._request("GET", "/mediaItems", provider_id, params=params)

    async def delete_session(self, provider_id: int, session_id: str) -> None:
        await self._request("DELETE", f"/sessions/{session_id}", provider_id)


class PickerSessionService:
    """Drives picker sessions from creation to import."""

    def __init__(
        self,
        api: PickerApiClient,
        repository: PickerSessionRepository,
        registry,
        sync_engine,
        clock=utc_now,
        max_dimension: int = DEFAULT_MAX_DIMENSION,
    ):
        self.api = api
        self.repository = repository
        self.registry = registry
        self.sync_engine = sync_engine
        self.max_dimension = max_dimension
        self._clock = clock

    async def create_session(self, provider_id: int, max_item_count: Optional[int] = None) -> PickerSession:
        """
        Start a picker session for a Google Photos provider.

        Raises:
            PickerError: If the API response lacks a session id or picker URI
        """
        data = await self.api.create_session(provider_id, max_item_count)
        if not data.get("id") or not data.get("pickerUri"):
            raise PickerError(
                "Picker API returned an incomplete session",
                context={"provider_id": provider_id},
            )
        session = PickerSession(
            session_id=data["id"],
            picker_uri=data["pickerUri"],
            provider_id=provider_id,
            created_at=self._clock(),
        )
        session.apply_remote(data)
        await self.repository.save(session)
        logger.info(f"Created picker session {session.session_id} for provider {provider_id}")
        return session

    async def get_session(self, session_id: str) -> Optional[PickerSession]:
        return await self.repository.get(session_id)

    async def list_sessions(self, provider_id: int) -> List[PickerSession]:
        """Open sessions of a provider, newest first."""
        return await self.repository.list_for_provider(provider_id)

    async def poll_once(self, session: PickerSession) -> PickerSession:
        """Refresh a session from the remote service."""
        data = await self.api.get_session(session.provider_id, session.session_id)
        session.apply_remote(data)
        await self.repository.save(session)
        return session

    async def wait_for_selection(
        self,
        session: PickerSession,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PollOutcome:
        """
        Poll until the user finishes picking, the session times out, or the caller cancels.

        The loop is bounded by the session's timeoutIn measured from when
        polling starts, and by its expireTime. Expired and cancelled sessions
        are deleted.

        Args:
            session: Session to wait on; updated in place
            cancel_event: Set it to stop waiting

        Returns:
            RESOLVED, EXPIRED or CANCELLED
        """
        loop = asyncio.get_event_loop()
        deadline = loop.time() + session.polling_config.timeout_seconds
        while True:
            if cancel_event is not None and cancel_event.is_set():
                outcome = PollOutcome.CANCELLED
                break

            await self.poll_once(session)
            if session.media_items_set:
                return PollOutcome.RESOLVED

            remaining = deadline - loop.time()
            if session.expires_at is not None:
                remaining = min(remaining, (session.expires_at - self._clock()).total_seconds())
            if remaining <= 0:
                outcome = PollOutcome.EXPIRED
                break

            delay = min(session.polling_config.poll_interval_seconds, remaining)
            if cancel_event is None:
                await asyncio.sleep(delay)
            else:
                try:
                    await asyncio.wait_for(cancel_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    continue
                outcome = PollOutcome.CANCELLED
                break

        logger.info(f"Picker session {session.session_id} ended: {outcome.value}")
        await self.delete_session(session)
        return outcome

    async def list_picked_items(self, session: PickerSession) -> List[PickedMediaItem]:
        """
        List every item picked in a resolved session.

        Raises:
            PickerSessionNotReadyError: If the user has not finished picking
        """
        if not session.media_items_set:
            raise PickerSessionNotReadyError(
                "Media items have not been selected yet",
                context={"session_id": session.session_id},
            )
        items: List[PickedMediaItem] = []
        page_token = None
        while True:
            data = await self.api.list_media_items(session.provider_id, session.session_id, page_token)
            items.extend(PickedMediaItem.from_api(raw) for raw in data.get("mediaItems", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        return items

    async def _google_provider(self, provider_id: int) -> GooglePhotosProvider:
        provider = await self.registry.get_provider(provider_id)
        if provider is None:
            raise ProviderNotFoundError(
                "Storage provider not found or disabled",
                context={"provider_id": provider_id},
            )
        if not isinstance(provider, GooglePhotosProvider):
            raise ProviderConfigurationError(
                f"Storage provider {provider_id} is not a Google Photos provider",
                context={"provider_id": provider_id},
            )
        return provider

    async def download_item(
        self,
        session: PickerSession,
        item: PickedMediaItem,
        max_width: Optional[int] = None,
        max_height: Optional[int] = None,
    ) -> Tuple[ByteStream, str]:
        """
        Open a picked item for download.

        Videos download in full; images are bounded by the given size.

        Returns:
            Tuple of (stream the caller must close, content type)
        """
        provider = await self._google_provider(session.provider_id)
        stream = await provider.open_remote(
            item.base_url,
            is_video=item.is_video,
            max_width=self.max_dimension if max_width is None else max_width,
            max_height=self.max_dimension if max_height is None else max_height,
        )
        return stream, item.mime_type

    async def import_session(self, session: PickerSession) -> PickerImportResult:
        """
        Import every picked item, then delete the session.

        Items already in the catalog are skipped, and one item failing does
        not stop the others. The session is deleted even if the import fails
        or is cancelled.
        """
        if not session.media_items_set:
            raise PickerSessionNotReadyError(
                "Media items have not been selected yet",
                context={"session_id": session.session_id},
            )

        result = PickerImportResult()
        try:
            provider = await self._google_provider(session.provider_id)
            catalog = self.sync_engine.catalog
            for item in await self.list_picked_items(session):
                if await catalog.get_by_provider_file(session.provider_id, item.id) is not None:
                    result.skipped += 1
                    continue
                await self._import_item(provider, session, item, result)
        finally:
            await asyncio.shield(self.delete_session(session))

        logger.info(
            f"Picker session {session.session_id}: {result.imported} imported, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        return result

    async def _import_item(
        self,
        provider: GooglePhotosProvider,
        session: PickerSession,
        item: PickedMediaItem,
        result: PickerImportResult,
    ) -> None:
        file_name = item.filename or f"{item.id}{extension_for_content_type(item.mime_type)}"
        if item.is_video and item.video_processing_status not in (None, "READY"):
            result.failed += 1
            result.errors.append(f"Error processing {file_name}: video is still processing")
            return

        info = StorageFileInfo(
            file_id=item.id,
            file_name=file_name,
            media_type=MediaType.VIDEO if item.is_video else MediaType.PHOTO,
            content_type=item.mime_type,
            created_date=item.create_time,
        )

        async def open_item() -> ByteStream:
            stream, _ = await self.download_item(session, item)
            return stream

        try:
            await self.sync_engine.import_file(
                provider,
                info,
                open_stream=open_item,
                original_url=item.base_url,
                picker_session_id=session.session_id,
            )
            result.imported += 1
        except StorageError as e:
            logger.warning(f"Failed to import picked item {item.id}: {e.to_log_string()}")
            result.failed += 1
            result.errors.append(f"Error processing {file_name}: {e.message}")
        except Exception as e:
            logger.warning(f"Failed to import picked item {item.id}: {e}", exc_info=True)
            result.failed += 1
            result.errors.append(f"Error processing {file_name}: {e}")

    async def delete_session(self, session: PickerSession) -> None:
        """Delete a session remotely and locally. Failures are logged, not raised."""
        try:
            await self.api.delete_session(session.provider_id, session.session_id)
        except StorageError as e:
            logger.warning(f"Failed to delete picker session {session.session_id}: {e.to_log_string()}")
        try:
            await self.repository.delete(session.session_id)
        except Exception as e:
            logger.warning(f"Failed to remove local picker session {session.session_id}: {e}")
