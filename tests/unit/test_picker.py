"""
Tests for Google Photos picker sessions.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from framestore.config import GoogleOAuthSettings
from framestore.data import (
    SQLiteCachedFileRepository,
    SQLitePhotoCatalog,
    SQLitePickerSessionRepository,
    SQLiteProviderRepository,
)
from framestore.exceptions import PickerError, PickerSessionNotReadyError, ReauthorizationRequiredError
from framestore.models import CacheFileRequest, GooglePhotosConfig, ProviderConfig, ProviderKind
from framestore.models.base import from_iso
from framestore.models.picker import PickedMediaItem, PollOutcome, parse_duration
from framestore.storage import (
    ContentCache,
    LibraryImporter,
    OAuthTokenManager,
    PickerApiClient,
    PickerSessionService,
    ProviderRegistry,
    SyncEngine,
    build_download_url,
)
from framestore.storage.streams import MemoryByteStream

PICKER_BASE = "https://picker.test/v1"


def _photo_item(item_id: str, filename: str) -> dict:
    return {
        "id": item_id,
        "type": "PHOTO",
        "createTime": "2024-01-10T08:30:00.123456789Z",
        "mediaFile": {
            "baseUrl": f"https://media.test/{item_id}",
            "mimeType": "image/jpeg",
            "filename": filename,
            "mediaFileMetadata": {"width": 8, "height": 6},
        },
    }


class FakePickerBackend:
    """Picker API and media host served through httpx.MockTransport."""

    def __init__(self, media: dict):
        self.media = media
        self.created = []
        self.create_response = {
            "id": "s1",
            "pickerUri": "https://photos.google.com/picker/s1",
            "pollingConfig": {"pollInterval": "0.01s", "timeoutIn": "0.05s"},
        }
        self.session_state = {"mediaItemsSet": False}
        self.session_status = 200
        self.pages = {}
        self.deleted = []
        self.downloads = []
        self.authorization_headers = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.authorization_headers.append(request.headers.get("Authorization"))
        path = request.url.path
        if request.url.host == "media.test":
            self.downloads.append(str(request.url))
            item_id = path.lstrip("/").split("=")[0]
            return httpx.Response(200, content=self.media[item_id], headers={"content-type": "image/jpeg"})

        if path == "/v1/sessions" and request.method == "POST":
            self.created.append(json.loads(request.content or b"{}"))
            return httpx.Response(200, json=self.create_response)
        if path.startswith("/v1/sessions/") and request.method == "GET":
            if self.session_status != 200:
                return httpx.Response(self.session_status)
            return httpx.Response(200, json=self.session_state)
        if path.startswith("/v1/sessions/") and request.method == "DELETE":
            self.deleted.append(path.rsplit("/", 1)[-1])
            return httpx.Response(200)
        if path == "/v1/mediaItems":
            return httpx.Response(200, json=self.pages[request.url.params.get("pageToken")])
        return httpx.Response(404)


class PickerHarness:
    def __init__(self, db, tmp_path, clock, backend: FakePickerBackend):
        self.clock = clock
        self.backend = backend
        self.http_client = httpx.AsyncClient(transport=httpx.MockTransport(backend.handler))
        self.providers = SQLiteProviderRepository(db)
        self.sessions = SQLitePickerSessionRepository(db)
        self.catalog = SQLitePhotoCatalog(db)
        self.cache = ContentCache(SQLiteCachedFileRepository(db), str(tmp_path / ".cache"), clock=clock)
        self.token_manager = OAuthTokenManager(
            self.providers, GoogleOAuthSettings(client_id="cid", client_secret="secret"),
            self.http_client, clock=clock,
        )
        self.registry = ProviderRegistry(
            self.providers,
            str(tmp_path / "photos"),
            token_manager=self.token_manager,
            cache=self.cache,
            catalog=self.catalog,
            http_client=self.http_client,
        )
        self.engine = SyncEngine(
            self.registry,
            self.providers,
            self.catalog,
            self.cache,
            LibraryImporter(self.catalog, str(tmp_path / "library"), clock=clock),
            clock=clock,
        )
        self.service = PickerSessionService(
            PickerApiClient(self.http_client, self.token_manager, base_url=PICKER_BASE),
            self.sessions,
            self.registry,
            self.engine,
            clock=clock,
        )
        self.provider_id = None

    async def add_provider(self) -> int:
        config = GooglePhotosConfig(
            refresh_token="rt",
            access_token="picker-token",
            access_token_expiry=self.clock() + timedelta(hours=1),
        )
        self.provider_id = await self.providers.add(ProviderConfig(
            id=0, kind=ProviderKind.GOOGLE_PHOTOS, name="Google Photos", configuration=config.to_json(),
        ))
        return self.provider_id


@pytest_asyncio.fixture
async def harness(db, tmp_path, clock, make_jpeg):
    media = {
        "item-1": make_jpeg(color=(200, 30, 30)),
        "item-2": make_jpeg(color=(30, 200, 30)),
        "item-3": make_jpeg(color=(30, 30, 200)),
    }
    h = PickerHarness(db, tmp_path, clock, FakePickerBackend(media))
    await h.add_provider()
    yield h
    await h.http_client.aclose()


class TestPickerHelpers:
    """Tests for URL building and API payload parsing."""

    def test_download_url_suffixes(self):
        assert build_download_url("https://b/x", is_video=True) == "https://b/x=dv"
        assert build_download_url("https://b/x", max_width=640, max_height=480) == "https://b/x=w640-h480"
        assert build_download_url("https://b/x", max_width=640) == "https://b/x=d"

    def test_parse_duration(self):
        assert parse_duration("3s", 1.0) == 3.0
        assert parse_duration("1.5s", 1.0) == 1.5
        assert parse_duration("soon", 1.0) == 1.0
        assert parse_duration(None, 2.0) == 2.0
        assert parse_duration("-4s", 2.0) == 2.0

    def test_timestamps_with_nanoseconds(self):
        parsed = from_iso("2024-01-10T08:30:00.123456789Z")
        assert parsed == datetime(2024, 1, 10, 8, 30, 0, 123456, tzinfo=timezone.utc)

    def test_picked_item_from_api(self):
        item = PickedMediaItem.from_api({
            "id": "v1",
            "type": "VIDEO",
            "mediaFile": {
                "baseUrl": "https://media.test/v1",
                "mimeType": "video/mp4",
                "filename": "clip.mp4",
                "mediaFileMetadata": {"width": "1920", "height": "1080",
                                      "videoMetadata": {"processingStatus": "PROCESSING"}},
            },
        })
        assert item.is_video
        assert item.width == 1920
        assert item.video_processing_status == "PROCESSING"
        assert item.create_time is None


class TestPickerSessions:
    """Tests for creating and polling sessions."""

    @pytest.mark.asyncio
    async def test_create_session(self, harness):
        session = await harness.service.create_session(harness.provider_id, max_item_count=25)

        assert harness.backend.created == [{"pickingConfig": {"maxItemCount": "25"}}]
        assert harness.backend.authorization_headers[0] == "Bearer picker-token"
        assert session.session_id == "s1"
        assert session.picker_uri.endswith("/s1")
        assert not session.media_items_set
        assert session.polling_config.poll_interval_seconds == 0.01
        stored = await harness.sessions.get("s1")
        assert stored is not None and stored.provider_id == harness.provider_id
        assert [s.session_id for s in await harness.service.list_sessions(harness.provider_id)] == ["s1"]

    @pytest.mark.asyncio
    async def test_create_session_without_limit(self, harness):
        await harness.service.create_session(harness.provider_id)
        assert harness.backend.created == [{}]

    @pytest.mark.asyncio
    async def test_incomplete_session_response(self, harness):
        harness.backend.create_response = {"id": "s1"}
        with pytest.raises(PickerError):
            await harness.service.create_session(harness.provider_id)

    @pytest.mark.asyncio
    async def test_selection_resolves(self, harness):
        session = await harness.service.create_session(harness.provider_id)
        harness.backend.session_state = {"mediaItemsSet": True}

        outcome = await harness.service.wait_for_selection(session)

        assert outcome == PollOutcome.RESOLVED
        assert session.media_items_set
        assert harness.backend.deleted == []
        assert (await harness.sessions.get("s1")).media_items_set

    @pytest.mark.asyncio
    async def test_selection_times_out(self, harness):
        session = await harness.service.create_session(harness.provider_id)

        outcome = await harness.service.wait_for_selection(session)

        assert outcome == PollOutcome.EXPIRED
        assert harness.backend.deleted == ["s1"]
        assert await harness.sessions.get("s1") is None

    @pytest.mark.asyncio
    async def test_selection_cancelled(self, harness):
        session = await harness.service.create_session(harness.provider_id)
        cancel = asyncio.Event()
        cancel.set()

        outcome = await harness.service.wait_for_selection(session, cancel)

        assert outcome == PollOutcome.CANCELLED
        assert harness.backend.deleted == ["s1"]
        assert await harness.sessions.get("s1") is None

    @pytest.mark.asyncio
    async def test_rejected_token_while_polling(self, harness):
        session = await harness.service.create_session(harness.provider_id)
        harness.backend.session_status = 401

        with pytest.raises(ReauthorizationRequiredError):
            await harness.service.poll_once(session)


class TestPickedItems:
    """Tests for listing and importing picked items."""

    def _two_pages(self, backend: FakePickerBackend, video_status: str = "PROCESSING"):
        video = {
            "id": "item-2",
            "type": "VIDEO",
            "mediaFile": {
                "baseUrl": "https://media.test/item-2",
                "mimeType": "video/mp4",
                "filename": "clip.mp4",
                "mediaFileMetadata": {"videoMetadata": {"processingStatus": video_status}},
            },
        }
        backend.pages = {
            None: {"mediaItems": [_photo_item("item-1", "beach.jpg"), video], "nextPageToken": "p2"},
            "p2": {"mediaItems": [_photo_item("item-3", "dune.jpg")]},
        }
        backend.session_state = {"mediaItemsSet": True}

    @pytest.mark.asyncio
    async def test_listing_requires_selection(self, harness):
        session = await harness.service.create_session(harness.provider_id)
        with pytest.raises(PickerSessionNotReadyError):
            await harness.service.list_picked_items(session)

    @pytest.mark.asyncio
    async def test_listing_follows_pages(self, harness):
        self._two_pages(harness.backend)
        session = await harness.service.create_session(harness.provider_id)
        await harness.service.poll_once(session)

        items = await harness.service.list_picked_items(session)

        assert [item.id for item in items] == ["item-1", "item-2", "item-3"]
        assert items[0].create_time.microsecond == 123456

    @pytest.mark.asyncio
    async def test_import_session(self, harness):
        self._two_pages(harness.backend)
        session = await harness.service.create_session(harness.provider_id)
        await harness.service.poll_once(session)

        result = await harness.service.import_session(session)

        assert (result.imported, result.failed, result.skipped) == (2, 1, 0)
        assert result.errors == ["Error processing clip.mp4: video is still processing"]
        assert "https://media.test/item-1=w4096-h4096" in harness.backend.downloads
        assert harness.backend.deleted == ["s1"]
        assert await harness.sessions.get("s1") is None

        photo = await harness.catalog.get_by_provider_file(harness.provider_id, "item-1")
        assert photo.original_filename == "beach.jpg"
        cached = await harness.cache.get_by_provider_file_id(harness.provider_id, "item-1")
        assert cached.picker_session_id == "s1"
        assert cached.original_url == "https://media.test/item-1"

    @pytest.mark.asyncio
    async def test_reimport_skips_known_items(self, harness):
        self._two_pages(harness.backend, video_status="READY")
        session = await harness.service.create_session(harness.provider_id)
        await harness.service.poll_once(session)
        first = await harness.service.import_session(session)

        again = await harness.service.create_session(harness.provider_id)
        await harness.service.poll_once(again)
        second = await harness.service.import_session(again)

        assert first.imported == 3
        assert (second.imported, second.skipped) == (0, 3)

    @pytest.mark.asyncio
    async def test_import_requires_selection(self, harness):
        session = await harness.service.create_session(harness.provider_id)
        with pytest.raises(PickerSessionNotReadyError):
            await harness.service.import_session(session)


class TestGooglePhotosReads:
    """Tests for serving picked items through the provider."""

    @pytest.mark.asyncio
    async def test_cached_read_counts_one_access(self, harness, make_jpeg):
        data = make_jpeg(color=(90, 90, 90))
        record = await harness.cache.put(CacheFileRequest(
            original_url="https://media.test/item-9",
            provider_id=harness.provider_id,
            stream=MemoryByteStream(data),
            content_type="image/jpeg",
            provider_file_id="item-9",
        ))
        provider = await harness.registry.get_provider(harness.provider_id)

        async with await provider.open_stream("item-9") as stream:
            assert await stream.read_all() == data

        stored = await harness.cache.repository.get_by_hash(record.file_hash)
        assert stored.access_count == record.access_count + 1
        assert harness.backend.downloads == []
