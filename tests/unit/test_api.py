"""
Tests for the storage HTTP API.
"""

import asyncio
import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import pytest_asyncio

from framestore.api import create_app
from framestore.config import GoogleOAuthSettings
from framestore.data import (
    SQLiteCachedFileRepository,
    SQLitePhotoCatalog,
    SQLitePickerSessionRepository,
    SQLiteProviderRepository,
)
from framestore.exceptions import InsufficientScopesError, ProviderNotFoundError
from framestore.api.routes import files as file_routes
from framestore.models import CacheFileRequest, GooglePhotosConfig, ProviderConfig, ProviderKind
from framestore.storage import (
    ContentCache,
    LibraryImporter,
    PickerSessionService,
    ProviderRegistry,
    SyncEngine,
)
from framestore.storage.streams import MemoryByteStream
from framestore.storage.sync import PROVIDER_NOT_FOUND_MESSAGE


class StubOAuthFlow:
    """Records code exchanges and fails on demand."""

    def __init__(self):
        self.error = None
        self.exchanged = []

    async def generate_auth_url(self, provider_id: int) -> str:
        if provider_id == 404:
            raise ProviderNotFoundError(f"Storage provider {provider_id} not found")
        return f"https://accounts.test/auth?state={provider_id}"

    async def exchange_code(self, provider_id: int, code: str):
        self.exchanged.append((provider_id, code))
        if self.error is not None:
            raise self.error


class ApiHarness:
    def __init__(self, db, tmp_path, clock):
        self.photos = tmp_path / "photos"
        self.providers = SQLiteProviderRepository(db)
        self.catalog = SQLitePhotoCatalog(db)
        self.cache = ContentCache(
            SQLiteCachedFileRepository(db), str(tmp_path / ".cache"), max_size_bytes=1024 * 1024, clock=clock
        )
        self.registry = ProviderRegistry(self.providers, str(self.photos), cache=self.cache, catalog=self.catalog)
        self.engine = SyncEngine(
            self.registry,
            self.providers,
            self.catalog,
            self.cache,
            LibraryImporter(self.catalog, str(tmp_path / "library"), clock=clock),
            clock=clock,
        )
        self.flow = StubOAuthFlow()
        self.picker = PickerSessionService(None, SQLitePickerSessionRepository(db), self.registry, self.engine)
        self.local_id = None

    def services(self, **overrides):
        services = dict(
            registry=self.registry,
            provider_repository=self.providers,
            sync_engine=self.engine,
            cache=self.cache,
            oauth_flow=self.flow,
            picker_service=self.picker,
            google_settings=GoogleOAuthSettings(),
        )
        services.update(overrides)
        return services

    def client(self, **overrides) -> httpx.AsyncClient:
        app = create_app(**self.services(**overrides))
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://frame.test")


@pytest_asyncio.fixture
async def api(db, tmp_path, clock, make_jpeg):
    harness = ApiHarness(db, tmp_path, clock)
    local = await harness.registry.get_or_create_default_local_provider()
    harness.local_id = local.provider_id
    (harness.photos / "beach.jpg").write_bytes(make_jpeg())
    return harness


class TestHealthAndProviders:
    """Tests for the health check and provider routes."""

    @pytest.mark.asyncio
    async def test_health_reports_cache(self, api):
        async with api.client() as client:
            response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["cache"]["max_size_bytes"] == 1024 * 1024

    @pytest.mark.asyncio
    async def test_list_and_get_providers(self, api):
        async with api.client() as client:
            listing = await client.get("/api/storage/providers")
            single = await client.get(f"/api/storage/providers/{api.local_id}")
            missing = await client.get("/api/storage/providers/999")

        assert listing.status_code == 200
        assert [p["name"] for p in listing.json()] == ["Local Storage"]
        assert listing.json()[0]["is_syncing"] is False
        assert "configuration" not in listing.json()[0]
        assert single.json()["kind"] == "local"
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_connection_check(self, api):
        async with api.client() as client:
            response = await client.post(f"/api/storage/providers/{api.local_id}/test")
        assert response.json() == {"provider_id": api.local_id, "success": True}

    @pytest.mark.asyncio
    async def test_unimplemented_provider_is_501(self, api):
        drive_id = await api.providers.add(ProviderConfig(id=0, kind=ProviderKind.GOOGLE_DRIVE, name="Drive"))
        async with api.client() as client:
            response = await client.post(f"/api/storage/providers/{drive_id}/test")
        assert response.status_code == 501
        detail = response.json()["detail"]
        assert detail["error_code"] == "PROVIDER_NOT_IMPLEMENTED"
        assert detail["message"] == "Google Drive provider not yet implemented"

    @pytest.mark.asyncio
    async def test_local_provider_cannot_be_disconnected(self, api):
        async with api.client() as client:
            response = await client.post(f"/api/storage/providers/{api.local_id}/disconnect")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_service_is_503(self, api):
        async with api.client(cache=None) as client:
            response = await client.get("/api/storage/cache/status")
        assert response.status_code == 503


class TestProviderManagement:
    """Tests for creating, updating and deleting providers."""

    @pytest.mark.asyncio
    async def test_create_local_provider(self, api, tmp_path):
        shared = tmp_path / "shared"
        async with api.client() as client:
            response = await client.post("/api/storage/providers", json={
                "kind": "local",
                "name": "  Shared  ",
                "configuration": json.dumps({"base_path": str(shared)}),
            })

        assert response.status_code == 201
        body = response.json()
        assert body["kind"] == "local"
        assert body["name"] == "Shared"
        assert body["is_enabled"] is True
        provider = await api.registry.get_provider(body["id"])
        assert provider.base_path == shared.resolve()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload,status,error_code", [
        ({"kind": "local", "name": "Bad", "configuration": "[1, 2]"}, 400, "PROVIDER_CONFIGURATION_ERROR"),
        ({"kind": "local", "name": "Bad", "configuration": "{not json"}, 400, "PROVIDER_CONFIGURATION_ERROR"),
        ({"kind": "google_drive", "name": "Drive"}, 501, "PROVIDER_NOT_IMPLEMENTED"),
    ])
    async def test_create_rejects_unusable_configuration(self, api, payload, status, error_code):
        async with api.client() as client:
            response = await client.post("/api/storage/providers", json=payload)

        assert response.status_code == status
        assert response.json()["detail"]["error_code"] == error_code
        assert len(await api.providers.list_all()) == 1

    @pytest.mark.asyncio
    async def test_create_requires_a_name(self, api):
        async with api.client() as client:
            blank = await client.post("/api/storage/providers", json={"kind": "local", "name": "   "})
            unknown_kind = await client.post("/api/storage/providers", json={"kind": "ftp", "name": "x"})
        assert blank.status_code == 400
        assert unknown_kind.status_code == 422

    @pytest.mark.asyncio
    async def test_update_refreshes_live_instance(self, api, tmp_path):
        moved = tmp_path / "moved"
        before = await api.registry.get_provider(api.local_id)
        assert before.base_path == api.photos.resolve()

        async with api.client() as client:
            response = await client.put(f"/api/storage/providers/{api.local_id}", json={
                "name": "Moved",
                "configuration": json.dumps({"base_path": str(moved)}),
            })

        assert response.status_code == 200
        assert response.json()["name"] == "Moved"
        after = await api.registry.get_provider(api.local_id)
        assert after is not before
        assert after.base_path == moved.resolve()

    @pytest.mark.asyncio
    async def test_update_can_disable_and_rejects_bad_configuration(self, api):
        async with api.client() as client:
            bad = await client.put(f"/api/storage/providers/{api.local_id}", json={"configuration": "[]"})
            disabled = await client.put(f"/api/storage/providers/{api.local_id}", json={"is_enabled": False})
            missing = await client.put("/api/storage/providers/999", json={"name": "x"})

        assert bad.status_code == 400
        assert disabled.json()["is_enabled"] is False
        assert await api.registry.get_provider(api.local_id) is None
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_with_photos(self, api):
        await api.engine.sync(api.local_id)
        assert await api.catalog.count() == 1

        async with api.client() as client:
            response = await client.delete(
                f"/api/storage/providers/{api.local_id}", params={"delete_photos": "true"}
            )
            again = await client.delete(f"/api/storage/providers/{api.local_id}")

        assert response.json()["photos_removed"] == 1
        assert await api.catalog.count() == 0
        assert await api.providers.get(api.local_id) is None
        assert await api.registry.get_provider(api.local_id) is None
        # Direct-serve files belong to the provider's directory and are left alone
        assert (api.photos / "beach.jpg").exists()
        assert again.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_keeps_photos_by_default_and_drops_cached_files(self, api, make_jpeg):
        await api.engine.sync(api.local_id)
        google_id = await api.providers.add(ProviderConfig(
            id=0, kind=ProviderKind.GOOGLE_PHOTOS, name="Google Photos", configuration=GooglePhotosConfig().to_json(),
        ))
        await api.cache.put(CacheFileRequest(
            original_url="https://media.test/item-1",
            provider_id=google_id,
            stream=MemoryByteStream(make_jpeg(color=(1, 2, 3))),
            content_type="image/jpeg",
            provider_file_id="item-1",
        ))

        async with api.client() as client:
            local = await client.delete(f"/api/storage/providers/{api.local_id}")
            google = await client.delete(f"/api/storage/providers/{google_id}")

        assert local.json()["photos_removed"] == 0
        assert await api.catalog.count() == 1
        assert google.json()["cached_files_removed"] == 1
        assert await api.cache.count() == 0
        assert await api.providers.list_all() == []


class TestSyncRoutes:
    """Tests for sync routes."""

    @pytest.mark.asyncio
    async def test_inline_sync_and_scan(self, api):
        async with api.client() as client:
            scan = await client.get(f"/api/storage/sync/{api.local_id}/scan")
            sync = await client.post(f"/api/storage/sync/{api.local_id}", json={"remove_deleted": False})
            status = await client.get(f"/api/storage/sync/{api.local_id}/status")

        assert scan.json()["new_files_count"] == 1
        assert sync.status_code == 200
        assert sync.json()["status"] == "success"
        assert sync.json()["files_added"] == 1
        assert status.json()["is_in_progress"] is False
        assert status.json()["last_sync_result"]["files_added"] == 1

    @pytest.mark.asyncio
    async def test_sync_unknown_provider(self, api):
        async with api.client() as client:
            response = await client.post("/api/storage/sync/999")
        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        assert response.json()["error_message"] == PROVIDER_NOT_FOUND_MESSAGE

    @pytest.mark.asyncio
    async def test_background_sync(self, api):
        async with api.client() as client:
            response = await client.post(f"/api/storage/sync/{api.local_id}?background=true")
            assert response.status_code == 200
            assert response.json()["provider_id"] == api.local_id
            for _ in range(200):
                if not api.engine.is_syncing(api.local_id):
                    break
                await asyncio.sleep(0.01)
            status = await client.get(f"/api/storage/sync/{api.local_id}/status")

        assert status.json()["last_sync_result"]["status"] == "success"

    @pytest.mark.asyncio
    async def test_sync_all(self, api):
        async with api.client() as client:
            response = await client.post("/api/storage/sync")
        assert [r["provider_id"] for r in response.json()] == [api.local_id]

    @pytest.mark.asyncio
    async def test_cancel_without_running_sync(self, api):
        async with api.client() as client:
            response = await client.post(f"/api/storage/sync/{api.local_id}/cancel")
        assert response.status_code == 404


class TestCacheRoutes:
    """Tests for cache management routes."""

    @pytest.mark.asyncio
    async def test_status_listing_and_delete(self, api, make_jpeg):
        record = await api.cache.put(CacheFileRequest(
            original_url="https://media.test/a",
            provider_id=api.local_id,
            stream=MemoryByteStream(make_jpeg()),
            content_type="image/jpeg",
        ))

        async with api.client() as client:
            status = await client.get("/api/storage/cache/status")
            files = await client.get("/api/storage/cache/files", params={"page": 1, "page_size": 10})
            deleted = await client.delete(f"/api/storage/cache/files/{record.file_hash}")
            again = await client.delete(f"/api/storage/cache/files/{record.file_hash}")

        assert status.json()["file_count"] == 1
        assert files.json()["total"] == 1
        assert files.json()["items"][0]["file_hash"] == record.file_hash
        assert deleted.json() == {"file_hash": record.file_hash, "deleted": True}
        assert again.status_code == 404

    @pytest.mark.asyncio
    async def test_clear_and_evict(self, api, make_jpeg):
        await api.cache.put(CacheFileRequest(
            original_url="https://media.test/a",
            provider_id=api.local_id,
            stream=MemoryByteStream(make_jpeg()),
        ))

        async with api.client() as client:
            evicted = await client.post("/api/storage/cache/evict", json={"max_size_bytes": 0})
            cleared = await client.post("/api/storage/cache/clear")

        assert evicted.json() == {"evicted": 1, "max_size_bytes": 0}
        assert cleared.json() == {"removed": 0}

    @pytest.mark.asyncio
    async def test_invalid_page(self, api):
        async with api.client() as client:
            response = await client.get("/api/storage/cache/files", params={"page": 0})
        assert response.status_code == 422


class TestGooglePhotosRoutes:
    """Tests for provider creation, the OAuth callback and picker routes."""

    @pytest.mark.asyncio
    async def test_create_provider_starts_disabled(self, api):
        async with api.client() as client:
            response = await client.post("/api/storage/google-photos/providers", json={"name": "Family"})
        body = response.json()
        assert body["kind"] == "google_photos"
        assert body["is_enabled"] is False
        assert (await api.providers.get(body["id"])).name == "Family"

    @pytest.mark.asyncio
    async def test_authorize_url(self, api):
        async with api.client() as client:
            ok = await client.get("/api/storage/google-photos/7/authorize-url")
            missing = await client.get("/api/storage/google-photos/404/authorize-url")
        assert ok.json() == {"provider_id": 7, "url": "https://accounts.test/auth?state=7"}
        assert missing.status_code == 404

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params,message,error_code", [
        ({"error": "access_denied"}, "Authorization failed: access_denied", "OAUTH_DENIED"),
        ({"state": "5"}, "No authorization code received", "MISSING_CODE"),
        ({"code": "abc"}, "No provider ID received", "MISSING_STATE"),
        ({"code": "abc", "state": "five"}, "Invalid provider ID: five", "INVALID_STATE"),
    ])
    async def test_callback_rejections(self, api, params, message, error_code):
        async with api.client() as client:
            response = await client.get("/api/storage/google-photos/oauth/callback", params=params)
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["message"] == message
        assert body["error_code"] == error_code
        assert api.flow.exchanged == []

    @pytest.mark.asyncio
    async def test_callback_exchange_failure(self, api):
        api.flow.error = InsufficientScopesError("Google Photos picker access was not granted.")
        async with api.client() as client:
            response = await client.get(
                "/api/storage/google-photos/oauth/callback", params={"code": "abc", "state": "5"}
            )
        assert response.status_code == 400
        assert response.json()["error_code"] == "INSUFFICIENT_SCOPES"
        assert response.json()["provider_id"] == 5

    @pytest.mark.asyncio
    async def test_callback_success(self, api):
        async with api.client() as client:
            response = await client.get(
                "/api/storage/google-photos/oauth/callback", params={"code": "abc", "state": "5"}
            )
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["message"] == "Google Photos connected"
        assert api.flow.exchanged == [(5, "abc")]

    @pytest.mark.asyncio
    async def test_callback_redirects_to_frontend(self, api):
        settings = GoogleOAuthSettings(frontend_url="http://frame.local/settings")
        async with api.client(google_settings=settings) as client:
            response = await client.get("/api/storage/google-photos/oauth/callback", params={"state": "5"})

        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert location.netloc == "frame.local"
        query = {k: v[0] for k, v in parse_qs(location.query).items()}
        assert query == {
            "status": "error",
            "message": "No authorization code received",
            "error_code": "MISSING_CODE",
        }

    @pytest.mark.asyncio
    async def test_unknown_picker_session(self, api):
        async with api.client() as client:
            poll = await client.get("/api/storage/google-photos/picker/sessions/nope")
            delete = await client.delete("/api/storage/google-photos/picker/sessions/nope")
            listing = await client.get("/api/storage/google-photos/3/picker/sessions")
        assert poll.status_code == 404
        assert delete.status_code == 404
        assert listing.json() == {"provider_id": 3, "sessions": []}


class TestUploadAndFileRoutes:
    """Tests for uploading into the library and serving provider files."""

    @pytest.mark.asyncio
    async def test_upload_lands_in_local_provider_and_catalog(self, api, make_jpeg):
        data = make_jpeg(width=12, height=9, color=(5, 150, 5))
        async with api.client() as client:
            response = await client.post(
                "/api/storage/upload", files={"file": ("sunset.jpg", data, "image/jpeg")}
            )

        assert response.status_code == 200
        body = response.json()
        assert body["provider_id"] == api.local_id
        assert body["file_name"] == "sunset.jpg"
        assert (api.photos / body["file_id"]).read_bytes() == data
        photo = body["photo"]
        assert photo["original_filename"] == "sunset.jpg"
        assert (photo["width"], photo["height"]) == (12, 9)
        assert await api.catalog.count() == 1

    @pytest.mark.asyncio
    async def test_upload_rejects_unsupported_types(self, api):
        async with api.client() as client:
            response = await client.post(
                "/api/storage/upload", files={"file": ("notes.txt", b"hello", "text/plain")}
            )
        assert response.status_code == 400
        assert await api.catalog.count() == 0
        assert sorted(p.name for p in api.photos.rglob("*") if p.is_file()) == ["beach.jpg"]

    @pytest.mark.asyncio
    async def test_upload_size_limit(self, api, make_jpeg, monkeypatch):
        monkeypatch.setattr(file_routes, "MAX_UPLOAD_BYTES", 16)
        async with api.client() as client:
            response = await client.post(
                "/api/storage/upload", files={"file": ("big.jpg", make_jpeg(), "image/jpeg")}
            )
        assert response.status_code == 413
        assert response.json()["detail"]["error_code"] == "FILE_TOO_LARGE"
        assert await api.catalog.count() == 0
        assert sorted(p.name for p in api.photos.rglob("*") if p.is_file()) == ["beach.jpg"]

    @pytest.mark.asyncio
    async def test_serves_local_files(self, api, make_jpeg):
        nested = api.photos / "trips" / "2023"
        nested.mkdir(parents=True)
        (nested / "dune.png").write_bytes(b"not really a png")

        async with api.client() as client:
            beach = await client.get(f"/api/storage/files/{api.local_id}/beach.jpg")
            dune = await client.get(f"/api/storage/files/{api.local_id}/trips/2023/dune.png")
            missing = await client.get(f"/api/storage/files/{api.local_id}/nope.jpg")
            unknown = await client.get("/api/storage/files/999/beach.jpg")

        assert beach.status_code == 200
        assert beach.content == make_jpeg()
        assert beach.headers["content-type"] == "image/jpeg"
        assert dune.content == b"not really a png"
        assert dune.headers["content-type"] == "image/png"
        assert missing.status_code == 404
        assert unknown.status_code == 404

    @pytest.mark.asyncio
    async def test_serves_cached_remote_items(self, api, make_jpeg):
        data = make_jpeg(color=(40, 40, 200))
        google_id = await api.providers.add(ProviderConfig(
            id=0, kind=ProviderKind.GOOGLE_PHOTOS, name="Google Photos", configuration=GooglePhotosConfig().to_json(),
        ))
        await api.cache.put(CacheFileRequest(
            original_url="https://media.test/item-1",
            provider_id=google_id,
            stream=MemoryByteStream(data),
            content_type="image/jpeg",
            provider_file_id="item-1",
        ))

        async with api.client() as client:
            cached = await client.get(f"/api/storage/files/{google_id}/item-1")
            uncached = await client.get(f"/api/storage/files/{google_id}/item-2")

        assert cached.status_code == 200
        assert cached.content == data
        assert cached.headers["content-type"] == "image/jpeg"
        assert uncached.status_code == 404
