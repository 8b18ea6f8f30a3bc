"""
Shared fixtures for framestore tests.
"""

import io
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from PIL import Image

from framestore.data import SQLiteConnection, run_migrations


class FakeClock:
    """Settable clock passed wherever components take a clock callable."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def db(tmp_path):
    """Migrated SQLite database in a temp directory."""
    connection = SQLiteConnection(str(tmp_path / "framestore.db"), pool_size=2)
    await connection.connect()
    await run_migrations(connection)
    yield connection
    await connection.disconnect()


@pytest.fixture
def make_jpeg():
    """Factory for small JPEG payloads; distinct colors give distinct bytes."""

    def _make(width: int = 8, height: int = 6, color=(200, 30, 30)) -> bytes:
        buffer = io.BytesIO()
        Image.new("RGB", (width, height), color).save(buffer, format="JPEG")
        return buffer.getvalue()

    return _make
