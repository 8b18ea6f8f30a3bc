"""
Async byte streams handed out by providers and the cache.

A stream is owned by whoever opened it and must be closed, either with
aclose() or by using it as an async context manager. Disk reads run in the
default executor so the event loop never blocks on file I/O.
"""

import asyncio
import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class ByteStream(ABC):
    """Async iterator over chunks of bytes."""

    content_type: Optional[str] = None
    content_length: Optional[int] = None

    def __aiter__(self) -> "ByteStream":
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.read_chunk()
        if not chunk:
            raise StopAsyncIteration
        return chunk

    @abstractmethod
    async def read_chunk(self) -> bytes:
        """Read the next chunk; an empty result means end of stream."""
        pass

    @abstractmethod
    async def aclose(self) -> None:
        """Release the underlying file or connection."""
        pass

    async def read_all(self) -> bytes:
        """Read the remainder of the stream into memory."""
        parts = []
        async for chunk in self:
            parts.append(chunk)
        return b"".join(parts)

    async def __aenter__(self) -> "ByteStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


class MemoryByteStream(ByteStream):
    """Stream over an in-memory buffer."""

    def __init__(self, data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE, content_type: Optional[str] = None):
        self._data = data
        self._offset = 0
        self._chunk_size = chunk_size
        self.content_type = content_type
        self.content_length = len(data)

    async def read_chunk(self) -> bytes:
        chunk = self._data[self._offset:self._offset + self._chunk_size]
        self._offset += len(chunk)
        return chunk

    async def aclose(self) -> None:
        self._data = b""


class FileByteStream(ByteStream):
    """Stream over a file on local disk."""

    def __init__(self, path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE, content_type: Optional[str] = None):
        self.path = Path(path)
        self._chunk_size = chunk_size
        self._handle = None
        self._closed = False
        self.content_type = content_type

    async def read_chunk(self) -> bytes:
        if self._closed:
            return b""
        loop = asyncio.get_event_loop()
        if self._handle is None:
            self._handle = await loop.run_in_executor(None, open, self.path, "rb")
        return await loop.run_in_executor(None, self._handle.read, self._chunk_size)

    async def aclose(self) -> None:
        self._closed = True
        if self._handle is not None:
            handle, self._handle = self._handle, None
            await asyncio.get_event_loop().run_in_executor(None, handle.close)


class HttpByteStream(ByteStream):
    """Stream over the body of an open httpx response."""

    def __init__(self, response: httpx.Response, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._response = response
        self._iterator = response.aiter_bytes(chunk_size)
        self.content_type = response.headers.get("content-type")
        length = response.headers.get("content-length")
        self.content_length = int(length) if length and length.isdigit() else None

    @classmethod
    async def open(
        cls,
        client: httpx.AsyncClient,
        url: str,
        headers: Optional[dict] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> "HttpByteStream":
        """
        Issue a GET and return its body as a stream.

        Raises:
            httpx.HTTPStatusError: If the server answers with an error status
        """
        request = client.build_request("GET", url, headers=headers)
        response = await client.send(request, stream=True)
        if response.is_error:
            await response.aread()
            await response.aclose()
            response.raise_for_status()
        return cls(response, chunk_size)

    async def read_chunk(self) -> bytes:
        try:
            return await self._iterator.__anext__()
        except StopAsyncIteration:
            return b""

    async def aclose(self) -> None:
        await self._response.aclose()


def sha256_file(path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Hex SHA-256 of a file. Blocking; run it in an executor."""
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            hasher.update(chunk)
    return hasher.hexdigest()
