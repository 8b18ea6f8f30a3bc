"""
Upload and file-serving API routes.

Uploads land in the default local provider and are catalogued straight away.
Files of any provider are served through the provider's stream, so remote
media that is already cached is served from local disk.
"""

import logging
from typing import Any, AsyncIterator, Dict

from fastapi import APIRouter, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse

from ...exceptions import FileTooLargeError, StorageError
from ...models.files import StorageFileInfo
from ...storage import scanner
from ...storage.streams import DEFAULT_CHUNK_SIZE, ByteStream
from . import get_registry, get_sync_engine, http_error

logger = logging.getLogger(__name__)

router = APIRouter(tags=["files"])

MAX_UPLOAD_BYTES = 100 * 1024 * 1024


class UploadFileStream(ByteStream):
    """Stream over a multipart upload that enforces the upload size limit."""

    def __init__(self, upload: UploadFile, limit: int = MAX_UPLOAD_BYTES, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._upload = upload
        self._limit = limit
        self._chunk_size = chunk_size
        self.bytes_read = 0
        self.content_type = upload.content_type

    async def read_chunk(self) -> bytes:
        chunk = await self._upload.read(self._chunk_size)
        self.bytes_read += len(chunk)
        if self.bytes_read > self._limit:
            raise _too_large(self._limit)
        return chunk

    async def aclose(self) -> None:
        await self._upload.close()


def _too_large(limit: int) -> FileTooLargeError:
    return FileTooLargeError(
        f"File exceeds maximum size of {limit // (1024 * 1024)} MB",
        context={"max_bytes": limit},
    )


def _media_content_type(content_type: str) -> str:
    # Browsers often send application/octet-stream; the extension is more reliable then
    if content_type and content_type.startswith(("image/", "video/")):
        return content_type
    return ""


@router.post("/upload")
async def upload_file(file: UploadFile = File(...)) -> Dict[str, Any]:
    """Store an uploaded photo or video in the default local provider and add it to the library."""
    if not file.filename:
        raise HTTPException(400, "No file was provided")

    async with UploadFileStream(file, limit=MAX_UPLOAD_BYTES) as stream:
        try:
            if file.size is not None and file.size > MAX_UPLOAD_BYTES:
                raise _too_large(MAX_UPLOAD_BYTES)

            provider = await get_registry().get_or_create_default_local_provider()
            result = await provider.upload(file.filename, stream, _media_content_type(file.content_type))
            if not result.success:
                raise HTTPException(400, result.error_message)

            info = StorageFileInfo(
                file_id=result.file_id,
                file_name=file.filename,
                file_size=result.file_size,
                media_type=scanner.get_media_type(result.file_name),
                full_path=result.file_path,
                content_type=result.content_type,
            )
            try:
                photo = await get_sync_engine().import_file(provider, info)
            except BaseException:
                await provider.delete(result.file_id)
                raise
        except StorageError as e:
            raise http_error(e)

    logger.info(f"Uploaded {file.filename} as photo {photo.id}")
    return {
        "provider_id": provider.provider_id,
        "file_id": result.file_id,
        "file_name": result.file_name,
        "file_size": result.file_size,
        "photo": photo.to_dict(),
    }


async def _drain(stream: ByteStream) -> AsyncIterator[bytes]:
    async with stream:
        async for chunk in stream:
            yield chunk


@router.get("/files/{provider_id}/{file_id:path}")
async def get_file(provider_id: int, file_id: str):
    """Stream a file from a provider."""
    try:
        provider = await get_registry().get_provider(provider_id)
        if provider is None:
            raise HTTPException(404, "Storage provider not found or disabled")
        stream = await provider.open_stream(file_id)
    except StorageError as e:
        raise http_error(e)

    headers = {}
    if stream.content_length is not None:
        headers["Content-Length"] = str(stream.content_length)
    media_type = stream.content_type or scanner.get_content_type(file_id)
    return StreamingResponse(_drain(stream), media_type=media_type, headers=headers)
