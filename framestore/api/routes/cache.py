"""
Cache management API routes.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from . import get_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cache", tags=["cache"])


class EvictRequest(BaseModel):
    max_size_bytes: Optional[int] = Field(default=None, ge=0)


@router.get("/status")
async def cache_status() -> Dict[str, Any]:
    status = await get_cache().get_status()
    return status.to_dict()


@router.get("/files")
async def list_cached_files(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
) -> Dict[str, Any]:
    """List cached files, most recently used first."""
    records, total = await get_cache().list_paged(page, page_size)
    return {
        "items": [record.to_dict() for record in records],
        "page": page,
        "page_size": page_size,
        "total": total,
    }


@router.delete("/files/{file_hash}")
async def delete_cached_file(file_hash: str) -> Dict[str, Any]:
    if not await get_cache().delete(file_hash):
        raise HTTPException(404, "Cached file not found")
    return {"file_hash": file_hash, "deleted": True}


@router.post("/clear")
async def clear_cache(provider_id: Optional[int] = None) -> Dict[str, Any]:
    """Remove cached files, for one provider or all of them."""
    cache = get_cache()
    if provider_id is None:
        removed = await cache.clear_all()
    else:
        removed = await cache.clear_for_provider(provider_id)
    return {"removed": removed}


@router.post("/evict")
async def evict(body: Optional[EvictRequest] = None) -> Dict[str, Any]:
    """Evict least recently used files down to a budget, the configured one by default."""
    cache = get_cache()
    budget = body.max_size_bytes if body and body.max_size_bytes is not None else cache.max_size_bytes
    evicted = await cache.evict_lru(budget)
    return {"evicted": evicted, "max_size_bytes": budget}
