"""
Sync API routes.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ...models.sync import SyncRequest
from . import get_sync_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

# Strong references to background syncs so they are not garbage collected
_background_syncs = set()


class SyncRequestModel(BaseModel):
    folder_id: Optional[str] = None
    skip_existing: bool = True
    remove_deleted: bool = True
    max_files: int = Field(default=0, ge=0)
    recursive: bool = True

    def to_request(self) -> SyncRequest:
        return SyncRequest(
            folder_id=self.folder_id,
            skip_existing=self.skip_existing,
            remove_deleted=self.remove_deleted,
            max_files=self.max_files,
            recursive=self.recursive,
        )


@router.post("/{provider_id}")
async def trigger_sync(
    provider_id: int,
    body: Optional[SyncRequestModel] = None,
    background: bool = False,
) -> Dict[str, Any]:
    """Sync a provider, either inline or as a background task."""
    engine = get_sync_engine()
    request = (body or SyncRequestModel()).to_request()

    if background:
        if engine.is_syncing(provider_id):
            raise HTTPException(409, "A sync is already in progress for this provider")
        task = asyncio.create_task(engine.sync(provider_id, request))
        _background_syncs.add(task)
        task.add_done_callback(_background_syncs.discard)
        # Let the task register itself so the status reflects it immediately
        await asyncio.sleep(0)
        return engine.get_sync_status(provider_id).to_dict()

    result = await engine.sync(provider_id, request)
    return result.to_dict()


@router.post("")
async def trigger_sync_all(body: Optional[SyncRequestModel] = None) -> List[Dict[str, Any]]:
    """Sync every enabled provider."""
    results = await get_sync_engine().sync_all((body or SyncRequestModel()).to_request())
    return [result.to_dict() for result in results]


@router.get("/{provider_id}/status")
async def get_sync_status(provider_id: int) -> Dict[str, Any]:
    return get_sync_engine().get_sync_status(provider_id).to_dict()


@router.post("/{provider_id}/cancel")
async def cancel_sync(provider_id: int) -> Dict[str, Any]:
    cancelled = await get_sync_engine().cancel_sync(provider_id)
    if not cancelled:
        raise HTTPException(404, "No sync in progress for this provider")
    return {"provider_id": provider_id, "cancelled": True}


@router.get("/{provider_id}/scan")
async def scan_provider(provider_id: int) -> Dict[str, Any]:
    """Preview what a sync would import."""
    result = await get_sync_engine().scan(provider_id)
    return result.to_dict()
