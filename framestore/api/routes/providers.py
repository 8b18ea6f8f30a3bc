"""
Storage provider API routes.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ...exceptions import StorageError
from ...models.provider import ProviderConfig, ProviderKind
from . import (
    get_cache,
    get_provider_repository,
    get_registry,
    get_sync_engine,
    get_token_manager,
    http_error,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/providers", tags=["providers"])


class CreateProviderRequest(BaseModel):
    kind: ProviderKind
    name: str = Field(..., min_length=1, max_length=100)
    is_enabled: bool = True
    configuration: Optional[str] = None


class UpdateProviderRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    is_enabled: Optional[bool] = None
    configuration: Optional[str] = None


class TestConnectionResponse(BaseModel):
    provider_id: int
    success: bool


async def _provider_dict(config) -> Dict[str, Any]:
    data = config.to_dict()
    data["is_syncing"] = get_sync_engine().is_syncing(config.id)
    return data


async def _load(provider_id: int) -> ProviderConfig:
    config = await get_provider_repository().get(provider_id)
    if config is None:
        raise HTTPException(404, f"Storage provider {provider_id} not found")
    return config


async def _validate_configuration(kind: ProviderKind, name: str, configuration: Optional[str]) -> None:
    """Initialize a throwaway provider so bad configuration is rejected before it is stored."""
    try:
        provider = get_registry().create_provider(kind)
        await provider.initialize(0, name, configuration)
    except StorageError as e:
        raise http_error(e)


@router.get("")
async def list_providers() -> List[Dict[str, Any]]:
    """List every configured provider."""
    configs = await get_provider_repository().list_all()
    return [await _provider_dict(config) for config in configs]


@router.post("", status_code=201)
async def create_provider(body: CreateProviderRequest) -> Dict[str, Any]:
    name = body.name.strip()
    if not name:
        raise HTTPException(400, "Name is required")
    await _validate_configuration(body.kind, name, body.configuration)

    config = ProviderConfig(
        id=0,
        kind=body.kind,
        name=name,
        is_enabled=body.is_enabled,
        configuration=body.configuration,
    )
    await get_provider_repository().add(config)
    await get_registry().clear_cache()
    logger.info(f"Added {config.kind.value} provider {config.id} ({config.name})")
    return await _provider_dict(config)


@router.get("/{provider_id}")
async def get_provider(provider_id: int) -> Dict[str, Any]:
    return await _provider_dict(await _load(provider_id))


@router.put("/{provider_id}")
async def update_provider(provider_id: int, body: UpdateProviderRequest) -> Dict[str, Any]:
    """Rename, enable or disable a provider, or replace its configuration."""
    config = await _load(provider_id)

    if body.name is not None and body.name.strip():
        config.name = body.name.strip()
    if body.configuration is not None:
        await _validate_configuration(config.kind, config.name, body.configuration)
        config.configuration = body.configuration
    if body.is_enabled is not None:
        config.is_enabled = body.is_enabled

    await get_provider_repository().update(config)
    await get_registry().clear_cache()
    logger.info(f"Updated provider {provider_id}")
    return await _provider_dict(config)


@router.delete("/{provider_id}")
async def delete_provider(provider_id: int, delete_photos: bool = False) -> Dict[str, Any]:
    """
    Remove a provider.

    Cloud tokens are revoked on a best-effort basis and the provider's cached
    blobs are dropped. Its catalog entries are removed only when
    delete_photos is set; otherwise they stay in the library.
    """
    config = await _load(provider_id)
    engine = get_sync_engine()
    if engine.is_syncing(provider_id):
        raise HTTPException(409, "A sync is in progress for this provider")

    token_manager = get_token_manager(required=False)
    if config.kind == ProviderKind.GOOGLE_PHOTOS and token_manager is not None:
        try:
            await token_manager.disconnect(provider_id)
        except StorageError as e:
            logger.warning(f"Could not disconnect provider {provider_id} before deleting it: {e.to_log_string()}")

    photos_removed = 0
    if delete_photos:
        for photo in await engine.catalog.list_by_provider(provider_id):
            await engine.importer.remove(photo)
            photos_removed += 1

    cache_removed = await get_cache().clear_for_provider(provider_id)
    await get_provider_repository().delete(provider_id)
    await get_registry().clear_cache()
    logger.info(f"Deleted provider {provider_id} ({photos_removed} photos, {cache_removed} cached files)")
    return {
        "provider_id": provider_id,
        "deleted": True,
        "photos_removed": photos_removed,
        "cached_files_removed": cache_removed,
    }


@router.post("/{provider_id}/test", response_model=TestConnectionResponse)
async def test_provider(provider_id: int):
    """Check that a provider is reachable with its current configuration."""
    try:
        provider = await get_registry().get_provider(provider_id)
    except StorageError as e:
        raise http_error(e)
    if provider is None:
        raise HTTPException(404, "Storage provider not found or disabled")
    return TestConnectionResponse(provider_id=provider_id, success=await provider.test_connection())


@router.post("/{provider_id}/disconnect")
async def disconnect_provider(provider_id: int) -> Dict[str, Any]:
    """Revoke a cloud provider's tokens and disable it."""
    config = await _load(provider_id)
    if config.kind != ProviderKind.GOOGLE_PHOTOS:
        raise HTTPException(400, "Only cloud providers can be disconnected")
    try:
        updated = await get_token_manager().disconnect(provider_id)
    except StorageError as e:
        raise http_error(e)
    await get_registry().invalidate(provider_id)
    return updated.to_dict()
