"""
Provider registry.

Resolves provider rows into initialized provider instances and keeps one
live instance per provider id. The registry is built once at startup and
passed to everything that needs providers.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional

import httpx

from ..data.base import PhotoCatalog, ProviderRepository
from ..exceptions import ProviderConfigurationError, ProviderNotImplementedError
from ..models.provider import LocalStorageConfig, ProviderConfig, ProviderKind
from . import scanner
from .providers.base import StorageProvider
from .providers.google_photos import GooglePhotosProvider
from .providers.local import LocalStorageProvider

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_PROVIDER_NAME = "Local Storage"


class ProviderRegistry:
    """Memoizing factory for storage providers."""

    def __init__(
        self,
        provider_repository: ProviderRepository,
        local_path: str,
        token_manager=None,
        cache=None,
        catalog: Optional[PhotoCatalog] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.provider_repository = provider_repository
        self.local_path = local_path
        self.token_manager = token_manager
        self.cache = cache
        self.catalog = catalog
        self.http_client = http_client
        self._instances: Dict[int, StorageProvider] = {}
        self._lock = asyncio.Lock()

    def reserved_dir_names(self) -> List[str]:
        """Directory names that never hold library media."""
        names = [scanner.THUMBNAIL_DIR_NAME]
        if self.cache is not None:
            names.append(self.cache.cache_root.name)
        return names

    def create_provider(self, kind: ProviderKind) -> StorageProvider:
        """
        Construct an uninitialized provider of the given kind.

        This is the only place provider classes are instantiated.

        Raises:
            ProviderNotImplementedError: For kinds that have no implementation
        """
        if kind == ProviderKind.LOCAL:
            return LocalStorageProvider(
                default_base_path=self.local_path,
                excluded_dirs=self.reserved_dir_names(),
            )
        if kind == ProviderKind.GOOGLE_PHOTOS:
            return GooglePhotosProvider(
                token_manager=self.token_manager,
                cache=self.cache,
                catalog=self.catalog,
                http_client=self.http_client,
            )
        if kind == ProviderKind.GOOGLE_DRIVE:
            raise ProviderNotImplementedError("Google Drive provider not yet implemented")
        if kind == ProviderKind.ONEDRIVE:
            raise ProviderNotImplementedError("OneDrive provider not yet implemented")
        raise ProviderConfigurationError(f"Unknown provider kind: {kind}")

    async def get_provider(self, provider_id: int) -> Optional[StorageProvider]:
        """
        Get the live provider instance for an id.

        Returns:
            The initialized provider, or None if the id is missing or disabled

        Raises:
            ProviderNotImplementedError: If the provider's kind has no implementation
            ProviderConfigurationError: If its configuration is invalid
        """
        async with self._lock:
            provider = self._instances.get(provider_id)
            if provider is not None:
                return provider

            config = await self.provider_repository.get(provider_id)
            if config is None or not config.is_enabled:
                return None
            return await self._instantiate(config)

    async def _instantiate(self, config: ProviderConfig) -> StorageProvider:
        provider = self.create_provider(config.kind)
        await provider.initialize(config.id, config.name, config.configuration)
        self._instances[config.id] = provider
        logger.debug(f"Initialized {config.kind.value} provider {config.id} ({config.name})")
        return provider

    async def get_all_providers(self) -> List[StorageProvider]:
        """Initialize every enabled provider; ones that fail are logged and left out."""
        return await self._resolve(await self.provider_repository.list_all())

    async def get_providers_by_kind(self, kind: ProviderKind) -> List[StorageProvider]:
        return await self._resolve(await self.provider_repository.list_by_kind(kind))

    async def _resolve(self, configs: List[ProviderConfig]) -> List[StorageProvider]:
        providers = []
        async with self._lock:
            for config in configs:
                if not config.is_enabled:
                    continue
                provider = self._instances.get(config.id)
                if provider is None:
                    try:
                        provider = await self._instantiate(config)
                    except ProviderConfigurationError as e:
                        logger.error(f"Skipping provider {config.id}: {e.to_log_string()}")
                        continue
                providers.append(provider)
        return providers

    async def get_or_create_default_local_provider(self) -> StorageProvider:
        """
        Return the first enabled Local provider, creating one on first run.

        The created provider stores into the configured local path with
        date-organized uploads.
        """
        for config in await self.provider_repository.list_by_kind(ProviderKind.LOCAL):
            if config.is_enabled:
                provider = await self.get_provider(config.id)
                if provider is not None:
                    return provider

        base = Path(self.local_path)
        base.mkdir(parents=True, exist_ok=True)
        config = ProviderConfig(
            id=0,
            kind=ProviderKind.LOCAL,
            name=DEFAULT_LOCAL_PROVIDER_NAME,
            is_enabled=True,
            configuration=LocalStorageConfig(
                base_path=str(base.resolve()),
                organize_by_date=True,
                watch_for_changes=True,
            ).to_json(),
        )
        provider_id = await self.provider_repository.add(config)
        logger.info(f"Created default local storage provider {provider_id} at {base}")
        return await self.get_provider(provider_id)

    async def invalidate(self, provider_id: int) -> None:
        """Drop one memoized instance so the next lookup re-reads its configuration."""
        async with self._lock:
            self._instances.pop(provider_id, None)

    async def clear_cache(self) -> None:
        """Drop every memoized instance."""
        async with self._lock:
            self._instances.clear()
