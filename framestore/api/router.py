"""
Main storage API router.
"""

from fastapi import APIRouter

from .routes import cache_router, files_router, google_photos_router, providers_router, sync_router


def create_storage_router(
    registry=None,
    provider_repository=None,
    sync_engine=None,
    cache=None,
    token_manager=None,
    oauth_flow=None,
    picker_service=None,
    google_settings=None,
) -> APIRouter:
    """Create the storage API router.

    Args:
        registry: Provider registry for resolving provider instances
        provider_repository: Provider row persistence
        sync_engine: Sync engine for provider syncs
        cache: Content-addressable cache
        token_manager: OAuth token manager for Google Photos
        oauth_flow: Authorization-code flow for connecting Google Photos
        picker_service: Picker session service
        google_settings: Google OAuth settings; its frontend URL receives OAuth redirects

    Returns:
        FastAPI router with all storage endpoints
    """
    from . import routes
    routes.set_services(
        registry=registry,
        provider_repository=provider_repository,
        sync_engine=sync_engine,
        cache=cache,
        token_manager=token_manager,
        oauth_flow=oauth_flow,
        picker_service=picker_service,
        google_settings=google_settings,
    )

    router = APIRouter(prefix="/api/storage")

    router.include_router(providers_router, tags=["Providers"])
    router.include_router(sync_router, tags=["Sync"])
    router.include_router(cache_router, tags=["Cache"])
    router.include_router(google_photos_router, tags=["Google Photos"])
    router.include_router(files_router, tags=["Files"])

    return router
