"""
Storage API route modules.
"""

from fastapi import HTTPException

from ...exceptions import (
    AccessDeniedError,
    AuthorizationError,
    FileTooLargeError,
    PickerSessionNotReadyError,
    ProviderConfigurationError,
    ProviderNotFoundError,
    ProviderNotImplementedError,
    StorageError,
    StorageFileNotFoundError,
    TransientProviderError,
    UnsupportedOperationError,
)

# Service references (set by router.py)
_registry = None
_provider_repository = None
_sync_engine = None
_cache = None
_token_manager = None
_oauth_flow = None
_picker_service = None
_google_settings = None


def set_services(
    registry=None,
    provider_repository=None,
    sync_engine=None,
    cache=None,
    token_manager=None,
    oauth_flow=None,
    picker_service=None,
    google_settings=None,
):
    """Set service references for route handlers."""
    global _registry, _provider_repository, _sync_engine, _cache
    global _token_manager, _oauth_flow, _picker_service, _google_settings
    _registry = registry
    _provider_repository = provider_repository
    _sync_engine = sync_engine
    _cache = cache
    _token_manager = token_manager
    _oauth_flow = oauth_flow
    _picker_service = picker_service
    _google_settings = google_settings


def _require(service, name: str):
    if service is None:
        raise HTTPException(status_code=503, detail=f"{name} not available")
    return service


def get_registry():
    """Get provider registry."""
    return _require(_registry, "Provider registry")


def get_provider_repository():
    """Get provider repository."""
    return _require(_provider_repository, "Provider repository")


def get_sync_engine():
    """Get sync engine."""
    return _require(_sync_engine, "Sync engine")


def get_cache():
    """Get content cache."""
    return _require(_cache, "Cache")


def get_token_manager(required: bool = True):
    """Get OAuth token manager; None when it is optional and not configured."""
    if not required:
        return _token_manager
    return _require(_token_manager, "Token manager")


def get_oauth_flow():
    """Get Google OAuth flow."""
    return _require(_oauth_flow, "OAuth flow")


def get_picker_service():
    """Get picker session service."""
    return _require(_picker_service, "Picker service")


def get_google_settings():
    """Get Google OAuth settings, if configured."""
    return _google_settings


_STATUS_CODES = [
    (ProviderNotImplementedError, 501),
    (ProviderNotFoundError, 404),
    (StorageFileNotFoundError, 404),
    (ProviderConfigurationError, 400),
    (UnsupportedOperationError, 400),
    (FileTooLargeError, 413),
    (AccessDeniedError, 403),
    (AuthorizationError, 401),
    (PickerSessionNotReadyError, 409),
    (TransientProviderError, 503),
]


def http_error(error: StorageError) -> HTTPException:
    """Translate a storage error into an HTTP error response."""
    for error_type, status in _STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=status, detail=error.to_dict())
    return HTTPException(status_code=500, detail=error.to_dict())


from .providers import router as providers_router  # noqa: E402
from .sync import router as sync_router  # noqa: E402
from .cache import router as cache_router  # noqa: E402
from .google_photos import router as google_photos_router  # noqa: E402
from .files import router as files_router  # noqa: E402

__all__ = [
    "set_services",
    "http_error",
    "providers_router",
    "sync_router",
    "cache_router",
    "google_photos_router",
    "files_router",
]
