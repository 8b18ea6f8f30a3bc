"""
Google Photos API routes: connection, OAuth callback and picker sessions.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field

from ...exceptions import StorageError
from ...models.provider import GooglePhotosConfig, ProviderConfig, ProviderKind
from . import (
    get_google_settings,
    get_oauth_flow,
    get_picker_service,
    get_provider_repository,
    http_error,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/google-photos", tags=["google-photos"])


class CreateGoogleProviderRequest(BaseModel):
    name: str = Field(default="Google Photos", min_length=1, max_length=100)
    client_id: str = ""
    client_secret: str = ""


class AuthorizeUrlResponse(BaseModel):
    provider_id: int
    url: str


class StartPickerRequest(BaseModel):
    max_item_count: Optional[int] = Field(default=None, ge=1, le=2000)


def _callback_response(
    success: bool,
    message: str,
    error_code: Optional[str] = None,
    provider_id: Optional[int] = None,
):
    """Redirect back to the frontend when one is configured, otherwise answer with JSON."""
    settings = get_google_settings()
    body = {
        "success": success,
        "message": message,
        "error_code": error_code,
        "provider_id": provider_id,
    }
    if settings is not None and settings.frontend_url:
        params = {"status": "success" if success else "error", "message": message}
        if error_code:
            params["error_code"] = error_code
        if provider_id is not None:
            params["provider_id"] = str(provider_id)
        separator = "&" if "?" in settings.frontend_url else "?"
        return RedirectResponse(f"{settings.frontend_url}{separator}{urlencode(params)}", status_code=302)
    return JSONResponse(status_code=200 if success else 400, content=body)


@router.post("/providers")
async def create_provider(body: CreateGoogleProviderRequest) -> Dict[str, Any]:
    """Add a disabled Google Photos provider; it is enabled once authorized."""
    config = GooglePhotosConfig(
        client_id=body.client_id,
        client_secret=body.client_secret,
    )
    provider = ProviderConfig(
        id=0,
        kind=ProviderKind.GOOGLE_PHOTOS,
        name=body.name,
        is_enabled=False,
        configuration=config.to_json(),
    )
    provider.id = await get_provider_repository().add(provider)
    logger.info(f"Added Google Photos provider {provider.id}")
    return provider.to_dict()


@router.get("/{provider_id}/authorize-url", response_model=AuthorizeUrlResponse)
async def authorize_url(provider_id: int):
    try:
        url = await get_oauth_flow().generate_auth_url(provider_id)
    except StorageError as e:
        raise http_error(e)
    return AuthorizeUrlResponse(provider_id=provider_id, url=url)


@router.get("/oauth/callback")
async def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
):
    """Complete the consent redirect; the provider id arrives in the state parameter."""
    if error:
        logger.warning(f"OAuth consent returned error: {error}")
        return _callback_response(False, f"Authorization failed: {error}", "OAUTH_DENIED")
    if not code:
        return _callback_response(False, "No authorization code received", "MISSING_CODE")
    if not state:
        return _callback_response(False, "No provider ID received", "MISSING_STATE")
    try:
        provider_id = int(state)
    except ValueError:
        return _callback_response(False, f"Invalid provider ID: {state}", "INVALID_STATE")

    try:
        await get_oauth_flow().exchange_code(provider_id, code)
    except StorageError as e:
        logger.warning(f"OAuth callback failed: {e.to_log_string()}")
        return _callback_response(False, e.message, e.error_code, provider_id)

    return _callback_response(True, "Google Photos connected", provider_id=provider_id)


@router.post("/{provider_id}/picker/sessions")
async def start_picker_session(provider_id: int, body: Optional[StartPickerRequest] = None) -> Dict[str, Any]:
    max_items = body.max_item_count if body else None
    try:
        session = await get_picker_service().create_session(provider_id, max_items)
    except StorageError as e:
        raise http_error(e)
    return session.to_dict()


@router.get("/{provider_id}/picker/sessions")
async def list_picker_sessions(provider_id: int) -> Dict[str, Any]:
    sessions = await get_picker_service().list_sessions(provider_id)
    return {"provider_id": provider_id, "sessions": [session.to_dict() for session in sessions]}


async def _load_session(session_id: str):
    session = await get_picker_service().get_session(session_id)
    if session is None:
        raise HTTPException(404, f"Picker session {session_id} not found")
    return session


@router.get("/picker/sessions/{session_id}")
async def poll_picker_session(session_id: str) -> Dict[str, Any]:
    """Refresh a session once; clients poll at the session's poll interval."""
    session = await _load_session(session_id)
    try:
        session = await get_picker_service().poll_once(session)
    except StorageError as e:
        raise http_error(e)
    return session.to_dict()


@router.get("/picker/sessions/{session_id}/items")
async def list_picked_items(session_id: str) -> Dict[str, Any]:
    session = await _load_session(session_id)
    try:
        items = await get_picker_service().list_picked_items(session)
    except StorageError as e:
        raise http_error(e)
    return {"session_id": session_id, "items": [item.to_dict() for item in items]}


@router.post("/picker/sessions/{session_id}/import")
async def import_picker_session(session_id: str) -> Dict[str, Any]:
    """Import the picked items into the library; the session is deleted afterwards."""
    session = await _load_session(session_id)
    try:
        result = await get_picker_service().import_session(session)
    except StorageError as e:
        raise http_error(e)
    return result.to_dict()


@router.delete("/picker/sessions/{session_id}")
async def delete_picker_session(session_id: str) -> Dict[str, Any]:
    session = await _load_session(session_id)
    await get_picker_service().delete_session(session)
    return {"session_id": session_id, "deleted": True}
