"""
Google OAuth token management for cloud storage providers.

Tokens live inside the provider's configuration blob. The token manager
hands out valid access tokens, refreshing and writing them back when they
are about to expire; the authorization flow turns a consent redirect into
stored tokens.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from ..config.settings import GoogleOAuthSettings, GOOGLE_PHOTOS_PICKER_SCOPE
from ..data.base import ProviderRepository
from ..exceptions import (
    AuthorizationError,
    InsufficientScopesError,
    ProviderConfigurationError,
    ProviderNotFoundError,
    ReauthorizationRequiredError,
    TransientProviderError,
)
from ..models.base import utc_now
from ..models.provider import GooglePhotosConfig, ProviderConfig, ProviderKind

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"

# Refresh a little before the real expiry so in-flight requests do not race it
EXPIRY_SKEW = timedelta(minutes=5)
DEFAULT_TOKEN_LIFETIME = timedelta(seconds=3600)
MAX_TOKEN_LIFETIME = timedelta(days=30)


@dataclass
class TokenGrant:
    """Tokens returned by the token endpoint."""
    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None
    scopes: List[str] = field(default_factory=list)

    @classmethod
    def from_response(cls, data: Dict[str, Any], now: datetime) -> "TokenGrant":
        lifetime = DEFAULT_TOKEN_LIFETIME
        try:
            seconds = int(data.get("expires_in", 0))
        except (TypeError, ValueError):
            seconds = 0
        if 0 < seconds <= MAX_TOKEN_LIFETIME.total_seconds():
            lifetime = timedelta(seconds=seconds)
        return cls(
            access_token=data.get("access_token", ""),
            expires_at=now + lifetime,
            refresh_token=data.get("refresh_token"),
            scopes=(data.get("scope") or "").split(),
        )


class OAuthTokenManager:
    """
    Issues valid access tokens for Google Photos providers.

    Refreshes of one provider are serialized so concurrent callers share a
    single refresh instead of racing the token endpoint.
    """

    def __init__(
        self,
        provider_repository: ProviderRepository,
        settings: GoogleOAuthSettings,
        http_client: httpx.AsyncClient,
        clock=utc_now,
    ):
        self.provider_repository = provider_repository
        self.settings = settings
        self.http_client = http_client
        self.clock = clock
        self._locks: Dict[int, asyncio.Lock] = {}

    async def load(self, provider_id: int) -> Tuple[ProviderConfig, GooglePhotosConfig]:
        """
        Load a provider row and its parsed Google Photos configuration.

        Raises:
            ProviderNotFoundError: If the provider does not exist
            ProviderConfigurationError: If it is not a Google Photos provider or its blob is invalid
        """
        provider = await self.provider_repository.get(provider_id)
        if provider is None:
            raise ProviderNotFoundError(
                f"Storage provider {provider_id} not found",
                context={"provider_id": provider_id},
            )
        if provider.kind != ProviderKind.GOOGLE_PHOTOS:
            raise ProviderConfigurationError(
                f"Storage provider {provider_id} is not a Google Photos provider",
                context={"provider_id": provider_id},
            )
        try:
            config = GooglePhotosConfig.from_json(provider.configuration)
        except ValueError as e:
            raise ProviderConfigurationError(
                f"Invalid Google Photos configuration: {e}",
                context={"provider_id": provider_id},
                cause=e,
            )
        return provider, config

    async def save(self, provider: ProviderConfig, config: GooglePhotosConfig) -> None:
        provider.configuration = config.to_json()
        await self.provider_repository.update(provider)

    def client_credentials(self, config: GooglePhotosConfig) -> Tuple[str, str]:
        """Per-provider client credentials, falling back to the application's."""
        return (
            config.client_id or self.settings.client_id,
            config.client_secret or self.settings.client_secret,
        )

    def _is_fresh(self, config: GooglePhotosConfig) -> bool:
        if not config.access_token or config.access_token_expiry is None:
            return False
        return config.access_token_expiry - self.clock() > EXPIRY_SKEW

    async def get_valid_access_token(self, provider_id: int) -> str:
        """
        Return an access token that stays valid for at least a few minutes.

        Args:
            provider_id: Google Photos provider id

        Returns:
            Bearer access token

        Raises:
            ReauthorizationRequiredError: If the user must reconnect the provider
            TransientProviderError: If the token endpoint could not be reached
        """
        provider, config = await self.load(provider_id)
        if self._is_fresh(config):
            return config.access_token

        lock = self._locks.setdefault(provider_id, asyncio.Lock())
        async with lock:
            # Another caller may have refreshed while we waited
            provider, config = await self.load(provider_id)
            if self._is_fresh(config):
                return config.access_token
            return await self._refresh(provider, config)

    async def _refresh(self, provider: ProviderConfig, config: GooglePhotosConfig) -> str:
        client_id, client_secret = self.client_credentials(config)
        if not client_id or not client_secret:
            raise ReauthorizationRequiredError(
                "Google Photos client credentials are not configured",
                context={"provider_id": provider.id},
            )
        if not config.refresh_token:
            raise ReauthorizationRequiredError(
                "Google Photos is not connected; authorize the provider first",
                context={"provider_id": provider.id},
            )

        data = await self.post_token_request({
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": config.refresh_token,
            "grant_type": "refresh_token",
        }, provider.id)

        grant = TokenGrant.from_response(data, self.clock())
        if not grant.access_token:
            raise ReauthorizationRequiredError(
                "Token endpoint returned no access token",
                context={"provider_id": provider.id},
            )

        config.access_token = grant.access_token
        config.access_token_expiry = grant.expires_at
        if grant.refresh_token:
            config.refresh_token = grant.refresh_token
        if grant.scopes:
            config.granted_scopes = grant.scopes
        await self.save(provider, config)

        logger.info(f"Refreshed access token for provider {provider.id}")
        return grant.access_token

    async def post_token_request(self, form: Dict[str, str], provider_id: int) -> Dict[str, Any]:
        """
        POST to the token endpoint and classify failures.

        Raises:
            ReauthorizationRequiredError: On invalid_grant, 400 or 401
            TransientProviderError: On timeouts, transport errors, 429 and 5xx
        """
        try:
            response = await self.http_client.post(GOOGLE_TOKEN_URL, data=form)
        except httpx.TransportError as e:
            raise TransientProviderError(
                f"Token endpoint unreachable: {e}",
                context={"provider_id": provider_id},
                cause=e,
            )

        if response.status_code >= 500 or response.status_code == 429:
            raise TransientProviderError(
                f"Token endpoint returned {response.status_code}",
                context={"provider_id": provider_id},
            )

        if response.is_error:
            error = _error_code(response)
            logger.warning(
                f"Token request rejected for provider {provider_id}: "
                f"{response.status_code} {error}"
            )
            raise ReauthorizationRequiredError(
                f"Google rejected the stored credentials ({error}); reconnect the provider",
                context={"provider_id": provider_id, "status": response.status_code},
            )

        return response.json()

    async def revoke(self, token: str) -> bool:
        """Revoke a token at Google. Best effort; failures are logged."""
        if not token:
            return False
        try:
            response = await self.http_client.post(
                GOOGLE_REVOKE_URL,
                params={"token": token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            logger.warning(f"Failed to revoke token: {e}")
            return False
        if response.is_error:
            logger.warning(f"Token revocation returned {response.status_code}")
            return False
        return True

    async def disconnect(self, provider_id: int) -> ProviderConfig:
        """
        Revoke and forget a provider's tokens and disable it.

        Returns:
            The updated provider row
        """
        provider, config = await self.load(provider_id)
        await self.revoke(config.refresh_token or config.access_token)
        config.clear_tokens()
        provider.is_enabled = False
        await self.save(provider, config)
        logger.info(f"Disconnected Google Photos provider {provider_id}")
        return provider


def _error_code(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or str(response.status_code)
    if isinstance(body, dict):
        return str(body.get("error") or body.get("error_description") or response.status_code)
    return str(response.status_code)


class GoogleOAuthFlow:
    """Authorization-code flow that connects a Google Photos provider."""

    def __init__(self, token_manager: OAuthTokenManager, registry=None):
        self.token_manager = token_manager
        self.registry = registry

    @property
    def settings(self) -> GoogleOAuthSettings:
        return self.token_manager.settings

    async def generate_auth_url(self, provider_id: int) -> str:
        """
        Build the consent URL for a provider.

        The provider id travels in the state parameter and comes back on the callback.
        """
        _, config = await self.token_manager.load(provider_id)
        client_id, _ = self.token_manager.client_credentials(config)
        if not client_id:
            raise ProviderConfigurationError(
                "Google Photos client id is not configured",
                error_code="MISSING_CREDENTIALS",
                context={"provider_id": provider_id},
            )
        params = {
            "client_id": client_id,
            "redirect_uri": self.settings.redirect_uri,
            "response_type": "code",
            "scope": GOOGLE_PHOTOS_PICKER_SCOPE,
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": str(provider_id),
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, provider_id: int, code: str) -> ProviderConfig:
        """
        Exchange an authorization code and store the resulting tokens.

        Args:
            provider_id: Provider named in the callback's state
            code: Authorization code from the callback

        Returns:
            The enabled provider row

        Raises:
            ProviderNotFoundError: If the provider does not exist
            ProviderConfigurationError: If client credentials are missing
            AuthorizationError: If Google rejects the code or returns no refresh token
            InsufficientScopesError: If the picker scope was not granted
        """
        manager = self.token_manager
        provider, config = await manager.load(provider_id)
        client_id, client_secret = manager.client_credentials(config)
        if not client_id or not client_secret:
            raise ProviderConfigurationError(
                "Google Photos client credentials are not configured",
                error_code="MISSING_CREDENTIALS",
                context={"provider_id": provider_id},
            )

        try:
            data = await manager.post_token_request({
                "code": code,
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": self.settings.redirect_uri,
                "grant_type": "authorization_code",
            }, provider_id)
        except ReauthorizationRequiredError as e:
            raise AuthorizationError(
                "Failed to exchange authorization code",
                error_code="TOKEN_EXCHANGE_FAILED",
                context={"provider_id": provider_id},
                cause=e,
            )

        grant = TokenGrant.from_response(data, manager.clock())
        if not grant.refresh_token:
            raise AuthorizationError(
                "Google did not return a refresh token. Remove the app's access in "
                "your Google account settings and authorize again.",
                error_code="OAUTH_FAILED",
                context={"provider_id": provider_id},
            )

        if not grant.scopes:
            await manager.revoke(grant.access_token)
            raise InsufficientScopesError(
                "No permissions were granted. Allow access to Google Photos when prompted.",
                error_code="NO_SCOPES_GRANTED",
                context={"provider_id": provider_id},
            )

        if GOOGLE_PHOTOS_PICKER_SCOPE not in grant.scopes:
            await manager.revoke(grant.access_token)
            raise InsufficientScopesError(
                "Google Photos picker access was not granted. Allow access to "
                "your photos when prompted.",
                context={"provider_id": provider_id, "granted": " ".join(grant.scopes)},
            )

        config.access_token = grant.access_token
        config.access_token_expiry = grant.expires_at
        config.refresh_token = grant.refresh_token
        config.granted_scopes = grant.scopes
        provider.is_enabled = True
        await manager.save(provider, config)

        if self.registry is not None:
            await self.registry.invalidate(provider_id)

        logger.info(f"Google Photos provider {provider_id} connected")
        return provider
