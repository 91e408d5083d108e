"""
Credential & token manager for the delegated-authorization (OAuth2 + PKCE) flow.

This is the only place that decides whether a cached access token is still
usable. Everything else asks for a token and gets one.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from hubsync.config.sync_config import SyncConfiguration
from hubsync.exceptions import AuthError, ConfigurationError
from hubsync.utils.http import HttpClient, HttpResponse
from hubsync.utils.logging import get_logger

logger = get_logger("hubsync.auth.tokens")

DROPBOX_TOKEN_URL = "https://api.dropboxapi.com/oauth2/token"

# A token is treated as expired this many seconds before its real expiry.
EXPIRY_BUFFER_SECONDS = 300


@dataclass(frozen=True)
class AccessToken:
    """A short-lived bearer token and the instant (epoch seconds) it expires."""

    token: str
    expires_at: float

    def is_usable(self, now: float) -> bool:
        return now < self.expires_at - EXPIRY_BUFFER_SECONDS

    def __repr__(self) -> str:
        return f"AccessToken(expires_at={self.expires_at})"


@dataclass(frozen=True)
class TokenGrant:
    """Result of the one-time authorization-code exchange."""

    access_token: str
    refresh_token: str
    expires_in: int

    def __repr__(self) -> str:
        return f"TokenGrant(expires_in={self.expires_in})"


class TokenManager:
    """
    Produces a currently-valid access token for a SyncConfiguration.

    The manager never persists anything: callers store the returned token back
    into their SyncConfiguration so later calls reuse it.

    Args:
        http: HTTP client used for token endpoint calls
        token_url: Provider token endpoint
        clock: Returns the current time in epoch seconds (injectable for tests)
    """

    def __init__(
        self,
        http: HttpClient | None = None,
        token_url: str = DROPBOX_TOKEN_URL,
        clock: Callable[[], float] = time.time,
    ):
        self.http = http or HttpClient()
        self.token_url = token_url
        self.clock = clock

    async def get_valid_access_token(self, config: SyncConfiguration) -> AccessToken:
        """
        Return the cached token when it is outside the expiry buffer, else refresh.

        Raises:
            ConfigurationError: No refresh token or app key (no network call made)
            AuthError: The token endpoint rejected the refresh
        """
        if not config.refresh_token or not config.app_key:
            raise ConfigurationError("Cloud account is not connected (missing app key or refresh token)")

        if config.access_token and config.access_token_expires_at is not None:
            cached = AccessToken(config.access_token, config.access_token_expires_at)
            if cached.is_usable(self.clock()):
                return cached

        return await self.refresh(config)

    async def refresh(self, config: SyncConfiguration) -> AccessToken:
        """Exchange the refresh token for a new access token."""
        if not config.refresh_token or not config.app_key:
            raise ConfigurationError("Cloud account is not connected (missing app key or refresh token)")

        response = await self.http.request(
            "POST",
            self.token_url,
            data={
                "grant_type": "refresh_token",
                "refresh_token": config.refresh_token,
                "client_id": config.app_key,
            },
        )
        payload = _token_payload(response, "Token refresh failed; reconnect the cloud account")

        token = payload.get("access_token")
        if not token:
            raise AuthError("Token endpoint response did not include an access token", status=response.status)
        expires_in = _expires_in(payload)
        expires_at = self.clock() + expires_in
        logger.info(f"Refreshed access token (valid for {expires_in}s)")
        return AccessToken(str(token), expires_at)

    async def exchange_authorization_code(
        self,
        app_key: str,
        code: str,
        code_verifier: str,
        redirect_uri: str | None = None,
    ) -> TokenGrant:
        """
        Complete the authorization-code handshake.

        Raises:
            ConfigurationError: Missing app key, code or verifier
            AuthError: The token endpoint rejected the exchange
        """
        if not app_key or not code or not code_verifier:
            raise ConfigurationError("App key, authorization code and code verifier are all required")

        form = {
            "code": code.strip(),
            "grant_type": "authorization_code",
            "client_id": app_key,
            "code_verifier": code_verifier,
        }
        if redirect_uri:
            form["redirect_uri"] = redirect_uri

        response = await self.http.request("POST", self.token_url, data=form)
        payload = _token_payload(response, "Authorization code exchange failed")

        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        if not access_token or not refresh_token:
            raise AuthError(
                "Token endpoint response is missing the access or refresh token "
                "(was offline access requested?)",
                status=response.status,
            )
        logger.info("Authorization code exchanged for a token pair")
        return TokenGrant(str(access_token), str(refresh_token), _expires_in(payload))


def _token_payload(response: HttpResponse, fallback: str) -> dict:
    body = response.json()
    if not response.ok:
        description = None
        error_code = None
        if isinstance(body, dict):
            description = body.get("error_description")
            error_code = body.get("error")
        raise AuthError(description or fallback, status=response.status, error_code=error_code)
    if not isinstance(body, dict):
        raise AuthError("Token endpoint returned a non-JSON response", status=response.status)
    return body


def _expires_in(payload: dict) -> int:
    try:
        return int(payload.get("expires_in", 14400))
    except (TypeError, ValueError):
        raise AuthError(f"Token endpoint returned an invalid expires_in: {payload.get('expires_in')!r}") from None
