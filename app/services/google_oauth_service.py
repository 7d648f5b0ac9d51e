"""
Google OAuth token refresh.

The worker never runs the consent flow; it only exchanges the stored
refresh token for a new access token when the current one is about to
expire.
"""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

REQUEST_TIMEOUT = 10  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2  # 2, 4, 8 seconds
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

# Google error code -> message recorded on the failed run
ERROR_MESSAGES = {
    "invalid_grant": "Google authorization expired or was revoked. Please reconnect Gmail and Calendar.",
    "invalid_client": "Google client configuration rejected. Check GOOGLE_CLIENT_ID/SECRET.",
    "invalid_request": "Invalid token refresh request.",
    "unauthorized_client": "Google client is not authorized for offline access.",
}


class GoogleOAuthError(Exception):
    """Token endpoint failure. error_code carries Google's `error` field when present."""

    def __init__(self, message: str, error_code: str | None = None, response_data: dict | None = None):
        super().__init__(message)
        self.error_code = error_code
        self.response_data = response_data or {}


@dataclass(slots=True)
class TokenResponse:
    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    scope: str = ""
    expires_in: int | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_google(cls, data: dict[str, Any], now: datetime | None = None) -> "TokenResponse":
        """
        Build from the token endpoint JSON.

        Raises:
            GoogleOAuthError: If the payload has no access token
        """
        if not data.get("access_token"):
            raise GoogleOAuthError("Invalid token response from Google", response_data=data)

        expires_in = int(data["expires_in"]) if data.get("expires_in") else None
        expires_at = (now or datetime.now(UTC)) + timedelta(seconds=expires_in) if expires_in else None
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
            expires_in=expires_in,
            expires_at=expires_at,
        )


class GoogleOAuthService:
    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """
        Exchange a refresh token for a fresh access token.

        Google normally omits refresh_token from the reply; the one passed
        in is carried over so callers can persist the response as-is.

        Raises:
            GoogleOAuthError: Missing client config, network failure or a
                rejected grant (error_code "invalid_grant")
        """
        if not settings.GOOGLE_CLIENT_ID or not settings.GOOGLE_CLIENT_SECRET:
            raise GoogleOAuthError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be configured")

        form = {
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            response = await self._post_form(form)
        except httpx.RequestError as e:
            logger.error("Network error during token refresh", error=str(e), error_type=type(e).__name__)
            raise GoogleOAuthError(f"Network error during token refresh: {e}") from e

        token = self._parse(response)
        if not token.refresh_token:
            token.refresh_token = refresh_token

        logger.info("Google token refreshed", expires_in=token.expires_in)
        return token

    async def _post_form(self, form: dict[str, str]) -> httpx.Response:
        client = self._client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
        try:
            for attempt in range(1, MAX_RETRIES + 1):
                wait_time = BACKOFF_FACTOR**attempt
                try:
                    response = await client.post(GOOGLE_TOKEN_URL, data=form)
                except httpx.RequestError as e:
                    if attempt == MAX_RETRIES:
                        raise
                    logger.warning("Token refresh request error, retrying", attempt=attempt, error=str(e))
                    await asyncio.sleep(wait_time)
                    continue

                if response.status_code not in RETRY_STATUS_CODES or attempt == MAX_RETRIES:
                    return response

                logger.warning(
                    "Token endpoint busy, retrying",
                    status_code=response.status_code,
                    attempt=attempt,
                    wait_time=wait_time,
                )
                await asyncio.sleep(wait_time)
        finally:
            if client is not self._client:
                await client.aclose()

        raise GoogleOAuthError("Token refresh failed: retries exhausted")

    def _parse(self, response: httpx.Response) -> TokenResponse:
        try:
            data = response.json()
        except ValueError:
            logger.error(
                "Token endpoint returned non-JSON response",
                status_code=response.status_code,
                response_text=response.text[:200],
            )
            raise GoogleOAuthError(f"Google OAuth service error (HTTP {response.status_code})") from None

        if response.is_success:
            return TokenResponse.from_google(data)

        error_code = data.get("error", "unknown_error") if isinstance(data, dict) else "unknown_error"
        logger.error(
            "Token refresh rejected",
            status_code=response.status_code,
            error_code=error_code,
            error_description=data.get("error_description") if isinstance(data, dict) else None,
        )
        raise GoogleOAuthError(
            ERROR_MESSAGES.get(error_code, f"Google token refresh failed ({error_code})."),
            error_code=error_code,
            response_data=data if isinstance(data, dict) else {},
        )


google_oauth_service = GoogleOAuthService()
