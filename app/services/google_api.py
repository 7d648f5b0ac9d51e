"""
Shared plumbing for the Google REST clients (Gmail, Calendar).

Owns the httpx client, bearer auth headers, retry with exponential backoff
on throttling/5xx/transport errors, and mapping of Google error payloads
to the client's exception type.
"""

import asyncio
from typing import Any

import httpx

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

REQUEST_TIMEOUT = 30  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class GoogleApiError(Exception):
    """Error returned by (or while talking to) a Google API."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}


class GoogleApiClient:
    """
    Base class for a single Google API.

    Subclasses set api_name, error_class and error_messages (HTTP status
    code -> message shown in job results).
    """

    api_name = "Google API"
    error_class: type[GoogleApiError] = GoogleApiError
    error_messages: dict[str, str] = {}

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(REQUEST_TIMEOUT),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
        )

    async def close(self) -> None:
        await self._client.aclose()

    def _auth_headers(self, access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}

    async def _send(self, method: str, url: str, access_token: str, **kwargs) -> httpx.Response:
        """Send a request, retrying throttled, failed and unreachable calls."""
        headers = self._auth_headers(access_token)
        for attempt in range(1, MAX_RETRIES + 1):
            backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
            try:
                response = await self._client.request(method, url, headers=headers, **kwargs)
            except httpx.RequestError as e:
                if attempt == MAX_RETRIES:
                    raise
                logger.debug(
                    f"{self.api_name} request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
                continue

            if response.status_code not in RETRY_STATUS_CODES or attempt == MAX_RETRIES:
                return response

            logger.debug(
                f"{self.api_name} retrying request",
                attempt=attempt,
                status_code=response.status_code,
                backoff_seconds=backoff,
            )
            await asyncio.sleep(backoff)

        raise RuntimeError(f"{self.api_name} retry loop exhausted")

    async def _call(
        self, method: str, url: str, access_token: str, operation: str, tolerate: tuple[int, ...] = (), **kwargs
    ) -> dict[str, Any]:
        """
        Send a request and return the decoded JSON body.

        Statuses listed in tolerate are treated as success with an empty body.

        Raises:
            error_class: For error responses, unreadable bodies and transport failures
        """
        try:
            response = await self._send(method, url, access_token, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"{self.api_name} {operation} unreachable", error=str(e))
            raise self.error_class(f"{self.api_name} unreachable: {e}") from e

        if response.status_code in tolerate:
            return {}
        return self._parse(response, operation)

    def _parse(self, response: httpx.Response, operation: str) -> dict[str, Any]:
        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error(f"Failed to parse {self.api_name} {operation} response", error=str(e))
                raise self.error_class(f"Invalid response format: {e}") from e

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            logger.error(
                f"{self.api_name} {operation} failed with non-JSON response",
                status_code=response.status_code,
                response_text=response.text[:200],
            )
            raise self.error_class(
                f"{self.api_name} error (HTTP {response.status_code})", status_code=response.status_code
            ) from None

        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        if not isinstance(error_info, dict):
            error_info = {"message": str(error_info)}
        error_code = str(error_info.get("code", response.status_code))
        error_message = error_info.get("message", f"Unknown {self.api_name} error")

        logger.error(
            f"{self.api_name} {operation} failed",
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message,
        )

        raise self.error_class(
            self.error_messages.get(error_code, f"{self.api_name} error: {error_message}"),
            error_code=error_code,
            status_code=response.status_code,
            response_data=error_data,
        )
