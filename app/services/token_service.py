"""
Token Service for OAuth credential access.
Loads encrypted Google credentials, refreshes them shortly before expiry and
stores the refreshed tokens back, so callers always get a usable access token.
"""

from datetime import UTC, datetime

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, with_db_retry
from app.infrastructure.observability.logging import get_logger
from app.models.domain.oauth_domain import OAuthToken
from app.services.google_oauth_service import (
    GoogleOAuthError,
    GoogleOAuthService,
    TokenResponse,
    google_oauth_service,
)
from app.services.infrastructure.encryption_service import (
    EncryptionError,
    decrypt_token,
    encrypt_token,
)

logger = get_logger(__name__)

TOKEN_REFRESH_BUFFER_MINUTES = 5  # Refresh tokens expiring within 5 minutes


class TokenServiceError(Exception):
    """Custom exception for token service operations."""

    def __init__(self, message: str, user_id: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.user_id = user_id
        self.recoverable = recoverable


class TokenService:
    """Credential provider for the Gmail and Calendar clients."""

    def __init__(self, oauth_service: GoogleOAuthService | None = None):
        self._oauth = oauth_service or google_oauth_service

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_tokens(self, user_id: str, provider: str = "google") -> OAuthToken | None:
        """
        Stored tokens for a user, decrypted.

        Raises:
            TokenServiceError: If the stored tokens cannot be decrypted
        """
        query = """
            SELECT user_id, provider, access_token, refresh_token, scope, expires_at, updated_at
            FROM oauth_tokens
            WHERE user_id = %s AND provider = %s
        """
        row = await fetch_one(query, (user_id, provider))
        if not row:
            return None

        try:
            return OAuthToken(
                user_id=str(row["user_id"]),
                provider=row["provider"],
                access_token=decrypt_token(row["access_token"]),
                refresh_token=decrypt_token(row["refresh_token"]) if row["refresh_token"] else None,
                scope=row["scope"] or "",
                expires_at=row["expires_at"],
                updated_at=row["updated_at"],
            )
        except EncryptionError as e:
            logger.error("Failed to decrypt stored tokens", user_id=user_id, error=str(e))
            raise TokenServiceError(
                "Stored credentials are unreadable - re-authentication required",
                user_id=user_id,
                recoverable=False,
            ) from e

    async def get_credential(self, user_id: str, now: datetime | None = None) -> OAuthToken:
        """
        A valid credential for the user, refreshed if it expires within
        TOKEN_REFRESH_BUFFER_MINUTES.

        Raises:
            TokenServiceError: If the user has no credential or refresh fails
        """
        try:
            tokens = await self.get_tokens(user_id)
        except DatabaseError as e:
            raise TokenServiceError(f"Failed to load credentials: {e}", user_id=user_id) from e

        if not tokens:
            raise TokenServiceError(
                "No Google credentials connected for this user", user_id=user_id, recoverable=False
            )

        if tokens.needs_refresh(TOKEN_REFRESH_BUFFER_MINUTES, now=now):
            tokens = await self._perform_token_refresh(user_id, tokens)

        return tokens

    async def _perform_token_refresh(self, user_id: str, current_tokens: OAuthToken) -> OAuthToken:
        if not current_tokens.refresh_token:
            logger.warning("No refresh token available for refresh", user_id=user_id)
            raise TokenServiceError(
                "No refresh token available - re-authentication required",
                user_id=user_id,
                recoverable=False,
            )

        try:
            token_response = await self._oauth.refresh_access_token(current_tokens.refresh_token)
        except GoogleOAuthError as e:
            logger.error(
                "Google OAuth error during token refresh",
                user_id=user_id,
                error=str(e),
                error_code=e.error_code,
            )
            raise TokenServiceError(
                f"Token refresh failed: {e}",
                user_id=user_id,
                recoverable=e.error_code != "invalid_grant",
            ) from e

        await self.store_tokens(user_id, token_response)

        logger.info(
            "Token refresh successful",
            user_id=user_id,
            new_expires_at=token_response.expires_at.isoformat() if token_response.expires_at else None,
        )

        return current_tokens.model_copy(
            update={
                "access_token": token_response.access_token,
                "refresh_token": token_response.refresh_token,
                "scope": token_response.scope or current_tokens.scope,
                "expires_at": token_response.expires_at,
                "updated_at": datetime.now(UTC),
            }
        )

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def store_tokens(
        self, user_id: str, token_response: TokenResponse, provider: str = "google"
    ) -> None:
        """Encrypt and persist refreshed tokens."""
        try:
            encrypted_access = encrypt_token(token_response.access_token)
            encrypted_refresh = (
                encrypt_token(token_response.refresh_token) if token_response.refresh_token else None
            )
        except EncryptionError as e:
            raise TokenServiceError(
                f"Failed to encrypt tokens: {e}", user_id=user_id, recoverable=False
            ) from e

        query = """
            UPDATE oauth_tokens
            SET access_token = %s,
                refresh_token = COALESCE(%s, refresh_token),
                scope = CASE WHEN %s = '' THEN scope ELSE %s END,
                expires_at = %s,
                updated_at = NOW()
            WHERE user_id = %s AND provider = %s
        """
        scope = token_response.scope or ""
        affected = await execute_query(
            query,
            (
                encrypted_access,
                encrypted_refresh,
                scope,
                scope,
                token_response.expires_at,
                user_id,
                provider,
            ),
        )
        if affected == 0:
            raise TokenServiceError("Credential row disappeared during refresh", user_id=user_id)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_connected_user_ids(self, provider: str = "google") -> list[str]:
        """Users with a stored credential, for the scheduled jobs."""
        rows = await fetch_all(
            "SELECT user_id FROM oauth_tokens WHERE provider = %s ORDER BY user_id", (provider,)
        )
        return [str(row["user_id"]) for row in rows]


token_service = TokenService()
