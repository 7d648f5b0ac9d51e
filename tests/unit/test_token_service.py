from datetime import UTC, datetime, timedelta

import pytest
from cryptography.fernet import Fernet

from app.db.helpers import DatabaseError
from app.models.domain.oauth_domain import OAuthToken
from app.services import token_service as token_module
from app.services.google_oauth_service import GoogleOAuthError, TokenResponse
from app.services.infrastructure.encryption_service import encrypt_token
from app.services.token_service import TokenService, TokenServiceError

NOW = datetime(2026, 1, 12, 10, 0, tzinfo=UTC)
SCOPE = "https://www.googleapis.com/auth/gmail.readonly https://www.googleapis.com/auth/calendar.events"


class StubOAuth:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.refreshed_with = []

    async def refresh_access_token(self, refresh_token):
        self.refreshed_with.append(refresh_token)
        if self.error:
            raise self.error
        return self.response


@pytest.fixture
def stored_row(monkeypatch):
    from app.config import settings

    monkeypatch.setattr(settings, "ENCRYPTION_KEY", Fernet.generate_key().decode("utf-8"))

    def make(expires_at, refresh="refresh-1"):
        return {
            "user_id": "user-1",
            "provider": "google",
            "access_token": encrypt_token("access-1"),
            "refresh_token": encrypt_token(refresh) if refresh else None,
            "scope": SCOPE,
            "expires_at": expires_at,
            "updated_at": NOW - timedelta(hours=1),
        }

    return make


@pytest.fixture
def db(monkeypatch):
    state = {"row": None, "updates": [], "affected": 1}

    async def fake_fetch_one(query, params=()):
        return state["row"]

    async def fake_execute_query(query, params=()):
        state["updates"].append(params)
        return state["affected"]

    monkeypatch.setattr(token_module, "fetch_one", fake_fetch_one)
    monkeypatch.setattr(token_module, "execute_query", fake_execute_query)
    return state


@pytest.mark.asyncio
async def test_valid_credential_returned_without_refresh(db, stored_row):
    db["row"] = stored_row(NOW + timedelta(hours=1))
    oauth = StubOAuth()

    credential = await TokenService(oauth_service=oauth).get_credential("user-1", now=NOW)

    assert credential.access_token == "access-1"
    assert credential.has_gmail_access() and credential.has_calendar_access()
    assert oauth.refreshed_with == []
    assert db["updates"] == []


@pytest.mark.asyncio
async def test_credential_refreshed_inside_buffer(db, stored_row):
    db["row"] = stored_row(NOW + timedelta(minutes=4))
    oauth = StubOAuth(
        response=TokenResponse.from_google(
            {"access_token": "access-2", "refresh_token": "refresh-1", "expires_in": 3600}, now=NOW
        )
    )

    credential = await TokenService(oauth_service=oauth).get_credential("user-1", now=NOW)

    assert oauth.refreshed_with == ["refresh-1"]
    assert credential.access_token == "access-2"
    assert credential.scope == SCOPE
    assert len(db["updates"]) == 1
    params = db["updates"][0]
    assert isinstance(params[0], bytes)
    assert params[-2:] == ("user-1", "google")


@pytest.mark.asyncio
async def test_missing_credential_is_not_recoverable(db):
    with pytest.raises(TokenServiceError) as exc:
        await TokenService(oauth_service=StubOAuth()).get_credential("user-1", now=NOW)

    assert exc.value.recoverable is False


@pytest.mark.asyncio
async def test_expired_without_refresh_token(db, stored_row):
    db["row"] = stored_row(NOW - timedelta(minutes=1), refresh=None)

    with pytest.raises(TokenServiceError) as exc:
        await TokenService(oauth_service=StubOAuth()).get_credential("user-1", now=NOW)

    assert exc.value.recoverable is False


@pytest.mark.asyncio
@pytest.mark.parametrize("error_code,recoverable", [("invalid_grant", False), (None, True)])
async def test_refresh_failure_recoverability(db, stored_row, error_code, recoverable):
    db["row"] = stored_row(NOW - timedelta(minutes=1))
    oauth = StubOAuth(error=GoogleOAuthError("refresh failed", error_code=error_code))

    with pytest.raises(TokenServiceError) as exc:
        await TokenService(oauth_service=oauth).get_credential("user-1", now=NOW)

    assert exc.value.recoverable is recoverable


@pytest.mark.asyncio
async def test_unreadable_credentials(db, stored_row, monkeypatch):
    db["row"] = stored_row(NOW + timedelta(hours=1))
    from app.config import settings

    # Rotated key can no longer decrypt the stored tokens
    monkeypatch.setattr(settings, "ENCRYPTION_KEY", Fernet.generate_key().decode("utf-8"))

    with pytest.raises(TokenServiceError) as exc:
        await TokenService(oauth_service=StubOAuth()).get_credential("user-1", now=NOW)

    assert exc.value.recoverable is False


@pytest.mark.asyncio
async def test_database_failure_is_recoverable(monkeypatch):
    async def broken_fetch_one(query, params=()):
        raise DatabaseError("connection lost", operation="fetch_one", recoverable=False)

    monkeypatch.setattr(token_module, "fetch_one", broken_fetch_one)

    with pytest.raises(TokenServiceError) as exc:
        await TokenService(oauth_service=StubOAuth()).get_credential("user-1", now=NOW)

    assert exc.value.recoverable is True


def test_needs_refresh_boundaries():
    token = OAuthToken(user_id="user-1", access_token="a", expires_at=NOW + timedelta(minutes=5))

    assert token.needs_refresh(5, now=NOW) is True
    assert token.needs_refresh(5, now=NOW - timedelta(seconds=1)) is False
    assert token.is_expired(now=NOW) is False
    assert OAuthToken(user_id="user-1", access_token="a").needs_refresh(now=NOW) is False
