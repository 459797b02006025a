#!/usr/bin/env python3
"""Unit tests for OAuth2 Token Management.

Tests cover:
    - Token fetching with the client-assertion form payload
    - Token caching and expiration detection
    - Rejected credentials and retry logic on server failures
"""

# Import the classes we're testing
import sys
import time
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.abm.api.auth import CLIENT_ASSERTION_TYPE, CachedToken, TokenManager
from src.abm.api.config import ABMConfig
from src.abm.api.exceptions import InvalidCredentialsError, TokenFetchError


def make_session(status=200, json_data=None, text=""):
    """Build an aiohttp.ClientSession mock whose post() yields one response."""
    mock_response = MagicMock()
    mock_response.status = status
    mock_response.json = AsyncMock(return_value=json_data or {})
    mock_response.text = AsyncMock(return_value=text)
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)

    mock_session = MagicMock()
    mock_session.post = MagicMock(return_value=mock_response)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)
    return mock_session


# ============================================
# CachedToken Tests
# ============================================

class TestCachedToken:
    """Test the CachedToken dataclass."""

    def test_not_expired_when_new(self):
        """Fresh token should not be expired."""
        token = CachedToken(
            access_token="test_token_123",
            expires_at=time.time() + 3600,
        )
        assert not token.is_expired
        assert token.time_remaining > 3500

    def test_expired_when_past(self):
        """Token with past expiration should be expired."""
        token = CachedToken(
            access_token="test_token_123",
            expires_at=time.time() - 100,
        )
        assert token.is_expired
        assert token.time_remaining == 0

    def test_expired_within_buffer(self):
        """Token expiring within the capped 300s buffer counts as expired."""
        token = CachedToken(
            access_token="test_token_123",
            expires_at=time.time() + 200,
            expires_in=7200,
        )
        assert token.is_expired

    def test_token_id_is_sha256_hash(self):
        """token_id should be SHA-256 hash prefix for safe logging."""
        import hashlib
        token = CachedToken(
            access_token="my_secret_token_value",
            expires_at=time.time() + 3600,
        )
        expected_hash = hashlib.sha256(b"my_secret_token_value").hexdigest()[:8]
        assert token.token_id == expected_hash
        assert "my_secret" not in token.token_id


# ============================================
# TokenManager Tests
# ============================================

class TestTokenManager:
    """Test the TokenManager class."""

    @pytest.fixture
    def config(self):
        return ABMConfig(
            manager_type="school",
            client_id="SCHOOLAPI.test-client",
            client_assertion="header.payload.signature",
        )

    def test_uses_config_values(self, config):
        manager = TokenManager(config)

        assert manager.client_id == "SCHOOLAPI.test-client"
        assert manager.scope == "school.api"
        assert manager.token_url == "https://account.apple.com/auth/oauth2/token"

    @pytest.mark.asyncio
    async def test_get_token_posts_client_assertion(self, config):
        """The token request is a form post with the JWT-bearer assertion."""
        manager = TokenManager(config)
        session = make_session(json_data={
            "access_token": "new_access_token_abc123",
            "expires_in": 3600,
            "token_type": "Bearer",
        })

        with patch("aiohttp.ClientSession", return_value=session):
            token = await manager.get_token()

        assert token == "new_access_token_abc123"
        _, kwargs = session.post.call_args
        assert kwargs["data"] == {
            "grant_type": "client_credentials",
            "client_id": "SCHOOLAPI.test-client",
            "client_assertion_type": CLIENT_ASSERTION_TYPE,
            "client_assertion": "header.payload.signature",
            "scope": "school.api",
        }

    @pytest.mark.asyncio
    async def test_get_token_returns_cached(self, config):
        """Second call should return cached token without HTTP call."""
        manager = TokenManager(config)
        manager._cached_token = CachedToken(
            access_token="cached_token_xyz",
            expires_at=time.time() + 3600,
        )

        with patch("aiohttp.ClientSession") as mock_session_cls:
            token = await manager.get_token()
            mock_session_cls.assert_not_called()

        assert token == "cached_token_xyz"

    @pytest.mark.asyncio
    async def test_rejected_assertion_is_not_retried(self, config):
        manager = TokenManager(config)
        session = make_session(status=400, text='{"error":"invalid_client"}')

        with patch("aiohttp.ClientSession", return_value=session):
            with pytest.raises(InvalidCredentialsError):
                await manager.get_token()

        assert session.post.call_count == 1

    @pytest.mark.asyncio
    async def test_error_body_raises_invalid_credentials(self, config):
        manager = TokenManager(config)
        session = make_session(json_data={"error": "invalid_scope"})

        with patch("aiohttp.ClientSession", return_value=session):
            with pytest.raises(InvalidCredentialsError):
                await manager.get_token()

    @pytest.mark.asyncio
    async def test_missing_access_token_raises(self, config):
        manager = TokenManager(config)
        session = make_session(json_data={"expires_in": 3600})

        with patch("aiohttp.ClientSession", return_value=session):
            with pytest.raises(TokenFetchError):
                await manager.get_token()

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self, config):
        """5xx responses are retried 3 times with 1s, 2s waits."""
        manager = TokenManager(config)
        session = make_session(status=503, text="unavailable")

        with patch("aiohttp.ClientSession", return_value=session), \
             patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(TokenFetchError) as exc:
                await manager.get_token()

        assert session.post.call_count == 3
        assert [c.args[0] for c in mock_sleep.await_args_list] == [1, 2]
        assert exc.value.details["attempts"] == 3

    @pytest.mark.asyncio
    async def test_connection_errors_are_retried(self, config):
        manager = TokenManager(config)
        session = make_session()
        session.post = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))

        with patch("aiohttp.ClientSession", return_value=session), \
             patch("asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(TokenFetchError):
                await manager.get_token()

        assert session.post.call_count == 3

    def test_invalidate_clears_cache(self, config):
        manager = TokenManager(config)
        manager._cached_token = CachedToken(
            access_token="cached_token",
            expires_at=time.time() + 3600,
        )

        manager.invalidate()

        assert manager._cached_token is None
        assert manager.token_info is None

    def test_token_info_never_exposes_token(self, config):
        manager = TokenManager(config)
        manager._cached_token = CachedToken(
            access_token="a_very_long_token_that_should_be_hashed",
            expires_at=time.time() + 3600,
        )

        info = manager.token_info

        assert not info["is_expired"]
        assert "a_very_long_token" not in str(info)
