#!/usr/bin/env python3
"""OAuth2 Token Management for Apple Business / School Manager.

This module provides OAuth2 token management for the ABM/ASM API using the
client credentials grant with a JWT-bearer client assertion.

Features:
    - Automatic token caching with dynamic expiration buffer (10% of TTL, max 5min)
    - Serialized token refresh using asyncio.Lock
    - Exponential backoff retry on transport failures (1s, 2s)
    - Comprehensive error handling with typed exceptions

Security Notes:
    - Tokens are cached in memory only (never persisted to disk)
    - The client assertion is never logged
    - Token ID in debug output uses SHA-256 hash (first 8 chars) - never shows actual token

Example:
    >>> manager = TokenManager(config)
    >>> token = await manager.get_token()
"""
import asyncio
import hashlib
import logging
import random
import time
from dataclasses import dataclass
from typing import Optional

import aiohttp

from .config import ABMConfig
from .exceptions import (
    ConnectionError,
    InvalidCredentialsError,
    NetworkError,
    TimeoutError,
    TokenFetchError,
)

logger = logging.getLogger(__name__)

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


@dataclass
class CachedToken:
    """Container for a cached OAuth2 access token.

    Attributes:
        access_token: The OAuth2 bearer token string.
        expires_at: Unix timestamp when the token expires.
        token_type: Token type, typically "Bearer".
        expires_in: Original TTL in seconds (for dynamic buffer calculation).
    """
    access_token: str
    expires_at: float
    token_type: Optional[str] = "Bearer"
    expires_in: int = 3600

    MAX_BUFFER_SECONDS = 300
    MIN_BUFFER_SECONDS = 30

    @property
    def token_id(self) -> str:
        """Get a safe identifier for logging (SHA-256 hash, first 8 chars)."""
        return hashlib.sha256(self.access_token.encode()).hexdigest()[:8]

    @property
    def _buffer_seconds(self) -> float:
        """10% of TTL clamped to [MIN_BUFFER, MAX_BUFFER], with ±10% jitter."""
        base_buffer = self.expires_in * 0.1
        buffer = max(self.MIN_BUFFER_SECONDS, min(base_buffer, self.MAX_BUFFER_SECONDS))
        jitter = buffer * random.uniform(-0.1, 0.1)
        return buffer + jitter

    @property
    def is_expired(self) -> bool:
        """Check if the token has expired (with dynamic safety buffer + jitter)."""
        return time.time() >= (self.expires_at - self._buffer_seconds)

    @property
    def time_remaining(self) -> float:
        """Return seconds remaining before token expires (0 if expired)."""
        return max(0, self.expires_at - time.time())


class TokenManager:
    """OAuth2 token manager with automatic refresh.

    Exchanges the configured client assertion for an access token scoped to
    the configured manager type (``business.api`` or ``school.api``). The
    engine treats a failure here as fatal to the whole run.

    Attributes:
        client_id: API client id
        token_url: OAuth2 token endpoint
        scope: OAuth2 scope string
    """

    def __init__(self, config: ABMConfig):
        self.client_id = config.client_id
        self.token_url = config.token_url
        self.scope = config.scope
        self._client_assertion = config.client_assertion

        self._cached_token: Optional[CachedToken] = None
        self._lock = asyncio.Lock()

    async def get_token(self) -> str:
        """Get a valid access token, fetching or refreshing as needed.

        Raises:
            TokenFetchError: If token cannot be obtained after retries
            InvalidCredentialsError: If the client id or assertion is rejected
        """
        if self._cached_token and not self._cached_token.is_expired:
            return self._cached_token.access_token

        async with self._lock:
            if self._cached_token and not self._cached_token.is_expired:
                return self._cached_token.access_token

            self._cached_token = await self._fetch_token()
            return self._cached_token.access_token

    async def _fetch_token(self, max_retries: int = 3) -> CachedToken:
        """Fetch a new access token from the Apple OAuth server.

        Only transport failures and 5xx responses are retried; a rejected
        assertion will not get better by asking again.

        Raises:
            TokenFetchError: If token cannot be fetched after retries
            InvalidCredentialsError: If credentials are invalid (400/401)
        """
        payload = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_assertion_type": CLIENT_ASSERTION_TYPE,
            "client_assertion": self._client_assertion,
            "scope": self.scope,
        }

        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
        }

        logger.info(f"Requesting access token (scope={self.scope})")
        last_error: Optional[Exception] = None

        for attempt in range(1, max_retries + 1):
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.post(
                        self.token_url,
                        data=payload,
                        headers=headers,
                        timeout=aiohttp.ClientTimeout(total=30),
                    ) as response:
                        if response.status == 200:
                            data = await response.json()

                            if data.get("error"):
                                raise InvalidCredentialsError(
                                    f"Token endpoint returned error: {data.get('error')}",
                                    details={"error": data.get("error")},
                                )

                            access_token = data.get("access_token")
                            if not access_token:
                                raise TokenFetchError(
                                    "Token response missing access_token",
                                    status_code=200,
                                    attempts=attempt,
                                    details={"response_keys": list(data.keys())},
                                )

                            expires_in = int(data.get("expires_in", 3600))
                            token = CachedToken(
                                access_token=access_token,
                                expires_at=time.time() + expires_in,
                                token_type=data.get("token_type", "Bearer"),
                                expires_in=expires_in,
                            )
                            logger.info(
                                f"Token fetched (id={token.token_id}), valid for "
                                f"{expires_in}s / {expires_in // 60} minutes"
                            )
                            return token

                        error_text = await response.text()

                        if response.status in (400, 401):
                            raise InvalidCredentialsError(
                                f"Token request rejected (HTTP {response.status})",
                                details={"response": error_text[:200]},
                            )

                        if response.status < 500:
                            raise TokenFetchError(
                                f"Token server returned HTTP {response.status}",
                                status_code=response.status,
                                attempts=attempt,
                                details={"response": error_text[:200]},
                            )

                        last_error = TokenFetchError(
                            f"Token server returned HTTP {response.status}",
                            status_code=response.status,
                            attempts=attempt,
                            details={"response": error_text[:200]},
                        )
                        logger.warning(
                            f"Token fetch attempt {attempt}/{max_retries} failed: "
                            f"HTTP {response.status}"
                        )

            except aiohttp.ClientConnectionError as e:
                last_error = ConnectionError(
                    f"Failed to connect to token server: {e}",
                    host=self.token_url,
                    cause=e,
                )
                logger.warning(
                    f"Token fetch attempt {attempt}/{max_retries} failed: "
                    f"Connection error - {e}"
                )

            except asyncio.TimeoutError as e:
                last_error = TimeoutError(
                    "Token request timed out",
                    timeout_seconds=30,
                    cause=e,
                )
                logger.warning(
                    f"Token fetch attempt {attempt}/{max_retries} failed: Timeout"
                )

            except aiohttp.ClientError as e:
                last_error = NetworkError(
                    f"Network error fetching token: {e}",
                    cause=e,
                )
                logger.warning(
                    f"Token fetch attempt {attempt}/{max_retries} failed: {e}"
                )

            if attempt < max_retries:
                wait_time = 2 ** (attempt - 1)
                logger.debug(f"Waiting {wait_time}s before retry")
                await asyncio.sleep(wait_time)

        raise TokenFetchError(
            f"Failed to fetch token after {max_retries} attempts",
            attempts=max_retries,
            cause=last_error,
        )

    async def force_refresh(self) -> str:
        """Force a token refresh, ignoring the cache."""
        async with self._lock:
            self._cached_token = await self._fetch_token()
            return self._cached_token.access_token

    def invalidate(self):
        """Invalidate the cached token."""
        self._cached_token = None

    @property
    def token_info(self) -> Optional[dict]:
        """Get the info about the current cached token for debugging."""
        if not self._cached_token:
            return None
        return {
            "token_id": self._cached_token.token_id,
            "is_expired": self._cached_token.is_expired,
            "time_remaining_seconds": self._cached_token.time_remaining,
            "expires_in_original": self._cached_token.expires_in,
        }
