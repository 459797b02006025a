#!/usr/bin/env python3
"""HTTP Client for the Apple Business / School Manager API.

This module provides the thin transport layer the sync engine is built on:

    - OAuth2 bearer authentication via TokenManager
    - Connection pooling via a shared aiohttp session
    - Typed exceptions for transport failures
    - Cursor pagination helper for JSON:API listing endpoints
    - Streaming download of pre-signed report URLs

Design Philosophy:
    This client knows HOW to talk to Apple, but not WHAT a non-2xx response
    means. It never retries and never raises on an HTTP status: every
    response comes back as an ApiResponse, and the use cases decide whether
    a 429 is retried, a 404 degrades to a default, or a 401 ends the run.

Usage:
    async with ABMClient(config) as client:
        response = await client.request("GET", "/orgDevices/ABC123")
        if response.ok:
            device = response.json()["data"]

        async for page in client.paginate("/mdmServers"):
            for server in page:
                print(server["id"])
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Union

import aiofiles
import aiohttp

from .auth import TokenManager
from .config import ABMConfig, PaginationConfig, SERVERS_PAGINATION
from .exceptions import (
    ABMError,
    APIError,
    ConnectionError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
    TimeoutError,
    TokenExpiredError,
    ValidationError,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 60


# ============================================
# Response
# ============================================

@dataclass
class ApiResponse:
    """Raw result of one API call.

    Attributes:
        status: HTTP status code
        body: Raw response body
        method: HTTP method used for the call
        endpoint: Path the call was made against
        headers: Response headers
    """
    status: int
    body: bytes = b""
    method: str = "GET"
    endpoint: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON.

        An empty or non-JSON body decodes to None rather than raising, so
        callers can treat it the same as a body without ``data``.
        """
        if not self.body:
            return None
        try:
            return json.loads(self.body)
        except ValueError:
            logger.debug(f"Non-JSON body from {self.method} {self.endpoint}")
            return None

    def to_error(self, message: Optional[str] = None) -> ABMError:
        """Build the typed error matching this response's status."""
        return create_api_error(
            status=self.status,
            method=self.method,
            endpoint=self.endpoint,
            response_body=self.text,
            message=message,
        )


def create_api_error(
    status: int,
    method: str,
    endpoint: str,
    response_body: str = "",
    message: Optional[str] = None,
) -> ABMError:
    """Create the typed error for an HTTP status (401 maps to TokenExpiredError)."""
    if status == 401:
        # Not an APIError: a rejected bearer token ends the run
        return TokenExpiredError(
            message or "Access token expired or invalid",
            details={"endpoint": endpoint},
        )

    if status == 404:
        return NotFoundError(
            resource_type="Resource",
            resource_id=endpoint,
            endpoint=endpoint,
            method=method,
            response_body=response_body,
        )

    if status == 429:
        return RateLimitError(
            message or f"Rate limit exceeded for {endpoint}",
            endpoint=endpoint,
            method=method,
            response_body=response_body,
        )

    if status in (400, 422):
        return ValidationError(
            message or f"Validation failed for {method} {endpoint}",
            status_code=status,
            endpoint=endpoint,
            method=method,
            response_body=response_body,
        )

    if status >= 500:
        return ServerError(
            message or f"Server error ({status}) for {method} {endpoint}",
            status_code=status,
            endpoint=endpoint,
            method=method,
            response_body=response_body,
        )

    return APIError(
        message or f"{method} {endpoint} failed",
        status_code=status,
        endpoint=endpoint,
        method=method,
        response_body=response_body,
    )


# ============================================
# The Client
# ============================================

class ABMClient:
    """Async HTTP client for the Apple Business / School Manager API.

    Use as an async context manager to get proper session lifecycle:

        async with ABMClient(config) as client:
            response = await client.request("GET", "/mdmServers")

    Attributes:
        config: Run configuration (base URL, credentials, policies)
        token_manager: TokenManager supplying bearer tokens
        base_url: Base URL for API requests, without trailing slash
    """

    def __init__(
        self,
        config: ABMConfig,
        token_manager: Optional[TokenManager] = None,
    ):
        self.config = config
        self.token_manager = token_manager or TokenManager(config)
        self.base_url = config.api_base_url

        # Session is created in __aenter__, closed in __aexit__
        self._session: Optional[aiohttp.ClientSession] = None

    # ----------------------------------------
    # Context Manager Protocol
    # ----------------------------------------

    async def __aenter__(self) -> "ABMClient":
        """Enter async context: create the HTTP session."""
        self._session = aiohttp.ClientSession(
            # Requests are sequential; a small pool is enough
            connector=aiohttp.TCPConnector(
                limit=4,
                limit_per_host=4,
            ),
            timeout=aiohttp.ClientTimeout(
                total=REQUEST_TIMEOUT_SECONDS,
                connect=10,
            ),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context: close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    def _require_session(self) -> aiohttp.ClientSession:
        if not self._session:
            raise RuntimeError(
                "ABMClient must be used as async context manager: "
                "async with ABMClient(...) as client:"
            )
        return self._session

    # ----------------------------------------
    # Requests
    # ----------------------------------------

    async def _get_auth_headers(self) -> dict[str, str]:
        """Get authorization headers with current token."""
        token = await self.token_manager.get_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> ApiResponse:
        """Make a single authenticated request (no retry logic).

        Args:
            method: HTTP method (GET, POST)
            endpoint: API path relative to the base URL (e.g. "/orgDevices/X")
            params: Query parameters
            json_body: JSON request body (for POST)

        Returns:
            ApiResponse carrying the status and raw body, whatever the status

        Raises:
            RuntimeError: If called outside of async context manager
            ConnectionError: If connection to server fails
            TimeoutError: If request times out
            NetworkError: For any other transport failure
            AuthenticationError: If a token cannot be obtained
        """
        session = self._require_session()
        url = f"{self.base_url}{endpoint}"
        headers = await self._get_auth_headers()

        logger.debug(f"{method} {endpoint} params={params}")

        try:
            async with session.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                json=json_body,
            ) as response:
                body = await response.read()
                return ApiResponse(
                    status=response.status,
                    body=body,
                    method=method,
                    endpoint=endpoint,
                    headers=dict(response.headers),
                )

        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(
                f"Failed to connect to {self.base_url}",
                host=self.base_url,
                cause=e,
            )

        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"Request to {endpoint} timed out",
                timeout_seconds=REQUEST_TIMEOUT_SECONDS,
                cause=e,
            )

        except aiohttp.ClientError as e:
            raise NetworkError(
                f"Network error during {method} {endpoint}: {e}",
                cause=e,
            )

    async def get(self, endpoint: str, params: Optional[dict] = None) -> ApiResponse:
        """Make a GET request."""
        return await self.request("GET", endpoint, params=params)

    async def post(self, endpoint: str, json_body: dict) -> ApiResponse:
        """Make a POST request."""
        return await self.request("POST", endpoint, json_body=json_body)

    # ----------------------------------------
    # Pagination
    # ----------------------------------------

    async def paginate(
        self,
        endpoint: str,
        config: Optional[PaginationConfig] = None,
        params: Optional[dict] = None,
    ) -> AsyncIterator[list[dict[str, Any]]]:
        """Iterate through a cursor-paginated listing, page by page.

        Follows ``meta.paging.nextCursor`` until it is absent or empty.
        Unlike ``request``, a non-2xx page raises its typed APIError here:
        callers that need per-scope tolerance walk the cursor themselves.

        Yields:
            List of resource objects (the page's ``data`` array)
        """
        config = config or SERVERS_PAGINATION
        cursor: Optional[str] = None
        page_count = 0

        while True:
            page_params = dict(params or {})
            page_params["limit"] = config.page_size
            if cursor:
                page_params["cursor"] = cursor

            response = await self.get(endpoint, params=page_params)
            if not response.ok:
                raise response.to_error()

            payload = response.json() or {}
            page_count += 1
            yield payload.get("data") or []

            cursor = next_cursor(payload)
            if not cursor:
                break

            if config.max_pages and page_count >= config.max_pages:
                logger.warning(f"Reached max_pages limit ({config.max_pages}) for {endpoint}")
                break

            await asyncio.sleep(config.delay_between_pages)

    async def fetch_all(
        self,
        endpoint: str,
        config: Optional[PaginationConfig] = None,
    ) -> list[dict[str, Any]]:
        """Fetch every item of a cursor-paginated listing into memory."""
        items: list[dict[str, Any]] = []
        async for page in self.paginate(endpoint, config=config):
            items.extend(page)
        logger.info(f"Fetched {len(items)} items from {endpoint}")
        return items

    # ----------------------------------------
    # Downloads
    # ----------------------------------------

    async def download(self, url: str, destination: Union[str, Path]) -> Path:
        """Stream an absolute URL to a local file.

        Used for activity reports, whose download URLs are pre-signed: no
        bearer token is attached.

        Raises:
            APIError: If the download responds with a non-2xx status
            NetworkError: On transport failure
        """
        session = self._require_session()
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        try:
            async with session.get(url) as response:
                if response.status >= 400:
                    raise create_api_error(
                        status=response.status,
                        method="GET",
                        endpoint=url.split("?", 1)[0],
                        response_body=await response.text(),
                        message=f"Report download failed (HTTP {response.status})",
                    )

                async with aiofiles.open(destination, "wb") as f:
                    async for chunk in response.content.iter_chunked(64 * 1024):
                        await f.write(chunk)

        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(
                "Failed to connect to report download host",
                cause=e,
            )

        except asyncio.TimeoutError as e:
            raise TimeoutError(
                "Report download timed out",
                timeout_seconds=REQUEST_TIMEOUT_SECONDS,
                cause=e,
            )

        except aiohttp.ClientError as e:
            raise NetworkError(f"Network error during report download: {e}", cause=e)

        logger.info(f"Report saved to {destination}")
        return destination


def next_cursor(payload: Optional[dict]) -> Optional[str]:
    """Extract ``meta.paging.nextCursor`` from a listing page, if any."""
    if not isinstance(payload, dict):
        return None
    meta = payload.get("meta")
    paging = meta.get("paging") if isinstance(meta, dict) else None
    if not isinstance(paging, dict):
        return None
    return paging.get("nextCursor") or None
