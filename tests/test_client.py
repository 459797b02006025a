#!/usr/bin/env python3
"""Unit tests for the ABM HTTP client.

Tests cover:
    - ApiResponse decoding and status-to-exception mapping
    - Bearer header injection and non-raising status handling
    - Transport error mapping to typed exceptions
    - Cursor pagination and report downloads

Note: These tests mock the aiohttp session rather than making real API calls.
"""
import json
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.abm.api.client import ABMClient, ApiResponse, create_api_error, next_cursor
from src.abm.api.config import ABMConfig, PaginationConfig
from src.abm.api.exceptions import (
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


def json_response(status, payload, endpoint="/test"):
    return ApiResponse(status=status, body=json.dumps(payload).encode(), endpoint=endpoint)


def mock_http_response(status=200, body=b"{}"):
    response = MagicMock()
    response.status = status
    response.headers = {"Content-Type": "application/json"}
    response.read = AsyncMock(return_value=body)
    response.text = AsyncMock(return_value=body.decode())
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response


@pytest.fixture
def config():
    return ABMConfig("business", "BUSINESSAPI.test", "jwt")


@pytest.fixture
def token_manager():
    manager = MagicMock()
    manager.get_token = AsyncMock(return_value="test-token")
    return manager


@pytest.fixture
def client(config, token_manager):
    client = ABMClient(config, token_manager=token_manager)
    client._session = MagicMock()
    return client


# ============================================
# ApiResponse Tests
# ============================================

class TestApiResponse:

    def test_ok_range(self):
        assert ApiResponse(200).ok
        assert ApiResponse(201).ok
        assert not ApiResponse(429).ok
        assert not ApiResponse(500).ok

    def test_json_decodes_body(self):
        response = json_response(200, {"data": {"id": "X"}})

        assert response.json() == {"data": {"id": "X"}}

    def test_json_of_empty_or_invalid_body(self):
        assert ApiResponse(204).json() is None
        assert ApiResponse(200, body=b"<html>oops</html>").json() is None

    @pytest.mark.parametrize("status,expected", [
        (401, TokenExpiredError),
        (404, NotFoundError),
        (429, RateLimitError),
        (422, ValidationError),
        (503, ServerError),
        (418, APIError),
    ])
    def test_to_error_maps_status(self, status, expected):
        error = ApiResponse(status, body=b"nope", endpoint="/orgDevices/X").to_error()

        assert isinstance(error, expected)

    def test_rate_limit_error_is_recoverable(self):
        error = create_api_error(429, "GET", "/orgDevices/X")

        assert error.recoverable
        assert error.status_code == 429

    def test_next_cursor(self):
        assert next_cursor({"meta": {"paging": {"nextCursor": "abc"}}}) == "abc"
        assert next_cursor({"meta": {"paging": {"nextCursor": ""}}}) is None
        assert next_cursor({"meta": {"paging": {}}}) is None
        assert next_cursor({"data": []}) is None
        assert next_cursor(None) is None
        assert next_cursor({"meta": "oops"}) is None
        assert next_cursor({"meta": {"paging": ["oops"]}}) is None


# ============================================
# Request Tests
# ============================================

class TestRequest:

    @pytest.mark.asyncio
    async def test_requires_context_manager(self, config, token_manager):
        client = ABMClient(config, token_manager=token_manager)

        with pytest.raises(RuntimeError):
            await client.get("/mdmServers")

    @pytest.mark.asyncio
    async def test_attaches_bearer_token(self, client):
        client._session.request = MagicMock(return_value=mock_http_response())

        await client.get("/orgDevices/ABC", params={"limit": 1})

        _, kwargs = client._session.request.call_args
        assert kwargs["url"] == "https://api-business.apple.com/v1/orgDevices/ABC"
        assert kwargs["headers"]["Authorization"] == "Bearer test-token"
        assert kwargs["params"] == {"limit": 1}

    @pytest.mark.asyncio
    async def test_error_status_is_returned_not_raised(self, client):
        client._session.request = MagicMock(
            return_value=mock_http_response(status=429, body=b'{"errors":[]}')
        )

        response = await client.get("/orgDevices/ABC")

        assert response.status == 429
        assert not response.ok
        assert response.endpoint == "/orgDevices/ABC"

    @pytest.mark.asyncio
    async def test_post_sends_json_body(self, client):
        client._session.request = MagicMock(
            return_value=mock_http_response(status=201, body=b'{"data":{"id":"A1"}}')
        )

        response = await client.post("/orgDeviceActivities", json_body={"data": {}})

        _, kwargs = client._session.request.call_args
        assert kwargs["method"] == "POST"
        assert kwargs["json"] == {"data": {}}
        assert response.json()["data"]["id"] == "A1"

    @pytest.mark.asyncio
    async def test_connection_error(self, client):
        client._session.request = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))

        with pytest.raises(ConnectionError) as exc:
            await client.get("/mdmServers")

        assert exc.value.details["host"] == "https://api-business.apple.com/v1"

    @pytest.mark.asyncio
    async def test_timeout_error(self, client):
        import asyncio
        client._session.request = MagicMock(side_effect=asyncio.TimeoutError())

        with pytest.raises(TimeoutError):
            await client.get("/mdmServers")

    @pytest.mark.asyncio
    async def test_other_client_error(self, client):
        client._session.request = MagicMock(side_effect=aiohttp.ClientPayloadError("bad"))

        with pytest.raises(NetworkError):
            await client.get("/mdmServers")


# ============================================
# Pagination Tests
# ============================================

class TestPagination:

    @pytest.mark.asyncio
    async def test_follows_cursor_chain(self, client):
        client.get = AsyncMock(side_effect=[
            json_response(200, {"data": [{"id": "S1"}], "meta": {"paging": {"nextCursor": "c1"}}}),
            json_response(200, {"data": [{"id": "S2"}], "meta": {"paging": {}}}),
        ])

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            items = await client.fetch_all("/mdmServers", config=PaginationConfig(page_size=100))

        assert [item["id"] for item in items] == ["S1", "S2"]
        assert client.get.await_args_list[0].kwargs["params"] == {"limit": 100}
        assert client.get.await_args_list[1].kwargs["params"] == {"limit": 100, "cursor": "c1"}
        assert mock_sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_error_page_raises(self, client):
        client.get = AsyncMock(return_value=json_response(500, {"errors": []}))

        with pytest.raises(ServerError):
            await client.fetch_all("/mdmServers")

    @pytest.mark.asyncio
    async def test_max_pages(self, client):
        client.get = AsyncMock(return_value=json_response(
            200, {"data": [{"id": "S"}], "meta": {"paging": {"nextCursor": "again"}}}
        ))

        with patch("asyncio.sleep", new_callable=AsyncMock):
            items = await client.fetch_all("/mdmServers", config=PaginationConfig(max_pages=3))

        assert len(items) == 3
        assert client.get.await_count == 3


# ============================================
# Download Tests
# ============================================

class TestDownload:

    @pytest.mark.asyncio
    async def test_streams_to_file(self, client, tmp_path):
        async def chunks(size):
            yield b"serial,status\n"
            yield b"ABC,SUCCESS\n"

        response = mock_http_response()
        response.content.iter_chunked = chunks
        client._session.get = MagicMock(return_value=response)

        destination = tmp_path / "reports" / "activity.csv"
        path = await client.download("https://example.com/report?sig=1", destination)

        assert path == destination
        assert destination.read_text() == "serial,status\nABC,SUCCESS\n"
        # Pre-signed URL: no bearer header
        _, kwargs = client._session.get.call_args
        assert "headers" not in kwargs

    @pytest.mark.asyncio
    async def test_failed_download_raises(self, client, tmp_path):
        client._session.get = MagicMock(return_value=mock_http_response(status=403, body=b"denied"))

        with pytest.raises(APIError) as exc:
            await client.download("https://example.com/report?sig=1", tmp_path / "r.csv")

        assert exc.value.status_code == 403
        assert "sig=1" not in str(exc.value)
