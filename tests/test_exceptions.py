#!/usr/bin/env python3
"""Unit tests for the exception hierarchy and ErrorCollector.

Tests cover:
    - Hierarchy relationships used by the use cases' except clauses
    - Details, codes and serialization
    - Error aggregation for batch operations
"""
import sys

import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.abm.api.exceptions import (
    ABMError,
    ActivityError,
    ActivitySubmissionError,
    APIError,
    AuthenticationError,
    ConfigurationError,
    ConnectionError,
    ErrorCollector,
    NetworkError,
    NotFoundError,
    PartialSyncError,
    RateLimitError,
    TimeoutError,
    TokenExpiredError,
    ValidationError,
)


class TestHierarchy:

    def test_token_expired_is_authentication_error(self):
        error = TokenExpiredError()

        assert isinstance(error, AuthenticationError)
        assert not isinstance(error, APIError)
        assert not error.recoverable

    def test_transport_errors_are_network_errors(self):
        assert isinstance(ConnectionError(host="api"), NetworkError)
        assert isinstance(TimeoutError(timeout_seconds=60), NetworkError)
        assert ConnectionError().recoverable

    def test_validation_error_is_api_error(self):
        error = ValidationError("At least one device id is required", field="device_ids")

        assert isinstance(error, APIError)
        assert error.status_code == 400
        assert error.details["field"] == "device_ids"

    def test_activity_errors(self):
        error = ActivitySubmissionError(status_code=409, response_body="x" * 600)

        assert isinstance(error, ActivityError)
        assert error.code == "ACTIVITY_SUBMISSION_FAILED"
        assert len(error.details["response_body"]) == 500
        assert error.response_body == "x" * 600


class TestSerialization:

    def test_str_includes_code_and_details(self):
        error = NotFoundError("Device", "DEV1")

        assert str(error).startswith("[NOT_FOUND] Device 'DEV1' not found")
        assert "resource_id=DEV1" in str(error)

    def test_to_dict(self):
        cause = OSError("reset")
        error = ConfigurationError("Missing configuration", missing_keys=["ABM_CLIENT_ID"], cause=cause)

        data = error.to_dict()

        assert data["error_type"] == "ConfigurationError"
        assert data["code"] == "CONFIGURATION_ERROR"
        assert data["details"] == {"missing_keys": ["ABM_CLIENT_ID"]}
        assert data["cause"] == "reset"
        assert error.__cause__ is cause

    def test_rate_limit_defaults(self):
        error = RateLimitError(retry_after=3)

        assert error.status_code == 429
        assert error.recoverable
        assert error.details["retry_after_seconds"] == 3


class TestErrorCollector:

    def test_collects_with_context(self):
        collector = ErrorCollector()
        collector.add(ConnectionError(), context={"device_id": "D1"})

        assert collector.has_errors()
        assert collector.count() == 1
        assert collector.get_errors()[0][1] == {"device_id": "D1"}

    def test_max_errors(self):
        collector = ErrorCollector(max_errors=2)
        for _ in range(5):
            collector.add(ABMError("boom"))

        assert collector.count() == 2

    def test_to_exception(self):
        collector = ErrorCollector()
        collector.add(ABMError("boom"))

        error = collector.to_exception(succeeded=4)

        assert isinstance(error, PartialSyncError)
        assert error.succeeded == 4
        assert error.failed == 1

    def test_to_exception_without_errors(self):
        with pytest.raises(ValueError):
            ErrorCollector().to_exception()

    def test_clear(self):
        collector = ErrorCollector()
        collector.add(ABMError("boom"))
        collector.clear()

        assert not collector.has_errors()
