"""Unit tests for NetworkErrorHandler classification and single retry."""

import httpx
import pytest

from jobwatch.api_clients.errors import (
    APIClientError,
    ErrorCode,
    NetworkError,
    NetworkErrorReason,
    NotFoundError,
    RateLimitedError,
    ServerError,
    ValidationError,
    describe_error,
)
from jobwatch.api_clients.network_error_handler import NetworkErrorHandler


def response(status_code, **kwargs):
    return httpx.Response(
        status_code, request=httpx.Request("GET", "https://jobs.example.com"), **kwargs
    )


class TestClassification:
    @pytest.fixture
    def handler(self):
        return NetworkErrorHandler(retry_delay=0)

    def test_timeout_and_connect_errors(self, handler):
        timeout = handler.classify_transport_error(httpx.ConnectTimeout("slow"))
        unreachable = handler.classify_transport_error(httpx.ConnectError("refused"))

        assert timeout.reason == NetworkErrorReason.TIMEOUT
        assert unreachable.reason == NetworkErrorReason.UNREACHABLE
        assert timeout.is_retryable and unreachable.is_retryable

    def test_success_passes(self, handler):
        handler.classify_response(response(200, json={}))

    def test_rate_limited_with_retry_after(self, handler):
        with pytest.raises(RateLimitedError) as exc_info:
            handler.classify_response(response(429, headers={"Retry-After": "7"}))

        assert exc_info.value.retry_after == 7
        assert exc_info.value.is_retryable

    def test_not_found(self, handler):
        with pytest.raises(NotFoundError) as exc_info:
            handler.classify_response(response(404, json={"detail": "Job not found"}))

        assert not exc_info.value.is_retryable

    def test_server_error(self, handler):
        with pytest.raises(ServerError):
            handler.classify_response(response(502, text="Bad Gateway"))

    def test_coded_error_body(self, handler):
        with pytest.raises(ValidationError) as exc_info:
            handler.classify_response(
                response(
                    415,
                    json={
                        "error": {
                            "code": "INVALID_FILE_TYPE",
                            "message": "Only CSV or XLSX",
                        }
                    },
                )
            )

        assert exc_info.value.code == "INVALID_FILE_TYPE"
        assert exc_info.value.message == "Only CSV or XLSX"

    def test_other_client_error(self, handler):
        with pytest.raises(APIClientError) as exc_info:
            handler.classify_response(response(403, json={"detail": "Forbidden"}))

        assert type(exc_info.value) is APIClientError
        assert exc_info.value.status_code == 403


@pytest.mark.asyncio
class TestRetryOnce:
    async def test_retryable_error_is_retried_once(self):
        handler = NetworkErrorHandler(retry_delay=0)
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) == 1:
                raise ServerError("boom", 500)
            return "ok"

        assert await handler.retry_once(operation) == "ok"
        assert len(calls) == 2

    async def test_second_failure_surfaces(self):
        handler = NetworkErrorHandler(retry_delay=0)
        calls = []

        async def operation():
            calls.append(1)
            raise NetworkError(NetworkErrorReason.UNREACHABLE, "down")

        with pytest.raises(NetworkError):
            await handler.retry_once(operation)
        assert len(calls) == 2

    async def test_non_retryable_error_is_not_retried(self):
        handler = NetworkErrorHandler(retry_delay=0)
        calls = []

        async def operation():
            calls.append(1)
            raise NotFoundError("missing")

        with pytest.raises(NotFoundError):
            await handler.retry_once(operation)
        assert len(calls) == 1


class TestDescribeError:
    def test_known_service_code(self):
        error = ValidationError(ErrorCode.PAYLOAD_TOO_LARGE.value, "413")

        assert describe_error(error) == "File too large."

    def test_missing_columns_keeps_server_message(self):
        error = ValidationError("MISSING_COLUMNS", "Missing columns: email, phone")

        assert describe_error(error) == "Missing columns: email, phone"

    def test_unknown_code_falls_back_to_message(self):
        assert describe_error(ValidationError("SOMETHING_NEW", "Odd")) == "Odd"

    def test_timeout(self):
        error = NetworkError(NetworkErrorReason.TIMEOUT, "slow")

        assert describe_error(error) == "Request timed out. Try again."
