"""
Retry and Cleanup Tests
=======================
"""
import asyncio
import logging
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from design_extractor.errors import ApiError, ErrorCode, NetworkError, ProcessingError, UploadError
from design_extractor.recovery import ResourceRegistry, backoff_delay, is_retryable, retry


class TestRetry:

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self, recorded_sleep):
        operation = AsyncMock(side_effect=[RuntimeError("boom"), RuntimeError("boom"), "ok"])

        result = await retry(operation, max_attempts=3, initial_delay=0.01, backoff_multiplier=2,
                             sleep=recorded_sleep)

        assert result == "ok"
        assert operation.await_count == 3
        assert recorded_sleep.delays == pytest.approx([0.01, 0.02])

    @pytest.mark.asyncio
    async def test_raises_last_error_when_exhausted(self, recorded_sleep):
        errors = [RuntimeError("first"), RuntimeError("second"), RuntimeError("third")]
        operation = AsyncMock(side_effect=errors)

        with pytest.raises(RuntimeError, match="third"):
            await retry(operation, sleep=recorded_sleep)

        assert operation.await_count == 3
        assert recorded_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_stops_on_non_retryable(self, recorded_sleep):
        error = ApiError(ErrorCode.API_KEY_INVALID)
        operation = AsyncMock(side_effect=error)

        with pytest.raises(ApiError) as exc_info:
            await retry(operation, should_retry=is_retryable, sleep=recorded_sleep)

        assert exc_info.value is error
        assert operation.await_count == 1
        assert recorded_sleep.delays == []

    @pytest.mark.asyncio
    async def test_single_attempt(self, recorded_sleep):
        operation = AsyncMock(side_effect=RuntimeError("once"))
        with pytest.raises(RuntimeError):
            await retry(operation, max_attempts=1, sleep=recorded_sleep)
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_failures_logged(self, recorded_sleep, caplog):
        operation = AsyncMock(side_effect=[RuntimeError("flaky"), "ok"])
        with caplog.at_level(logging.WARNING, logger="design_extractor.recovery"):
            await retry(operation, sleep=recorded_sleep)
        assert "Attempt 1/3 failed: flaky" in caplog.text

    @pytest.mark.asyncio
    async def test_cancellation_not_retried(self, recorded_sleep):
        operation = AsyncMock(side_effect=asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            await retry(operation, sleep=recorded_sleep)
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            await retry(AsyncMock(), max_attempts=0)
        with pytest.raises(TypeError):
            await retry("not callable")

    def test_backoff_delay(self):
        assert [backoff_delay(n, 1.0, 2.0) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


class TestIsRetryable:

    @pytest.mark.parametrize("error,expected", [
        (NetworkError(ErrorCode.NETWORK_TIMEOUT), True),
        (NetworkError(ErrorCode.NETWORK_OFFLINE), True),
        (UploadError(ErrorCode.FILE_TOO_LARGE), False),
        (ApiError(ErrorCode.API_SERVICE_UNAVAILABLE, retryable=True), True),
        (ApiError(ErrorCode.API_KEY_INVALID), False),
        (ProcessingError(ErrorCode.CANVAS_ERROR, retryable=True), True),
        (httpx.ConnectError("refused"), True),
        (ValueError("plain"), False),
        (None, False),
    ])
    def test_classification(self, error, expected):
        assert is_retryable(error) is expected

    def test_explicit_flag_wins(self):
        error = ApiError(ErrorCode.API_QUOTA_EXCEEDED, retryable=False)
        assert is_retryable(error) is False

    @pytest.mark.parametrize("code,expected", [
        (ErrorCode.API_QUOTA_EXCEEDED, True),
        (ErrorCode.API_SERVICE_UNAVAILABLE, True),
        (ErrorCode.NETWORK_TIMEOUT, True),
        (ErrorCode.API_KEY_INVALID, False),
        (ErrorCode.API_BAD_REQUEST, False),
        ("SOMETHING_ELSE", True),
    ])
    def test_api_codes_without_flag(self, code, expected):
        error = Mock(spec=["category", "code"])
        error.category = "API_ERROR"
        error.code = code
        assert is_retryable(error) is expected

    def test_category_without_flag(self):
        network = Mock(spec=["category", "code"], category="NETWORK_ERROR", code=None)
        processing = Mock(spec=["category", "code"], category="PROCESSING_ERROR", code=None)
        upload = Mock(spec=["category", "code"], category="UPLOAD_ERROR", code=None)
        assert is_retryable(network) is True
        assert is_retryable(processing) is True
        assert is_retryable(upload) is False


class TestResourceRegistry:

    def test_cleanup_releases_everything(self):
        registry = ResourceRegistry()
        with_cleanup = Mock(spec=["cleanup"])
        with_close = Mock(spec=["close"])
        released = []
        registry.register_resource(with_cleanup)
        registry.register_resource(with_close)
        registry.register_resource(lambda: released.append(True))
        assert len(registry) == 3

        assert registry.cleanup() == 3

        with_cleanup.cleanup.assert_called_once()
        with_close.close.assert_called_once()
        assert released == [True]
        assert len(registry) == 0

    def test_failing_resource_does_not_stop_cleanup(self, caplog):
        registry = ResourceRegistry()
        broken = Mock(spec=["cleanup"])
        broken.cleanup.side_effect = RuntimeError("already gone")
        healthy = Mock(spec=["close"])
        registry.register_resource(broken)
        registry.register_resource(healthy)

        with caplog.at_level(logging.WARNING, logger="design_extractor.recovery"):
            released = registry.cleanup()

        assert released == 1
        healthy.close.assert_called_once()
        assert "already gone" in caplog.text
        assert len(registry) == 0

    def test_unregister(self):
        registry = ResourceRegistry()
        resource = Mock(spec=["close"])
        registry.register_resource(resource)
        registry.unregister_resource(resource)
        registry.cleanup()
        resource.close.assert_not_called()

    def test_none_rejected(self):
        with pytest.raises(ValueError):
            ResourceRegistry().register_resource(None)
