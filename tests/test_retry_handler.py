import pytest

from mapminer.config import RetryConfig
from mapminer.errors import BrowserDisconnectedError, DetectionError, TransientItemError
from mapminer.resilience.retry_handler import RetryHandler

from conftest import RecordingSleep


class TestRetryHandler:
    """Test suite for bounded retry with linear backoff."""

    @pytest.fixture
    def sleep(self):
        return RecordingSleep()

    @pytest.fixture
    def handler(self, sleep):
        return RetryHandler(RetryConfig(max_retries=3, base_delay=1.0), sleep=sleep)

    @pytest.mark.asyncio
    async def test_success_first_try(self, handler, sleep):
        async def ok():
            return "record"

        assert await handler.execute_with_retry(ok) == (True, "record")
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_linear_backoff_then_success(self, handler, sleep):
        attempts = []

        async def flaky(value):
            attempts.append(value)
            if len(attempts) < 3:
                raise TransientItemError("timeout")
            return value

        success, result = await handler.execute_with_retry(flaky, "x", context="flaky")

        assert success
        assert result == "x"
        assert sleep.calls == [1.0, 2.0]
        assert handler.total_retries == 2

    @pytest.mark.asyncio
    async def test_exhausted_returns_last_error(self, handler, sleep):
        async def broken():
            raise TransientItemError("still down")

        success, result = await handler.execute_with_retry(broken)

        assert not success
        assert isinstance(result, TransientItemError)
        assert str(result) == "still down"
        # No sleep after the last attempt
        assert sleep.calls == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_detection_is_never_retried(self, handler, sleep):
        calls = []

        async def challenged():
            calls.append(1)
            raise DetectionError("https://www.google.com/maps/place/x")

        with pytest.raises(DetectionError):
            await handler.execute_with_retry(challenged)
        assert len(calls) == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_disconnect_is_never_retried(self, handler):
        calls = []

        async def dead():
            calls.append(1)
            raise BrowserDisconnectedError("workers browser disconnected")

        with pytest.raises(BrowserDisconnectedError):
            await handler.execute_with_retry(dead)
        assert len(calls) == 1
