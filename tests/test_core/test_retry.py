"""
Tests for retry logic implementation.
"""
import pytest
import httpx
from unittest.mock import AsyncMock

from compliance_orchestrator.core.retry import (
    RetryConfig,
    create_async_retry_decorator,
    get_push_retry_config,
)


class TestRetryConfig:
    """Test retry configuration."""

    def test_default_config(self):
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.base_delay == 1.0
        assert config.max_delay == 30.0
        assert httpx.TransportError in config.retryable_exceptions

    def test_push_retry_config(self):
        config = get_push_retry_config(max_attempts=4, base_delay=0.5)
        assert config.max_attempts == 4
        assert config.base_delay == 0.5
        assert config.max_delay == 10.0


class TestAsyncRetryDecorator:
    """Test the tenacity-backed async retry decorator."""

    @pytest.fixture
    def fast_config(self):
        return RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0)

    @pytest.mark.asyncio
    async def test_retries_transport_errors_until_success(self, fast_config):
        func = AsyncMock(side_effect=[httpx.ConnectError("refused"), {"ok": True}])
        decorated = create_async_retry_decorator(fast_config, "Test")(func)

        assert await decorated() == {"ok": True}
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_reraises_after_max_attempts(self, fast_config):
        func = AsyncMock(side_effect=httpx.ConnectError("refused"))
        decorated = create_async_retry_decorator(fast_config, "Test")(func)

        with pytest.raises(httpx.ConnectError):
            await decorated()
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_errors_fail_immediately(self, fast_config):
        func = AsyncMock(side_effect=ValueError("bad payload"))
        decorated = create_async_retry_decorator(fast_config, "Test")(func)

        with pytest.raises(ValueError):
            await decorated()
        assert func.await_count == 1
