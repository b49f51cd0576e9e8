"""
Tests for circuit breaker implementation.
"""
import pytest
import httpx

from compliance_orchestrator.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    ServiceClient,
)
from compliance_orchestrator.core.exceptions import (
    ChannelUnavailableError,
    ExternalServiceError,
    ExternalServiceTimeoutError,
    ServiceUnavailableError,
)


class TestCircuitBreakerConfig:
    """Test circuit breaker configuration."""

    def test_default_config(self):
        """Test default configuration values."""
        config = CircuitBreakerConfig()
        assert config.failure_threshold == 5
        assert config.success_threshold == 2
        assert config.timeout == 60
        assert config.half_open_max_calls == 3


class TestCircuitBreaker:
    """Test circuit breaker functionality."""

    @pytest.fixture
    def circuit_breaker(self):
        config = CircuitBreakerConfig(failure_threshold=3, success_threshold=2, timeout=60)
        return CircuitBreaker("Test Service", config)

    @pytest.fixture
    def failing_function(self):
        async def fail_func():
            raise ExternalServiceError("Test Service", "Service unavailable")
        return fail_func

    @pytest.fixture
    def successful_function(self):
        async def success_func():
            return {"data": "success"}
        return success_func

    @pytest.mark.asyncio
    async def test_initial_closed_state(self, circuit_breaker):
        """Test circuit breaker starts in closed state."""
        assert circuit_breaker.state == CircuitState.CLOSED
        assert circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_successful_call_passes_result_through(self, circuit_breaker, successful_function):
        result = await circuit_breaker.call_async(successful_function)
        assert result == {"data": "success"}
        assert circuit_breaker.metrics.successful_calls == 1

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, circuit_breaker, failing_function):
        """Test the circuit opens once consecutive failures reach the threshold."""
        for _ in range(3):
            with pytest.raises(ExternalServiceError):
                await circuit_breaker.call_async(failing_function)

        assert circuit_breaker.state == CircuitState.OPEN
        assert circuit_breaker.metrics.circuit_open_count == 1

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_calling(self, circuit_breaker, failing_function):
        for _ in range(3):
            with pytest.raises(ExternalServiceError):
                await circuit_breaker.call_async(failing_function)

        calls = []

        async def tracked():
            calls.append(1)

        with pytest.raises(ServiceUnavailableError):
            await circuit_breaker.call_async(tracked)
        assert calls == []

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, circuit_breaker, failing_function, successful_function):
        for _ in range(2):
            with pytest.raises(ExternalServiceError):
                await circuit_breaker.call_async(failing_function)

        await circuit_breaker.call_async(successful_function)
        assert circuit_breaker.failure_count == 0
        assert circuit_breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_closes_after_successes(self, circuit_breaker, failing_function, successful_function):
        """Test recovery through half-open once the timeout has elapsed."""
        for _ in range(3):
            with pytest.raises(ExternalServiceError):
                await circuit_breaker.call_async(failing_function)

        circuit_breaker.last_failure_time -= 61

        await circuit_breaker.call_async(successful_function)
        assert circuit_breaker.state == CircuitState.HALF_OPEN
        await circuit_breaker.call_async(successful_function)
        assert circuit_breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, circuit_breaker, failing_function):
        for _ in range(3):
            with pytest.raises(ExternalServiceError):
                await circuit_breaker.call_async(failing_function)

        circuit_breaker.last_failure_time -= 61

        with pytest.raises(ExternalServiceError):
            await circuit_breaker.call_async(failing_function)
        assert circuit_breaker.state == CircuitState.OPEN
        assert circuit_breaker.metrics.circuit_open_count == 2

    def test_get_status_and_reset(self, circuit_breaker):
        circuit_breaker.state = CircuitState.OPEN
        circuit_breaker.failure_count = 4

        status = circuit_breaker.get_status()
        assert status["service"] == "Test Service"
        assert status["state"] == "open"
        assert status["is_available"] is False

        circuit_breaker.reset()
        assert circuit_breaker.state == CircuitState.CLOSED
        assert circuit_breaker.failure_count == 0


class TestServiceClient:
    """Test the circuit-protected HTTP client."""

    def _client(self, handler, token_provider=None, threshold=5):
        return ServiceClient(
            service_name="Test API",
            base_url="https://api.example.com/v1/",
            timeout_seconds=5,
            circuit_breaker_config=CircuitBreakerConfig(failure_threshold=threshold),
            token_provider=token_provider,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

    @pytest.mark.asyncio
    async def test_get_returns_json_and_sends_bearer_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"name": "devices/1"})

        async def token_provider():
            return "access-token"

        client = self._client(handler, token_provider=token_provider)
        result = await client.get("/devices/1")

        assert result == {"name": "devices/1"}
        assert seen["url"] == "https://api.example.com/v1/devices/1"
        assert seen["auth"] == "Bearer access-token"
        await client.close()

    @pytest.mark.asyncio
    async def test_empty_body_returns_empty_dict(self):
        client = self._client(lambda request: httpx.Response(200))
        assert await client.post("/devices/1:wipe") == {}
        await client.close()

    @pytest.mark.asyncio
    async def test_http_error_raises_external_service_error(self):
        client = self._client(lambda request: httpx.Response(403, text="forbidden"))

        with pytest.raises(ExternalServiceError) as exc_info:
            await client.get("/devices")

        assert exc_info.value.status_code == 403
        assert client.get_circuit_status()["failure_count"] == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_timeout_raises_timeout_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = self._client(handler)
        with pytest.raises(ExternalServiceTimeoutError):
            await client.get("/devices")
        await client.close()

    @pytest.mark.asyncio
    async def test_open_circuit_surfaces_channel_unavailable(self):
        client = self._client(lambda request: httpx.Response(500, text="boom"), threshold=1)

        with pytest.raises(ExternalServiceError):
            await client.get("/devices")
        with pytest.raises(ChannelUnavailableError):
            await client.get("/devices")
        await client.close()
