import httpx
import pytest

from vmonitor.foundation.common import AsyncCircuitBreaker
from vmonitor.services.reconciler.transport import BreakerRetryTransport


@pytest.mark.asyncio
async def test_transport_errors_are_retried():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) < 3:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200)

    latencies = []
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        transport = BreakerRetryTransport(
            client,
            AsyncCircuitBreaker(max_failures=1),
            timeout=1.0,
            retries=2,
            backoff=0,
            observe_latency=latencies.append,
        )
        resp = await transport.request("GET", "http://svc/x")

    assert resp.status_code == 200
    assert len(attempts) == 3
    assert len(latencies) == 1
    assert not transport.breaker.is_open


@pytest.mark.asyncio
async def test_error_statuses_are_returned_not_counted():
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(503))
    ) as client:
        transport = BreakerRetryTransport(
            client, AsyncCircuitBreaker(max_failures=1), timeout=1.0, retries=2, backoff=0
        )
        resp = await transport.request("GET", "http://svc/x")

    assert resp.status_code == 503
    assert transport.breaker.failures == 0


@pytest.mark.asyncio
async def test_exhausted_retries_count_one_breaker_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        transport = BreakerRetryTransport(
            client, AsyncCircuitBreaker(max_failures=2), timeout=1.0, retries=1, backoff=0
        )
        with pytest.raises(httpx.ReadTimeout):
            await transport.request("GET", "http://svc/x")

    assert transport.breaker.failures == 1
    assert not transport.breaker.is_open
