"""Transport primitives shared by the Nomad and registry clients."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Optional

import httpx

from vmonitor.foundation.common import AsyncCircuitBreaker

logger = logging.getLogger(__name__)

LatencyObserver = Callable[[float], None]


class BreakerRetryTransport:
    """Send requests through a circuit breaker, retrying network failures.

    Only ``httpx.TransportError`` (refused connections, timeouts, resets) is
    retried. One request that still fails after all retries is counted once by
    the breaker. Error statuses are ordinary responses here; callers classify
    them.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        breaker: AsyncCircuitBreaker,
        *,
        timeout: float,
        retries: int,
        backoff: float = 0.2,
        observe_latency: Optional[LatencyObserver] = None,
    ) -> None:
        self._client = client
        self.breaker = breaker
        self.timeout = timeout
        self.retries = max(0, retries)
        self.backoff = backoff
        self._observe_latency = observe_latency
        self._guarded = breaker(self._send_with_retries)

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        kwargs.setdefault("timeout", self.timeout)
        return await self._guarded(method, url, kwargs)

    async def _send_with_retries(
        self, method: str, url: str, kwargs: dict[str, Any]
    ) -> httpx.Response:
        attempt = 0
        while True:
            started = time.perf_counter()
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                if attempt >= self.retries:
                    raise
                attempt += 1
                logger.debug("%s %s failed (%s); retry %d/%d", method, url, exc, attempt, self.retries)
                await asyncio.sleep(self.backoff * attempt)
                continue
            if self._observe_latency is not None:
                self._observe_latency(time.perf_counter() - started)
            return response


__all__ = ["BreakerRetryTransport"]
