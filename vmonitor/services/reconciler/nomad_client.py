from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, Iterable, Optional
from urllib.parse import quote

import httpx

from vmonitor.foundation.common import AsyncCircuitBreaker, CircuitOpenError
from vmonitor.foundation.errors import SchedulerError

from .transport import BreakerRetryTransport

logger = logging.getLogger(__name__)


class NomadClient:
    """Minimal async client for the Nomad HTTP API.

    Every failure mode (unreachable agent, timeout, error status, undecodable
    body) surfaces as :class:`SchedulerError`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        retries: int = 1,
        namespace: str | None = None,
        client: httpx.AsyncClient | None = None,
        breaker: AsyncCircuitBreaker | None = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._timeout = timeout
        self._namespace = namespace
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        self._transport = BreakerRetryTransport(
            self._client,
            breaker or AsyncCircuitBreaker(max_failures=5, reset_after=30.0),
            timeout=timeout,
            retries=retries,
        )

    @property
    def base_url(self) -> str:
        return self._base

    def _params(self, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if self._namespace:
            params["namespace"] = self._namespace
        if extra:
            params.update(extra)
        return params

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self._base}{path}"
        try:
            resp = await self._transport.request("GET", url, params=self._params(params))
        except CircuitOpenError as exc:
            raise SchedulerError(f"Nomad circuit open for {self._base}") from exc
        except httpx.TimeoutException as exc:
            raise SchedulerError(f"Nomad request timed out: GET {path}") from exc
        except httpx.HTTPError as exc:
            raise SchedulerError(f"Nomad unreachable at {self._base}: {exc}") from exc
        if resp.status_code >= 400:
            raise SchedulerError(
                f"Nomad returned HTTP {resp.status_code} for GET {path}",
                status=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise SchedulerError(f"Nomad returned invalid JSON for GET {path}") from exc

    async def list_jobs(self) -> list[dict[str, Any]]:
        """Return the job stubs from ``GET /v1/jobs``."""
        data = await self._get_json("/v1/jobs")
        if not isinstance(data, list):
            raise SchedulerError("Nomad job list is not an array")
        return data

    async def read_job(self, job_id: str) -> dict[str, Any]:
        """Return the full job specification from ``GET /v1/job/<id>``."""
        data = await self._get_json(f"/v1/job/{quote(job_id, safe='')}")
        if not isinstance(data, dict):
            raise SchedulerError(f"Nomad job {job_id!r} is not an object")
        return data

    async def stream_events(
        self,
        *,
        index: int = 0,
        topics: Iterable[str] = ("Job",),
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield frames from ``/v1/event/stream``.

        Nomad sends newline-delimited JSON; ``{}`` heartbeat frames are
        skipped. The stream stays open until the server closes it or the
        caller stops iterating.
        """
        params = self._params({"index": index, "topic": list(topics)})
        timeout = httpx.Timeout(self._timeout, read=None)
        try:
            async with self._client.stream(
                "GET", f"{self._base}/v1/event/stream", params=params, timeout=timeout
            ) as resp:
                if resp.status_code >= 400:
                    raise SchedulerError(
                        f"Nomad event stream returned HTTP {resp.status_code}",
                        status=resp.status_code,
                    )
                async for line in resp.aiter_lines():
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        frame = json.loads(line)
                    except ValueError:
                        logger.warning("Discarding undecodable event frame: %.200s", line)
                        continue
                    if isinstance(frame, dict) and frame:
                        yield frame
        except httpx.HTTPError as exc:
            raise SchedulerError(f"Nomad event stream failed: {exc}") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["NomadClient"]
