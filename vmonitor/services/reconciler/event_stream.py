from __future__ import annotations

"""Trigger reconciliation cycles from the Nomad event stream."""

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Iterable, Mapping, Optional, Protocol

from vmonitor.foundation.errors import SchedulerError

logger = logging.getLogger(__name__)

JOB_EVENT_TYPES = frozenset({"JobRegistered", "JobDeregistered", "JobBatchDeregistered"})


class EventSource(Protocol):
    def stream_events(
        self, *, index: int = 0, topics: Iterable[str] = ("Job",)
    ) -> AsyncIterator[dict[str, Any]]:
        ...


class Triggerable(Protocol):
    def trigger(self, *, source: str = "manual") -> bool:
        ...


def is_job_change(frame: Mapping[str, Any]) -> bool:
    """Return ``True`` when ``frame`` carries a job (de)registration."""
    events = frame.get("Events") or []
    if not isinstance(events, list):
        return False
    return any(
        isinstance(event, Mapping)
        and event.get("Topic") == "Job"
        and event.get("Type") in JOB_EVENT_TYPES
        for event in events
    )


class NomadEventWatcher:
    """Follow ``/v1/event/stream`` and request a cycle when jobs change.

    Bursts of events (a deployment registers several jobs at once) collapse
    into a single trigger fired ``debounce`` seconds after the first one.
    The last seen index is kept across reconnects so no event is replayed.
    """

    def __init__(
        self,
        client: EventSource,
        loop: Triggerable,
        *,
        topics: Iterable[str] = ("Job",),
        debounce: float = 5.0,
        reconnect_delay: float = 10.0,
    ) -> None:
        self._client = client
        self._loop = loop
        self._topics = tuple(topics)
        self._debounce = debounce
        self._reconnect_delay = reconnect_delay
        self.index = 0
        self._task: Optional[asyncio.Task] = None
        self._pending: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        if self._task is None:
            self._stop_event.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._stop_event.set()
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            self._stop_event = asyncio.Event()
        if self._pending is not None:
            self._pending.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pending
            self._pending = None

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.consume()
                logger.info("Nomad event stream closed; reconnecting")
            except SchedulerError as exc:
                logger.warning("Nomad event stream failed: %s", exc)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._reconnect_delay)
            except asyncio.TimeoutError:
                pass

    async def consume(self) -> None:
        """Read frames until the stream ends."""
        logger.debug("Opening Nomad event stream at index %d", self.index)
        async for frame in self._client.stream_events(index=self.index, topics=self._topics):
            index = frame.get("Index")
            if isinstance(index, int) and index > self.index:
                self.index = index
            if is_job_change(frame):
                logger.debug("Job change observed at index %d", self.index)
                self._schedule()

    def _schedule(self) -> None:
        if self._pending is not None and not self._pending.done():
            return
        self._pending = asyncio.create_task(self._fire())

    async def _fire(self) -> None:
        if self._debounce > 0:
            await asyncio.sleep(self._debounce)
        self._loop.trigger(source="event")

    async def flush(self) -> None:
        """Wait for a scheduled trigger to fire."""
        if self._pending is not None:
            await self._pending


__all__ = ["NomadEventWatcher", "is_job_change"]
