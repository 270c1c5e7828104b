"""Asynchronous circuit breaker utility."""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")


class CircuitOpenError(RuntimeError):
    """Raised when a call is attempted while the circuit is open."""


class AsyncCircuitBreaker:
    """Circuit breaker for async callables.

    The circuit opens after ``max_failures`` consecutive failures and stays
    open for ``reset_after`` seconds. After that window exactly one call is
    let through as a probe while every concurrent caller is still rejected;
    success closes the circuit, failure re-opens it for another window.
    """

    def __init__(
        self,
        max_failures: int = 3,
        *,
        reset_after: float | None = None,
        on_open: Callable[[], None] | None = None,
        on_close: Callable[[], None] | None = None,
        on_failure: Callable[[int], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_failures = max_failures
        self._reset_after = reset_after
        self._on_open = on_open
        self._on_close = on_close
        self._on_failure = on_failure
        self._clock = clock
        self._failures = 0
        self._opened_at: float | None = None
        self._probing = False

    # --- public API -------------------------------------------------------
    @property
    def is_open(self) -> bool:
        if self._opened_at is None:
            return False
        if self._reset_after is None or self._probing:
            return True
        return self._clock() - self._opened_at < self._reset_after

    @property
    def failures(self) -> int:
        return self._failures

    def reset(self) -> None:
        """Manually close the circuit and clear failure count."""
        was_open = self._opened_at is not None
        self._opened_at = None
        self._failures = 0
        if was_open and self._on_close:
            self._on_close()

    def __call__(
        self, func: Callable[..., Awaitable[T]]
    ) -> Callable[..., Awaitable[T]]:
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            if self.is_open:
                raise CircuitOpenError("circuit open")
            probe = self._opened_at is not None
            if probe:
                self._probing = True
            try:
                result = await func(*args, **kwargs)
            except Exception:
                self._failures += 1
                if self._on_failure:
                    self._on_failure(self._failures)
                if self._failures >= self._max_failures:
                    # a failed probe restarts the open window
                    self._opened_at = self._clock()
                    if self._on_open:
                        self._on_open()
                raise
            else:
                if self._failures or self._opened_at is not None:
                    self.reset()
                return result
            finally:
                if probe:
                    self._probing = False
        return wrapper


__all__ = ["AsyncCircuitBreaker", "CircuitOpenError"]
