"""In-memory fixed-window rate limiter.

Serves two roles: the store for ``STORE_BACKEND=memory`` deployments and the
degraded fallback used when the persistent store errors.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state, so check-and-increment is atomic
  within the process.
- State is lost on restart.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from scan_gate.adapters.rate_limit.base import (
    AbstractRateLimitStore,
    RateLimitResult,
    validate_consume_args,
    window_bounds,
)


@dataclass
class _WindowState:
    window_start: int
    window_seconds: int
    count: int


class InMemoryFixedWindowRateLimiter(AbstractRateLimitStore):
    """Rate limiter using a fixed time window per key.

    Windows are keyed by ``(key, floor(now / window_seconds))``; a key whose
    window has elapsed starts a fresh counter. Windows idle for a full window
    are pruned periodically.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        gc_interval_seconds: int = 300,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            clock: Time source function returning UNIX time in seconds.
            gc_interval_seconds: Minimum seconds between pruning passes.

        Raises:
            ValueError: If gc_interval_seconds is invalid.
        """
        if gc_interval_seconds < 1:
            raise ValueError("gc_interval_seconds must be >= 1")

        self._clock = clock
        self._gc_interval = gc_interval_seconds
        self._next_gc = clock() + gc_interval_seconds
        self._lock = threading.RLock()
        self._state_by_key: dict[str, _WindowState] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._state_by_key)

    def _get_or_reset_state(self, key: str, window_start: int, window_seconds: int) -> _WindowState:
        """Get the current state for key or reset it when the window changes."""
        state = self._state_by_key.get(key)
        if (
            state is None
            or state.window_start != window_start
            or state.window_seconds != window_seconds
        ):
            state = _WindowState(window_start=window_start, window_seconds=window_seconds, count=0)
            self._state_by_key[key] = state
        return state

    def _prune_locked(self, now: float) -> None:
        expired = [
            key
            for key, state in self._state_by_key.items()
            if now >= state.window_start + 2 * state.window_seconds
        ]
        for key in expired:
            del self._state_by_key[key]
        self._next_gc = now + self._gc_interval

    def prune(self) -> None:
        """Drop windows that have been idle for at least a full window."""
        with self._lock:
            self._prune_locked(self._clock())

    def consume(
        self,
        key: str,
        *,
        limit: int,
        window_seconds: int,
        cost: int = 1,
    ) -> RateLimitResult:
        """Consume rate limit budget for the provided key.

        This method both checks the current window usage and mutates the state
        if the request is allowed.

        Raises:
            ValueError: If key is empty or limit/window/cost are invalid.
        """
        validate_consume_args(key, limit, window_seconds, cost)

        now = self._clock()
        window_start, reset_at = window_bounds(now, window_seconds)

        with self._lock:
            if now >= self._next_gc:
                self._prune_locked(now)

            state = self._get_or_reset_state(key, window_start, window_seconds)

            if state.count + cost <= limit:
                state.count += cost
                return RateLimitResult(
                    allowed=True,
                    limit=limit,
                    remaining=max(0, limit - state.count),
                    reset_at=reset_at,
                    retry_after_seconds=None,
                    window_start=window_start,
                )

            return RateLimitResult(
                allowed=False,
                limit=limit,
                remaining=max(0, limit - state.count),
                reset_at=reset_at,
                retry_after_seconds=max(0, int(math.ceil(reset_at - now))),
                window_start=window_start,
            )

    def count(self, key: str, *, window_seconds: int) -> int:
        window_start, _ = window_bounds(self._clock(), window_seconds)
        with self._lock:
            state = self._state_by_key.get(key)
            if state is None or state.window_start != window_start:
                return 0
            return state.count
