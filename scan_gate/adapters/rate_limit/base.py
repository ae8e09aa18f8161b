"""Rate limit store interfaces.

The limiter service depends on this abstraction (not the concrete storage) so
the persistent backend (Redis) and the in-process fallback are interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a check-and-increment operation.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the current window ends.
        retry_after_seconds: Suggested wait time in seconds when blocked.
        window_start: UNIX epoch seconds when the current window began.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None
    window_start: int = 0


def window_bounds(now: float, window_seconds: int) -> tuple[int, int]:
    """Compute fixed-window boundaries for a given timestamp.

    Args:
        now: UNIX time in seconds.
        window_seconds: Window size in seconds.

    Returns:
        Tuple of (window_start_epoch_seconds, reset_at_epoch_seconds).
    """
    window_start = int(now // window_seconds) * window_seconds
    return window_start, window_start + window_seconds


def validate_consume_args(key: str, limit: int, window_seconds: int, cost: int) -> None:
    if not key:
        raise ValueError("key must be a non-empty string")
    if limit < 1:
        raise ValueError("limit must be >= 1")
    if window_seconds < 1:
        raise ValueError("window_seconds must be >= 1")
    if cost < 1:
        raise ValueError("cost must be >= 1")


class AbstractRateLimitStore(ABC):
    """Interface for fixed-window counter stores."""

    @abstractmethod
    def consume(
        self,
        key: str,
        *,
        limit: int,
        window_seconds: int,
        cost: int = 1,
    ) -> RateLimitResult:
        """Atomically check the window counter and increment it when under limit.

        Args:
            key: Counter key (identity namespaced by tier).
            limit: Max units per window.
            window_seconds: Window size in seconds.
            cost: Units to consume (default 1).

        Returns:
            RateLimitResult describing whether it was allowed.

        Raises:
            DependencyError: If the backing store is unreachable.
        """
        raise NotImplementedError

    @abstractmethod
    def count(self, key: str, *, window_seconds: int) -> int:
        """Return the units consumed by key in the current window (0 if none)."""
        raise NotImplementedError
