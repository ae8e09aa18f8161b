"""Redis-backed fixed-window counter.

Check-and-increment runs as a single Lua script so concurrent requests for the
same identity cannot both observe the last free slot.
"""

from __future__ import annotations

import math
import time
from typing import Callable

import redis

from scan_gate.adapters.rate_limit.base import (
    AbstractRateLimitStore,
    RateLimitResult,
    validate_consume_args,
    window_bounds,
)
from scan_gate.adapters.redis_client import store_errors

# KEYS[1] = window counter key
# ARGV[1] = limit
# ARGV[2] = cost
# ARGV[3] = ttl_seconds
# Returns: {allowed, count}
FIXED_WINDOW_LUA = r"""
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local cost = tonumber(ARGV[2])
local ttl = tonumber(ARGV[3])

local current = tonumber(redis.call('GET', key) or '0')
if current + cost > limit then
  return {0, current}
end

current = redis.call('INCRBY', key, cost)
if current == cost then
  redis.call('EXPIRE', key, ttl)
end
return {1, current}
"""


class RedisFixedWindowRateLimiter(AbstractRateLimitStore):
    """Persistent fixed-window limiter shared by every worker."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        namespace: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._namespace = namespace
        self._clock = clock
        self._script = client.register_script(FIXED_WINDOW_LUA)

    def _window_key(self, key: str, window_start: int) -> str:
        return f"{self._namespace}:rl:{key}:{window_start}"

    def consume(
        self,
        key: str,
        *,
        limit: int,
        window_seconds: int,
        cost: int = 1,
    ) -> RateLimitResult:
        validate_consume_args(key, limit, window_seconds, cost)

        now = self._clock()
        window_start, reset_at = window_bounds(now, window_seconds)
        # Counter outlives its window by one window so late readers still see it
        ttl = window_seconds * 2

        with store_errors("rate_limit", "consume"):
            allowed, count = self._script(
                keys=[self._window_key(key, window_start)],
                args=[limit, cost, ttl],
            )

        count = int(count)
        remaining = max(0, limit - count)
        if int(allowed):
            return RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=remaining,
                reset_at=reset_at,
                retry_after_seconds=None,
                window_start=window_start,
            )
        return RateLimitResult(
            allowed=False,
            limit=limit,
            remaining=remaining,
            reset_at=reset_at,
            retry_after_seconds=max(0, int(math.ceil(reset_at - now))),
            window_start=window_start,
        )

    def count(self, key: str, *, window_seconds: int) -> int:
        window_start, _ = window_bounds(self._clock(), window_seconds)
        with store_errors("rate_limit", "count"):
            value = self._client.get(self._window_key(key, window_start))
        return int(value or 0)
