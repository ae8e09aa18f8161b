"""Shared Redis connection and error mapping for persistent stores."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

import redis

from scan_gate.core.config import StoreSettings
from scan_gate.core.errors import DependencyError

logger = logging.getLogger(__name__)


def get_redis(store_settings: StoreSettings) -> redis.Redis:
    """Build a Redis client honouring the store's latency budget.

    Connections are lazy; nothing is contacted until the first command.
    """
    return redis.Redis.from_url(
        store_settings.redis_url,
        decode_responses=True,
        socket_timeout=store_settings.socket_timeout_seconds,
        socket_connect_timeout=store_settings.socket_timeout_seconds,
        retry_on_timeout=False,
    )


@contextmanager
def store_errors(dependency: str, operation: str) -> Iterator[None]:
    """Translate Redis failures into DependencyError for the policy layer."""
    try:
        yield
    except redis.RedisError as exc:
        logger.warning(
            "store.unavailable",
            extra={
                "dependency": dependency,
                "operation": operation,
                "error_type": type(exc).__name__,
            },
        )
        raise DependencyError(
            code=f"{dependency}_unavailable",
            message=f"{dependency} store is unreachable",
            details={"dependency": dependency},
        ) from exc
