"""Rate limiting adapters.

This package provides a small abstraction layer so the limiter service can use
Redis as the source of truth and an in-process counter as its degraded
fallback without changing the service itself.
"""
