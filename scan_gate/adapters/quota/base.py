"""Absolute quota ledger store interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class LedgerEntry:
    """Lifetime scan counter for a device or a user.

    Attributes:
        key: Ledger key (``device:<fingerprint>`` or ``user:<id>``).
        scan_count: Scans consumed so far; never decremented.
        is_blocked: Operator block; dominates any remaining allowance.
        last_scan_at: UNIX time of the last consumed scan, if any.
    """

    key: str
    scan_count: int = 0
    is_blocked: bool = False
    last_scan_at: float | None = None


class AbstractQuotaStore(ABC):
    """Interface for ledger persistence.

    Every method raises DependencyError when the backing store is unreachable.
    """

    @abstractmethod
    def get(self, key: str) -> LedgerEntry | None:
        """Return the entry for key, or None if it was never created."""
        raise NotImplementedError

    @abstractmethod
    def increment(self, key: str, *, now: float) -> LedgerEntry:
        """Atomically add one consumed scan, creating the entry lazily."""
        raise NotImplementedError

    @abstractmethod
    def set_blocked(self, key: str, blocked: bool) -> LedgerEntry:
        """Set or clear the operator block, creating the entry lazily."""
        raise NotImplementedError

    @abstractmethod
    def add_daily_cost(self, day: str, cents: float) -> float:
        """Add cents to the day's downstream cost and return the new total."""
        raise NotImplementedError
