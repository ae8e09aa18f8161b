"""Device fingerprint registry store interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class DeviceRecord:
    """Everything the registry knows about one fingerprint.

    Records are never auto-deleted; an operator may block them.
    """

    fingerprint: str
    first_seen: float
    last_seen: float
    user_ids: frozenset[str] = field(default_factory=frozenset)
    ip_addresses: frozenset[str] = field(default_factory=frozenset)
    user_agents: frozenset[str] = field(default_factory=frozenset)
    is_blocked: bool = False


class AbstractDeviceStore(ABC):
    """Interface for device registry persistence.

    Every method raises DependencyError when the backing store is unreachable.
    """

    @abstractmethod
    def touch(
        self,
        fingerprint: str,
        *,
        now: float,
        user_id: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> DeviceRecord:
        """Upsert a contact: set first_seen once, bump last_seen, accumulate sets."""
        raise NotImplementedError

    @abstractmethod
    def get(self, fingerprint: str) -> DeviceRecord | None:
        raise NotImplementedError

    @abstractmethod
    def set_blocked(self, fingerprint: str, blocked: bool, *, now: float) -> DeviceRecord:
        raise NotImplementedError

    @abstractmethod
    def record_user_ip(self, user_id: str, ip: str, *, now: float, window_seconds: int) -> int:
        """Remember that user_id was seen from ip; return distinct IPs within the window."""
        raise NotImplementedError
