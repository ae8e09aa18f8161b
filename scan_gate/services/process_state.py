"""Process-scoped admission state.

Everything here lives for the lifetime of one worker process: it is created
when the gate is built, dropped at shutdown and never persisted. None of it is
shared between workers, so a deployment running N workers:

- flags an abusive IP only in the worker that saw it
- lets each worker's rate-limit fallback admit up to the full limit while the
  persistent store is down
- grants the quota fail-open allowance once per worker

That under-enforcement is accepted in exchange for never failing a request on
a store outage.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from scan_gate.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from scan_gate.core.config import Settings
from scan_gate.services.quota_ledger import FailOpenGrants
from scan_gate.utils.ttl_set import TTLSet


@dataclass
class ProcessLocalState:
    flagged_ips: TTLSet
    rate_limit_fallback: InMemoryFixedWindowRateLimiter
    sharing_flags: TTLSet
    fail_open_grants: FailOpenGrants = field(default_factory=FailOpenGrants)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> "ProcessLocalState":
        return cls(
            flagged_ips=TTLSet(
                ttl_seconds=settings.abuse.flag_ttl_seconds,
                max_entries=settings.abuse.flag_max_entries,
                clock=clock,
            ),
            rate_limit_fallback=InMemoryFixedWindowRateLimiter(
                clock=clock,
                gc_interval_seconds=settings.rate_limit.gc_interval_seconds,
            ),
            sharing_flags=TTLSet(
                ttl_seconds=settings.sharing.ip_window_seconds,
                max_entries=settings.abuse.flag_max_entries,
                clock=clock,
            ),
        )
