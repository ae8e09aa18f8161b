"""Subscription tiers and the tier resolver.

Tiers form a closed enumeration; each maps to an immutable TierLimits record
built once from settings at process start.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from scan_gate.adapters.identity.base import AbstractProfileStore
from scan_gate.core.config import TierSettings
from scan_gate.services.identity import ResolvedIdentity
from scan_gate.services.policy import PolicyStep, allow, first_decisive

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    ANONYMOUS = "anonymous"
    FREE = "free"
    PLUS = "plus"
    PRO = "pro"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: str | None) -> "Tier | None":
        """Map a stored subscription string to a Tier; None when unknown."""
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class TierLimits:
    """Limits for one tier.

    Attributes:
        request_limit: Requests allowed per rolling window.
        window_seconds: Window length.
        scan_allowance: Lifetime scans for the absolute ledger; None = unlimited.
    """

    request_limit: int
    window_seconds: int
    scan_allowance: int | None


TierTable = Mapping[Tier, TierLimits]


def build_tier_table(tier_settings: TierSettings) -> TierTable:
    """Freeze the configured limits into a read-only mapping covering every Tier."""
    table = {
        tier: TierLimits(
            request_limit=getattr(tier_settings, f"{tier.value}_request_limit"),
            window_seconds=getattr(tier_settings, f"{tier.value}_window_seconds"),
            scan_allowance=getattr(tier_settings, f"{tier.value}_scan_allowance"),
        )
        for tier in Tier
    }
    return MappingProxyType(table)


@dataclass(frozen=True)
class ResolvedTier:
    tier: Tier
    limits: TierLimits
    source: str


class TierResolver:
    """Resolve an identity's tier.

    Unauthenticated identities are always ``anonymous``. Authenticated users
    read their subscription from the profile store; a store outage degrades to
    ``free`` rather than denying.
    """

    def __init__(self, table: TierTable, profiles: AbstractProfileStore) -> None:
        self._table = table
        self._profiles = profiles

    def limits_for(self, tier: Tier) -> TierLimits:
        return self._table[tier]

    def _from_profile_store(self, user_id: str):
        profile = self._profiles.get_profile(user_id)
        if profile is None:
            return allow(Tier.FREE, reason="no_profile")
        if (profile.role or "").lower() == "admin":
            return allow(Tier.ADMIN, reason="admin_role")

        tier = Tier.parse(profile.subscription_tier)
        if tier is None or tier is Tier.ANONYMOUS:
            if profile.subscription_tier:
                logger.warning(
                    "tier.unknown_subscription",
                    extra={"subscription_tier": profile.subscription_tier},
                )
            return allow(Tier.FREE, reason="default_subscription")
        return allow(tier, reason="subscription")

    def resolve(self, identity: ResolvedIdentity) -> ResolvedTier:
        if not identity.is_authenticated or not identity.user_id:
            return ResolvedTier(Tier.ANONYMOUS, self._table[Tier.ANONYMOUS], "unauthenticated")

        user_id = identity.user_id
        outcome = first_decisive(
            "tier",
            [
                PolicyStep("profile_store", lambda: self._from_profile_store(user_id)),
                PolicyStep("degraded_free", lambda: allow(Tier.FREE, reason="profile_store_unavailable")),
            ],
        )
        tier = outcome.value or Tier.FREE
        return ResolvedTier(tier, self._table[tier], outcome.source or "profile_store")
