"""Configuration-driven verifier and profile store for development and tests."""

from __future__ import annotations

from typing import Mapping

from scan_gate.adapters.identity.base import AbstractProfileStore, AbstractTokenVerifier, Profile


def parse_pairs(pairs_string: str | None) -> dict[str, str]:
    """Parse comma-separated ``left=right`` pairs into a dict.

    Examples:
        >>> parse_pairs("tok-1=user-1, tok-2=user-2")
        {'tok-1': 'user-1', 'tok-2': 'user-2'}
        >>> parse_pairs(None)
        {}
        >>> parse_pairs("broken,also=ok")
        {'also': 'ok'}
    """
    if not pairs_string:
        return {}

    result: dict[str, str] = {}
    for item in pairs_string.split(","):
        left, sep, right = item.partition("=")
        if sep and left.strip() and right.strip():
            result[left.strip()] = right.strip()
    return result


class StaticTokenVerifier(AbstractTokenVerifier):
    def __init__(self, tokens: Mapping[str, str] | None = None) -> None:
        self._tokens = dict(tokens or {})

    def verify(self, token: str) -> str | None:
        return self._tokens.get(token)


class StaticProfileStore(AbstractProfileStore):
    def __init__(self, profiles: Mapping[str, Profile] | None = None) -> None:
        self._profiles = dict(profiles or {})

    def get_profile(self, user_id: str) -> Profile | None:
        return self._profiles.get(user_id)

    @classmethod
    def from_tier_pairs(cls, pairs_string: str | None) -> "StaticProfileStore":
        """Build from ``user_id=tier`` pairs; tier ``admin`` also sets the admin role."""
        profiles = {
            user_id: Profile(
                subscription_tier=tier,
                role="admin" if tier.lower() == "admin" else None,
            )
            for user_id, tier in parse_pairs(pairs_string).items()
        }
        return cls(profiles)
