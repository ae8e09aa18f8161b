"""Interfaces for the external credential verifier and profile store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class Profile:
    """Subscription state owned by the external profile store."""

    subscription_tier: str | None = None
    role: str | None = None


class AbstractTokenVerifier(ABC):
    """Verifies bearer credentials."""

    @abstractmethod
    def verify(self, token: str) -> str | None:
        """Return the authenticated user id, or None for an invalid token.

        Raises:
            DependencyError: If the verifier cannot be reached.
        """
        raise NotImplementedError


class AbstractProfileStore(ABC):
    """Looks up a user's subscription state."""

    @abstractmethod
    def get_profile(self, user_id: str) -> Profile | None:
        """Return the user's profile, or None when no profile exists.

        Raises:
            DependencyError: If the profile store cannot be reached.
        """
        raise NotImplementedError
