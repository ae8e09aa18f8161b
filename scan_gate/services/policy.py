"""Ordered fallback policies with typed outcomes.

Each admission component that talks to a store expresses its degradation
behaviour as an ordered list of steps, e.g. ``[persistent store, in-process
fallback]`` or ``[profile store, default tier]``. A step returns an Outcome:

- ``allow(value)`` / ``deny(value, reason)`` are decisive.
- ``indeterminate(reason)`` hands over to the next step.

A step that raises DependencyError is recorded as indeterminate. Any other
exception propagates: only dependency outages are allowed to degrade policy.
``first_decisive`` returns the first decisive outcome along with the name of
the step that produced it, so every fail-open decision is attributable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Sequence, TypeVar

from scan_gate.core.errors import DependencyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Verdict(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    verdict: Verdict
    value: T | None = None
    reason: str | None = None
    source: str | None = None

    @property
    def decisive(self) -> bool:
        return self.verdict is not Verdict.INDETERMINATE

    @property
    def allowed(self) -> bool:
        return self.verdict is Verdict.ALLOW


def allow(value: T, reason: str | None = None) -> Outcome[T]:
    return Outcome(Verdict.ALLOW, value=value, reason=reason)


def deny(value: T, reason: str) -> Outcome[T]:
    return Outcome(Verdict.DENY, value=value, reason=reason)


def indeterminate(reason: str) -> Outcome:
    return Outcome(Verdict.INDETERMINATE, reason=reason)


@dataclass(frozen=True)
class PolicyStep(Generic[T]):
    """A named attempt at reaching a decision."""

    name: str
    run: Callable[[], Outcome[T]]


class NoDecisionError(RuntimeError):
    """Every step was indeterminate; policies must end with a decisive default."""


def first_decisive(policy: str, steps: Sequence[PolicyStep[T]]) -> Outcome[T]:
    """Run steps in order and return the first decisive outcome.

    Args:
        policy: Policy name used in logs (e.g. ``rate_limit``).
        steps: Ordered steps; the last one should always be decisive.

    Returns:
        The decisive Outcome, with ``source`` set to the producing step's name.

    Raises:
        NoDecisionError: If no step produced a decisive outcome.
    """
    skipped: list[str] = []
    for index, step in enumerate(steps):
        try:
            outcome = step.run()
        except DependencyError as exc:
            outcome = indeterminate(exc.code)

        if outcome.decisive:
            if index > 0:
                logger.warning(
                    "policy.degraded",
                    extra={
                        "policy": policy,
                        "decided_by": step.name,
                        "skipped_steps": skipped,
                        "verdict": outcome.verdict.value,
                    },
                )
            return Outcome(
                verdict=outcome.verdict,
                value=outcome.value,
                reason=outcome.reason,
                source=step.name,
            )

        skipped.append(f"{step.name}:{outcome.reason}")

    raise NoDecisionError(f"policy {policy!r} produced no decision: {skipped}")
