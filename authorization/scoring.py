"""Trust scoring for work attestations.

Each passing check is worth 1.5 points and a 0.5 bonus is granted only when
all three pass, so the pass threshold of 3.5 is reachable by the
all-three-pass branch alone: any single failure caps the score at 3.0.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Protocol, Sequence

from .models import VerificationResult, WorkEnvelope

logger = logging.getLogger(__name__)

CHECK_NAMES = ("intent", "integrity", "outcome")
POINTS_PER_CHECK = 1.5
ALL_PASS_BONUS = 0.5
MAX_SCORE = 5.0
PASS_THRESHOLD = 3.5


@dataclass(frozen=True)
class CheckOutcome:
    passed: bool
    detail: str = ""


class VerificationCheck(Protocol):
    """One independently sourced pass/fail check over an envelope."""

    name: str

    async def __call__(self, envelope: WorkEnvelope) -> CheckOutcome:  # pragma: no cover - protocol
        ...


def calculate_trust_score(checks: Mapping[str, bool]) -> float:
    """Combine the intent/integrity/outcome booleans into a 0-5 score."""

    passed = [bool(checks.get(name, False)) for name in CHECK_NAMES]
    score = sum(passed) * POINTS_PER_CHECK
    if all(passed):
        score += ALL_PASS_BONUS
    return min(MAX_SCORE, score)


def is_trust_score_passing(score: float, threshold: float = PASS_THRESHOLD) -> bool:
    return score >= threshold


class TrustScorer:
    """Runs the three checks concurrently and scores the result.

    The scorer only sees booleans, so a stronger check (for example real TEE
    attestation for integrity) can be swapped in without touching scoring.
    """

    def __init__(self, checks: Sequence[VerificationCheck], *, threshold: float = PASS_THRESHOLD) -> None:
        names = sorted(check.name for check in checks)
        if names != sorted(CHECK_NAMES):
            raise ValueError(f"TrustScorer requires exactly the checks {CHECK_NAMES}, got {names}")
        self._checks = list(checks)
        self._threshold = threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    async def evaluate(self, envelope: WorkEnvelope) -> VerificationResult:
        outcomes = await asyncio.gather(*(check(envelope) for check in self._checks))
        by_name: Dict[str, CheckOutcome] = {
            check.name: outcome for check, outcome in zip(self._checks, outcomes)
        }
        booleans = {name: by_name[name].passed for name in CHECK_NAMES}
        score = calculate_trust_score(booleans)
        result = VerificationResult(
            intent=booleans["intent"],
            integrity=booleans["integrity"],
            outcome=booleans["outcome"],
            trust_score=score,
            passed=is_trust_score_passing(score, self._threshold),
            details={name: by_name[name].detail for name in CHECK_NAMES if by_name[name].detail},
        )
        logger.info(
            "Trust score %.1f for %s",
            score,
            envelope.agent_id,
            extra={"bounty_id": envelope.bounty_id, **booleans},
        )
        return result


__all__ = [
    "ALL_PASS_BONUS",
    "CHECK_NAMES",
    "CheckOutcome",
    "MAX_SCORE",
    "PASS_THRESHOLD",
    "POINTS_PER_CHECK",
    "TrustScorer",
    "VerificationCheck",
    "calculate_trust_score",
    "is_trust_score_passing",
]
