"""Achievement badges unlocked by the health factor set.

A badge's unlock condition is data: a ``BadgeKind`` tag plus parameters.
Each kind maps to a pure predicate in ``BADGE_PREDICATES`` that sees only
the factor list, never raw permission records.

Badges ratchet: once ``achieved`` is true it is never re-evaluated, so a
later drop in the factors cannot take a badge away.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional, Sequence

from pydantic import BaseModel

from .scoring import EXPIRY, LIMITATION, PROTECTION, REGULATION, HealthFactor, calculate_score

logger = logging.getLogger(__name__)


class BadgeKind(str, Enum):
    """Predicate kinds a badge condition can use."""

    ALWAYS = "always"
    FACTOR_AT_LEAST = "factor_at_least"
    SCORE_AT_LEAST = "score_at_least"


class BadgeCondition(BaseModel):
    """Serializable unlock condition.

    ``factor_id`` is only used by ``FACTOR_AT_LEAST``; ``threshold`` by both
    threshold kinds.
    """

    kind: BadgeKind
    factor_id: Optional[str] = None
    threshold: float = 0

    @classmethod
    def always(cls) -> "BadgeCondition":
        return cls(kind=BadgeKind.ALWAYS)

    @classmethod
    def factor_at_least(cls, factor_id: str, threshold: float) -> "BadgeCondition":
        return cls(kind=BadgeKind.FACTOR_AT_LEAST, factor_id=factor_id, threshold=threshold)

    @classmethod
    def score_at_least(cls, threshold: float) -> "BadgeCondition":
        return cls(kind=BadgeKind.SCORE_AT_LEAST, threshold=threshold)


class Badge(BaseModel):
    """A monotonic achievement flag."""

    id: str
    name: str = ""
    description: str = ""
    icon: str = ""
    color: str = ""
    condition: BadgeCondition
    achieved: bool = False


Predicate = Callable[[BadgeCondition, Sequence[HealthFactor]], bool]


def _always(condition: BadgeCondition, factors: Sequence[HealthFactor]) -> bool:
    return True


def _factor_at_least(condition: BadgeCondition, factors: Sequence[HealthFactor]) -> bool:
    # A missing factor reads as 0.
    value = next((f.value for f in factors if f.id == condition.factor_id), 0)
    return value >= condition.threshold


def _score_at_least(condition: BadgeCondition, factors: Sequence[HealthFactor]) -> bool:
    return calculate_score(factors) >= condition.threshold


BADGE_PREDICATES: dict[BadgeKind, Predicate] = {
    BadgeKind.ALWAYS: _always,
    BadgeKind.FACTOR_AT_LEAST: _factor_at_least,
    BadgeKind.SCORE_AT_LEAST: _score_at_least,
}


def check_condition(condition: BadgeCondition, factors: Sequence[HealthFactor]) -> bool:
    return BADGE_PREDICATES[condition.kind](condition, factors)


DEFAULT_BADGES: tuple[Badge, ...] = (
    Badge(
        id="starter",
        name="Permission Novice",
        description="Started managing wallet permissions with PermissionHub",
        icon="school",
        color="text-blue-500",
        condition=BadgeCondition.always(),
        achieved=True,
    ),
    Badge(
        id="revoker",
        name="Cleanup Crew",
        description="Revoked at least 3 unnecessary permissions",
        icon="cleaning_services",
        color="text-red-500",
        condition=BadgeCondition.factor_at_least(REGULATION, 5),
    ),
    Badge(
        id="time-master",
        name="Time Master",
        description="Set expiry times for at least 80% of your permissions",
        icon="schedule",
        color="text-amber-500",
        condition=BadgeCondition.factor_at_least(EXPIRY, 8),
    ),
    Badge(
        id="secure-stream",
        name="Stream Secure",
        description="Created a financial stream with both time and amount limits",
        icon="water_drop",
        color="text-green-500",
        condition=BadgeCondition.factor_at_least(LIMITATION, 7),
    ),
    Badge(
        id="sentinel",
        name="Permission Sentinel",
        description="Achieved a health score of at least 80",
        icon="verified",
        color="text-violet-500",
        condition=BadgeCondition.score_at_least(80),
    ),
    Badge(
        id="guardian",
        name="Wallet Guardian",
        description="Maintained perfect security practices for at least a week",
        icon="security",
        color="text-emerald-500",
        condition=BadgeCondition.factor_at_least(PROTECTION, 9),
    ),
)


def default_badges() -> list[Badge]:
    return [b.model_copy(deep=True) for b in DEFAULT_BADGES]


def evaluate_badges(
    badges: Sequence[Badge],
    factors: Sequence[HealthFactor],
) -> tuple[list[Badge], list[Badge]]:
    """Run one badge pass.

    Returns:
        ``(badges, newly_achieved)``: the full updated list (same order) and
        the badges that flipped to achieved in this pass.
    """
    updated: list[Badge] = []
    newly_achieved: list[Badge] = []
    for badge in badges:
        if badge.achieved or not check_condition(badge.condition, factors):
            updated.append(badge.model_copy(deep=True))
            continue
        achieved = badge.model_copy(update={"achieved": True}, deep=True)
        updated.append(achieved)
        newly_achieved.append(achieved)

    if newly_achieved:
        logger.info("Badges achieved: %s", ", ".join(b.id for b in newly_achieved))
    return updated, newly_achieved


__all__ = [
    "BADGE_PREDICATES",
    "Badge",
    "BadgeCondition",
    "BadgeKind",
    "DEFAULT_BADGES",
    "check_condition",
    "default_badges",
    "evaluate_badges",
]
