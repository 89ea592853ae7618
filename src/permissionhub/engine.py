"""Per-user health state: factors, score, badges, recent achievements.

The engine holds no source of truth of its own. It is fed permission counts
after every change to a user's permission population, recomputes, runs a
badge pass and writes factors and badges to the key-value port. On startup
``load()`` restores them from the port.

Persisted keys (namespace defaults to ``permissionHub``):
    {namespace}:{user_id}:healthFactors   list of HealthFactor dicts
    {namespace}:{user_id}:badges          list of Badge dicts
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Sequence

from pydantic import BaseModel, Field, ValidationError

from .badges import Badge, default_badges, evaluate_badges
from .kv import KeyValueStore
from .scoring import (
    PROTECTION,
    HealthFactor,
    PermissionCounts,
    calculate_score,
    default_factors,
    recompute_factors,
    set_factor_value,
)

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "permissionHub"


class HealthSnapshot(BaseModel):
    """Read-only view of a user's derived health state."""

    score: int
    factors: list[HealthFactor] = Field(default_factory=list)
    badges: list[Badge] = Field(default_factory=list)
    recent_achievements: list[Badge] = Field(default_factory=list)


def state_key(namespace: str, user_id: int, name: str) -> str:
    return f"{namespace}:{user_id}:{name}"


def _merge_factors(defaults: list[HealthFactor], stored: Any) -> list[HealthFactor]:
    if not isinstance(stored, list):
        return defaults
    by_id: dict[str, HealthFactor] = {}
    for raw in stored:
        try:
            factor = HealthFactor.model_validate(raw)
        except ValidationError as e:
            logger.warning("Skipping malformed stored health factor: %s", e)
            continue
        by_id[factor.id] = factor
    return [by_id.get(f.id, f) for f in defaults]


def _merge_badges(defaults: list[Badge], stored: Any) -> list[Badge]:
    # Only the achieved flag is restored; conditions always come from code.
    if not isinstance(stored, list):
        return defaults
    achieved = {
        raw.get("id")
        for raw in stored
        if isinstance(raw, dict) and raw.get("achieved") is True
    }
    return [
        b.model_copy(update={"achieved": True}) if b.id in achieved else b
        for b in defaults
    ]


class HealthEngine:
    """Derived health state for one user.

    Args:
        kv: Persistence port.
        user_id: Owner of this state.
        namespace: Key prefix in the port.
        factors: Starting factors (defaults to ``DEFAULT_HEALTH_FACTORS``).
        badges: Starting badges (defaults to ``DEFAULT_BADGES``).
    """

    def __init__(
        self,
        kv: KeyValueStore,
        user_id: int,
        *,
        namespace: str = DEFAULT_NAMESPACE,
        factors: Sequence[HealthFactor] | None = None,
        badges: Sequence[Badge] | None = None,
    ) -> None:
        self._kv = kv
        self.user_id = user_id
        self.namespace = namespace
        self._lock = threading.RLock()
        self._factors = [f.model_copy() for f in factors] if factors is not None else default_factors()
        self._badges = [b.model_copy(deep=True) for b in badges] if badges is not None else default_badges()
        self._recent: list[Badge] = []

    @property
    def factors_key(self) -> str:
        return state_key(self.namespace, self.user_id, "healthFactors")

    @property
    def badges_key(self) -> str:
        return state_key(self.namespace, self.user_id, "badges")

    @property
    def score(self) -> int:
        with self._lock:
            return calculate_score(self._factors)

    def load(self) -> HealthSnapshot:
        """Restore persisted factors and badges over the current ones."""
        with self._lock:
            self._factors = _merge_factors(self._factors, self._kv.get(self.factors_key))
            self._badges = _merge_badges(self._badges, self._kv.get(self.badges_key))
            if self._run_badge_pass():
                self._kv.set(self.badges_key, self._dump_badges())
            logger.debug("Loaded health state for user %s (score=%s)", self.user_id, self.score)
            return self.snapshot()

    def update_permission_counts(self, counts: PermissionCounts) -> HealthSnapshot:
        """Recompute factors from ``counts``, run the badge pass and persist.

        Replay-safe: the same counts twice give the same state.
        """
        with self._lock:
            self._factors = recompute_factors(self._factors, counts)
            self._run_badge_pass()
            self._persist()
            logger.debug(
                "Health recomputed for user %s: score=%s counts=%s",
                self.user_id,
                self.score,
                counts.model_dump(),
            )
            return self.snapshot()

    def set_protection(self, value: float) -> HealthSnapshot:
        """Set the externally configured protection factor (clamped to its range)."""
        with self._lock:
            self._factors = set_factor_value(self._factors, PROTECTION, value)
            self._run_badge_pass()
            self._persist()
            return self.snapshot()

    def reset_recent_achievements(self) -> None:
        with self._lock:
            self._recent = []

    def snapshot(self) -> HealthSnapshot:
        with self._lock:
            return HealthSnapshot(
                score=calculate_score(self._factors),
                factors=[f.model_copy() for f in self._factors],
                badges=[b.model_copy(deep=True) for b in self._badges],
                recent_achievements=[b.model_copy(deep=True) for b in self._recent],
            )

    def _run_badge_pass(self) -> bool:
        self._badges, newly_achieved = evaluate_badges(self._badges, self._factors)
        if newly_achieved:
            self._recent = newly_achieved
        return bool(newly_achieved)

    def _dump_badges(self) -> list[dict[str, Any]]:
        return [b.model_dump(mode="json") for b in self._badges]

    def _persist(self) -> None:
        self._kv.set(self.factors_key, [f.model_dump(mode="json") for f in self._factors])
        self._kv.set(self.badges_key, self._dump_badges())


__all__ = ["DEFAULT_NAMESPACE", "HealthEngine", "HealthSnapshot", "state_key"]
