"""Security health scoring.

The health score is the unweighted mean of each factor's normalized
completion (``value / max_value``), expressed 0-100.

Factors:
    expiry      share of permissions with an expiry time       (derived)
    limitation  share of permissions with an amount/call bound (derived)
    regulation  revocation / expiry activity                   (derived)
    protection  general security practice                      (set externally)

Derivation rules (counts come from ``count_permissions``):
    expiry     = clamp(round(10 * time_bound / total), 0, 10)
    limitation = round(10 * (total - unlimited) / total)
    regulation = min(10, 5 + round((expired + revoked) / 2))

With ``total == 0`` nothing is recomputed. ``regulation`` grows with expired
and revoked permissions, which rewards letting grants lapse; the formula is
kept as-is pending product review.
"""

from __future__ import annotations

from fractions import Fraction
from typing import Iterable, Sequence

from pydantic import BaseModel, Field

from .accounting import round_half_up
from .models import Permission

EXPIRY = "expiry"
LIMITATION = "limitation"
REGULATION = "regulation"
PROTECTION = "protection"


class HealthFactor(BaseModel):
    """One weighted dimension of security posture."""

    id: str
    name: str = ""
    value: float = 0
    max_value: float = 10
    color: str = ""
    icon: str = ""
    tooltip: str = ""

    @property
    def normalized(self) -> Fraction:
        """``value / max_value`` clamped to [0, 1]; 0 for a zero max.

        Exact, so that an average landing on a half rounds consistently.
        """
        if self.max_value <= 0:
            return Fraction(0)
        ratio = Fraction(str(self.value)) / Fraction(str(self.max_value))
        return min(max(ratio, Fraction(0)), Fraction(1))


class PermissionCounts(BaseModel):
    """Aggregate counts over one user's permission population."""

    total: int = 0
    active: int = 0
    expired: int = 0
    revoked: int = 0
    unlimited: int = 0
    time_bound: int = 0


DEFAULT_HEALTH_FACTORS: tuple[HealthFactor, ...] = (
    HealthFactor(
        id=EXPIRY,
        name="Time-Bound Permissions",
        value=7,
        max_value=10,
        color="text-blue-500",
        icon="timer",
        tooltip=(
            "Percentage of permissions that have an expiry date. "
            "Time-bound permissions automatically expire, reducing risks."
        ),
    ),
    HealthFactor(
        id=LIMITATION,
        name="Resource Limits",
        value=5,
        max_value=10,
        color="text-green-500",
        icon="account_balance_wallet",
        tooltip=(
            "Permissions with spending limits or maximum call restrictions. "
            "Limited permissions reduce potential damage."
        ),
    ),
    HealthFactor(
        id=REGULATION,
        name="Active Management",
        value=6,
        max_value=10,
        color="text-amber-500",
        icon="settings",
        tooltip="Your level of active permission management, including regular reviews and revocations.",
    ),
    HealthFactor(
        id=PROTECTION,
        name="Security Practices",
        value=8,
        max_value=10,
        color="text-violet-500",
        icon="shield",
        tooltip="General security practices, including prompt reviews of permission requests.",
    ),
)


def default_factors() -> list[HealthFactor]:
    return [f.model_copy() for f in DEFAULT_HEALTH_FACTORS]


def calculate_score(factors: Sequence[HealthFactor]) -> int:
    """Mean normalized factor completion as an integer in [0, 100].

    Returns 0 for an empty factor list.
    """
    if not factors:
        return 0
    total = sum((f.normalized for f in factors), Fraction(0))
    return round_half_up(total / len(factors) * 100)


def count_permissions(permissions: Iterable[Permission]) -> PermissionCounts:
    """Aggregate a permission population into scoring counts.

    A permission is "limited" when it has a ``max_amount`` or ``max_calls``;
    an inactive one with an expiry counts as expired, without one as revoked.
    """
    counts = PermissionCounts()
    limited = 0
    for p in permissions:
        counts.total += 1
        if p.is_active:
            counts.active += 1
        elif p.expiry_time is not None:
            counts.expired += 1
        else:
            counts.revoked += 1
        if p.expiry_time is not None:
            counts.time_bound += 1
        if p.max_amount is not None or p.max_calls is not None:
            limited += 1
    counts.unlimited = counts.total - limited
    return counts


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def recompute_factors(
    factors: Sequence[HealthFactor],
    counts: PermissionCounts,
) -> list[HealthFactor]:
    """Return a new factor list updated from ``counts``.

    The input list is left untouched. Unknown factors and ``protection`` pass
    through unchanged, as does everything when ``counts.total == 0``.
    """
    if counts.total <= 0:
        return [f.model_copy() for f in factors]

    derived = {
        EXPIRY: _clamp(round_half_up(Fraction(10 * counts.time_bound, counts.total)), 0, 10),
        LIMITATION: round_half_up(Fraction(10 * (counts.total - counts.unlimited), counts.total)),
        REGULATION: min(10, 5 + round_half_up(Fraction(counts.expired + counts.revoked, 2))),
    }
    return [
        f.model_copy(update={"value": derived[f.id]}) if f.id in derived else f.model_copy()
        for f in factors
    ]


def set_factor_value(
    factors: Sequence[HealthFactor],
    factor_id: str,
    value: float,
) -> list[HealthFactor]:
    """Return a new factor list with one factor's value set (clamped to its range).

    Raises:
        KeyError: no factor with ``factor_id``.
    """
    if not any(f.id == factor_id for f in factors):
        raise KeyError(factor_id)
    return [
        f.model_copy(update={"value": min(max(value, 0), f.max_value)}) if f.id == factor_id else f.model_copy()
        for f in factors
    ]


__all__ = [
    "DEFAULT_HEALTH_FACTORS",
    "EXPIRY",
    "HealthFactor",
    "LIMITATION",
    "PROTECTION",
    "PermissionCounts",
    "REGULATION",
    "calculate_score",
    "count_permissions",
    "default_factors",
    "recompute_factors",
    "set_factor_value",
]
