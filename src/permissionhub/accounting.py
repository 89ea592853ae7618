"""Usage and expiry accounting.

Derives a permission's runtime view (status, time remaining, progress) from
its stored fields and the current time. Everything here is pure: nothing
mutates the permission. Flipping ``is_active`` on expiry is the sweeper's
job (see ``permissionhub.sweeper``).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from fractions import Fraction
from numbers import Rational
from typing import Optional

from .models import Permission, as_utc, to_decimal

DEFAULT_LIMITED_THRESHOLD = 0.2


class PermissionStatus(str, Enum):
    """Presentation status of a permission. Never stored."""

    ACTIVE = "active"
    LIMITED = "limited"
    EXPIRED = "expired"


@dataclass(frozen=True)
class UsageView:
    """Derived runtime view of one permission at one instant."""

    status: PermissionStatus
    time_remaining: Optional[timedelta]
    progress_percent: Optional[int]

    @property
    def seconds_remaining(self) -> Optional[int]:
        if self.time_remaining is None:
            return None
        return int(self.time_remaining.total_seconds())


def round_half_up(value: Rational | Decimal | float) -> int:
    """Round to the nearest integer with halves rounding up.

    Pass a ``Fraction`` or ``Decimal`` when the quotient may land exactly on
    a half; binary floats can fall just short of it.
    """
    if isinstance(value, Decimal):
        return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return math.floor(Fraction(value) + Fraction(1, 2))


def is_time_expired(permission: Permission, now: datetime) -> bool:
    return permission.expiry_time is not None and as_utc(now) >= as_utc(permission.expiry_time)


def is_calls_exhausted(permission: Permission) -> bool:
    return permission.max_calls is not None and permission.calls_used >= permission.max_calls


def is_expired(permission: Permission, now: datetime) -> bool:
    """Expired by time or by exhausted call budget."""
    return is_time_expired(permission, now) or is_calls_exhausted(permission)


def time_remaining(permission: Permission, now: datetime) -> Optional[timedelta]:
    """``expiry_time - now`` clamped to zero; ``None`` without expiry."""
    if permission.expiry_time is None:
        return None
    remaining = as_utc(permission.expiry_time) - as_utc(now)
    return max(remaining, timedelta(0))


def _amount_used(permission: Permission) -> Decimal:
    return to_decimal(permission.total_amount) or Decimal(0)


def remaining_fraction(permission: Permission) -> Optional[float]:
    """Smallest remaining share of any bound (calls or amount), or ``None``.

    A zero bound counts as fully used.
    """
    fractions: list[float] = []
    if permission.max_calls is not None:
        if permission.max_calls == 0:
            fractions.append(0.0)
        else:
            left = max(permission.max_calls - permission.calls_used, 0)
            fractions.append(left / permission.max_calls)
    if permission.max_amount is not None:
        bound = to_decimal(permission.max_amount)
        if bound <= 0:
            fractions.append(0.0)
        else:
            left = max(bound - _amount_used(permission), Decimal(0))
            fractions.append(float(left / bound))
    return min(fractions) if fractions else None


def progress_percent(permission: Permission) -> Optional[int]:
    """Share of the bound consumed, 0-100.

    Call-bounded permissions report call usage; otherwise amount-bounded
    streams report streamed amount; unbounded permissions report ``None``.
    """
    if permission.max_calls is not None:
        if permission.max_calls == 0:
            return 100
        return min(100, round_half_up(Fraction(permission.calls_used * 100, permission.max_calls)))
    if permission.max_amount is not None:
        bound = to_decimal(permission.max_amount)
        if bound <= 0:
            return 100
        # Clamp before rounding; streamed totals may overshoot the bound.
        ratio = Fraction(_amount_used(permission)) / Fraction(bound) * 100
        return round_half_up(min(ratio, Fraction(100)))
    return None


def derive_usage(
    permission: Permission,
    now: datetime,
    limited_threshold: float = DEFAULT_LIMITED_THRESHOLD,
) -> UsageView:
    """Compute the runtime view of ``permission`` at ``now``.

    Idempotent and side-effect free.
    """
    if is_expired(permission, now):
        status = PermissionStatus.EXPIRED
    else:
        fraction = remaining_fraction(permission)
        if fraction is not None and fraction < limited_threshold:
            status = PermissionStatus.LIMITED
        else:
            status = PermissionStatus.ACTIVE

    return UsageView(
        status=status,
        time_remaining=time_remaining(permission, now),
        progress_percent=progress_percent(permission),
    )


__all__ = [
    "DEFAULT_LIMITED_THRESHOLD",
    "PermissionStatus",
    "UsageView",
    "derive_usage",
    "is_calls_exhausted",
    "is_expired",
    "is_time_expired",
    "progress_percent",
    "remaining_fraction",
    "round_half_up",
    "time_remaining",
]
