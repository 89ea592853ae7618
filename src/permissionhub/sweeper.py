"""Background expiry sweep.

``derive_usage`` reports a permission as expired without touching it. The
sweep is what actually flips ``is_active`` to False once a permission's
expiry time has passed or its call budget is used up. It goes through the
service's normal update path, so it is serialized with foreground mutations
on the same user and triggers a health recompute.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from .accounting import is_expired
from .service import PermissionService

logger = logging.getLogger(__name__)


def sweep_expired(
    service: PermissionService,
    user_id: int,
    now: Optional[datetime] = None,
) -> list[int]:
    """Deactivate every active, expired permission of ``user_id``.

    Returns:
        Ids of the permissions that were deactivated.
    """
    now = now or service.now()
    stopped: list[int] = []
    with service.store.user_lock(user_id):
        for permission in service.store.list_permissions(user_id):
            if permission.is_active and is_expired(permission, now):
                if service.stop_permission(permission.id) is not None:
                    stopped.append(permission.id)
    if stopped:
        logger.info("Expiry sweep deactivated %d permission(s) for user %s: %s", len(stopped), user_id, stopped)
    return stopped


def start_expiry_sweeper(
    service: PermissionService,
    user_ids: Optional[Iterable[int] | Callable[[], Iterable[int]]] = None,
    interval: Optional[float] = None,
) -> asyncio.Task:
    """Run ``sweep_expired`` for each user every ``interval`` seconds.

    Args:
        service: Service to sweep.
        user_ids: Users to sweep, or a callable returning them. Defaults to
            every user currently in the store.
        interval: Seconds between sweeps (default: ``config.sweep_interval_seconds``).

    Returns:
        The background task. Cancel it to stop the sweeper.
    """
    period = interval if interval is not None else service.config.sweep_interval_seconds

    def _targets() -> list[int]:
        if user_ids is None:
            return sorted(service.store.user_ids())
        if callable(user_ids):
            return list(user_ids())
        return list(user_ids)

    async def _sweep_loop():
        try:
            while True:
                for user_id in _targets():
                    try:
                        # Off the event loop: waits on user locks and kv I/O.
                        await asyncio.to_thread(sweep_expired, service, user_id)
                    except Exception as e:
                        logger.warning("Expiry sweep failed for user %s: %s", user_id, e)
                await asyncio.sleep(period)
        except asyncio.CancelledError:
            logger.info("Expiry sweeper stopped")
            raise

    task = asyncio.create_task(_sweep_loop())
    logger.info("Expiry sweeper started (interval=%ss)", period)
    return task


__all__ = ["start_expiry_sweeper", "sweep_expired"]
