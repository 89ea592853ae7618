"""In-memory permission store.

Holds the authoritative Permission and PermissionRequest records.
"Not found" is a normal result here: lookups return ``None`` and deletes
return ``False``.

The store is constructed explicitly and passed to its collaborators; there
is no module-level instance.

Usage:
    store = PermissionStore()
    permission = store.create_permission(PermissionCreate(...))
    with store.transaction():
        ...  # all-or-nothing across both tables
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator, Mapping, Optional

from .models import (
    Permission,
    PermissionCreate,
    PermissionRequest,
    PermissionRequestCreate,
    PermissionUpdate,
    utc_now,
)

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = frozenset({"id", "user_id", "type", "created_at"})


class PermissionStore:
    """Thread-safe in-memory store for permissions and permission requests.

    Records are copied on the way in and on the way out, so callers can never
    mutate stored state behind the store's back.

    Args:
        clock: Returns the current time; used for ``created_at`` / ``requested_at``.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._user_locks: dict[int, threading.RLock] = {}
        self._permissions: dict[int, Permission] = {}
        self._requests: dict[int, PermissionRequest] = {}
        self._next_permission_id = 1
        self._next_request_id = 1

    # ── Locking / transactions ───────────────────────────────────

    def user_lock(self, user_id: int) -> threading.RLock:
        """Re-entrant lock serializing one user's mutation pipeline."""
        with self._lock:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = self._user_locks[user_id] = threading.RLock()
            return lock

    @contextmanager
    def transaction(self) -> Iterator["PermissionStore"]:
        """All-or-nothing scope over both tables.

        On any exception the tables and id counters are restored to their
        state at entry and the exception propagates. Holds the store lock
        for the duration, so other writers wait.
        """
        with self._lock:
            snapshot = (
                dict(self._permissions),
                dict(self._requests),
                self._next_permission_id,
                self._next_request_id,
            )
            try:
                yield self
            except BaseException:
                (
                    self._permissions,
                    self._requests,
                    self._next_permission_id,
                    self._next_request_id,
                ) = snapshot
                logger.warning("Store transaction rolled back")
                raise

    def clear(self) -> None:
        with self._lock:
            self._permissions.clear()
            self._requests.clear()
            self._next_permission_id = 1
            self._next_request_id = 1

    # ── Permissions ──────────────────────────────────────────────

    def create_permission(self, data: PermissionCreate) -> Permission:
        """Store a new permission with the next sequential id.

        ``created_at`` is stamped from the store clock and ``calls_used``
        starts at 0. Input is assumed validated.
        """
        with self._lock:
            permission = Permission(
                **data.model_dump(),
                id=self._next_permission_id,
                calls_used=0,
                created_at=self._clock(),
            )
            self._next_permission_id += 1
            self._permissions[permission.id] = permission
        logger.debug("Created permission %s for user %s", permission.id, permission.user_id)
        return permission.model_copy(deep=True)

    def insert_permission(self, permission: Permission) -> Permission:
        """Store a fully formed permission record as-is (seeding, restores).

        The id counter moves past the inserted id.
        """
        with self._lock:
            self._permissions[permission.id] = permission.model_copy(deep=True)
            self._next_permission_id = max(self._next_permission_id, permission.id + 1)
        return permission.model_copy(deep=True)

    def get_permission(self, permission_id: int) -> Optional[Permission]:
        with self._lock:
            permission = self._permissions.get(permission_id)
            return permission.model_copy(deep=True) if permission is not None else None

    def list_permissions(self, user_id: int) -> list[Permission]:
        with self._lock:
            return [
                p.model_copy(deep=True)
                for p in self._permissions.values()
                if p.user_id == user_id
            ]

    def update_permission(
        self,
        permission_id: int,
        updates: Mapping[str, Any] | PermissionUpdate,
    ) -> Optional[Permission]:
        """Shallow-merge ``updates`` into an existing permission.

        Last write wins per field. Immutable fields and unknown keys are
        ignored. Returns ``None`` when the id is absent; a deleted record is
        never recreated.
        """
        patch = updates.to_patch() if isinstance(updates, PermissionUpdate) else dict(updates)

        ignored = [k for k in patch if k in IMMUTABLE_FIELDS or k not in Permission.model_fields]
        if ignored:
            logger.warning("Ignoring non-updatable fields for permission %s: %s", permission_id, ignored)
        patch = {k: v for k, v in patch.items() if k not in ignored}
        if "additional_data" in patch and patch["additional_data"] is None:
            patch["additional_data"] = {}

        with self._lock:
            existing = self._permissions.get(permission_id)
            if existing is None:
                return None
            updated = existing.model_copy(update=patch, deep=True)
            self._permissions[permission_id] = updated
        return updated.model_copy(deep=True)

    def delete_permission(self, permission_id: int) -> bool:
        with self._lock:
            return self._permissions.pop(permission_id, None) is not None

    def user_ids(self) -> set[int]:
        """Users that currently own at least one permission or request."""
        with self._lock:
            return {p.user_id for p in self._permissions.values()} | {
                r.user_id for r in self._requests.values()
            }

    # ── Permission requests ──────────────────────────────────────

    def create_request(self, data: PermissionRequestCreate) -> PermissionRequest:
        with self._lock:
            request = PermissionRequest(
                **data.model_dump(),
                id=self._next_request_id,
                requested_at=self._clock(),
            )
            self._next_request_id += 1
            self._requests[request.id] = request
        logger.debug("Created permission request %s for user %s", request.id, request.user_id)
        return request.model_copy(deep=True)

    def insert_request(self, request: PermissionRequest) -> PermissionRequest:
        with self._lock:
            self._requests[request.id] = request.model_copy(deep=True)
            self._next_request_id = max(self._next_request_id, request.id + 1)
        return request.model_copy(deep=True)

    def get_request(self, request_id: int) -> Optional[PermissionRequest]:
        with self._lock:
            request = self._requests.get(request_id)
            return request.model_copy(deep=True) if request is not None else None

    def list_requests(self, user_id: int) -> list[PermissionRequest]:
        with self._lock:
            return [
                r.model_copy(deep=True)
                for r in self._requests.values()
                if r.user_id == user_id
            ]

    def delete_request(self, request_id: int) -> bool:
        with self._lock:
            return self._requests.pop(request_id, None) is not None


__all__ = ["IMMUTABLE_FIELDS", "PermissionStore"]
