"""PermissionHub service: the single entry point a transport layer talks to.

Every mutation of a user's permissions runs as one pipeline under that
user's lock:

    validate → store write → count_permissions → HealthEngine recompute

so the health engine never sees a half-applied change. Method names line up
with the HTTP routes:

    GET    /permissions?userId=               list_permissions
    GET    /permissions/{id}                  get_permission       (None → 404)
    POST   /permissions                       create_permission    (ValidationFailure → 400)
    PATCH  /permissions/{id}                  update_permission    (None → 404)
    DELETE /permissions/{id}                  delete_permission    (False → 404)
    GET    /permission-requests?userId=       list_requests
    POST   /permission-requests               create_request
    POST   /permission-requests/{id}/approve  approve_request      (NotFoundError → 404)
    DELETE /permission-requests/{id}          deny_request         (False → 404)
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Optional

from .accounting import UsageView, derive_usage, is_time_expired
from .config import HubConfig
from .engine import HealthEngine, HealthSnapshot, state_key
from .exceptions import NotFoundError, ValidationFailure
from .kv import KeyValueStore, create_kv_store
from .logging import get_hub_logger
from .models import (
    Permission,
    PermissionCreate,
    PermissionRequest,
    PermissionRequestCreate,
    PermissionUpdate,
    as_utc,
    to_decimal,
    utc_now,
    validate_payload,
)
from .scoring import count_permissions
from .store import PermissionStore
from .workflow import RequestApprovalWorkflow

logger = get_hub_logger(__name__)

DEFAULT_EXTENSION = timedelta(hours=2)


class PermissionService:
    """Lifecycle operations plus derived health state for every user.

    Args:
        store: Permission store (owned by the caller).
        kv: Persistence port for derived state.
        config: Accounting policy and key namespace.
        clock: Current time source.
    """

    def __init__(
        self,
        store: PermissionStore,
        kv: KeyValueStore,
        *,
        config: Optional[HubConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.kv = kv
        self.config = config or HubConfig()
        self.workflow = RequestApprovalWorkflow(store)
        self._clock = clock
        self._engines: dict[int, HealthEngine] = {}
        self._engines_lock = threading.Lock()

    def now(self) -> datetime:
        return self._clock()

    # ── Derived state ────────────────────────────────────────────

    def engine(self, user_id: int) -> HealthEngine:
        """Health engine for ``user_id``, loaded from the port on first use."""
        with self._engines_lock:
            engine = self._engines.get(user_id)
            if engine is None:
                engine = HealthEngine(self.kv, user_id, namespace=self.config.state_namespace)
                engine.load()
                self._engines[user_id] = engine
            return engine

    def refresh_health(self, user_id: int) -> HealthSnapshot:
        """Recompute ``user_id``'s health state from the store."""
        with self.store.user_lock(user_id):
            counts = count_permissions(self.store.list_permissions(user_id))
            return self.engine(user_id).update_permission_counts(counts)

    def health(self, user_id: int) -> HealthSnapshot:
        return self.engine(user_id).snapshot()

    def reset_recent_achievements(self, user_id: int) -> None:
        self.engine(user_id).reset_recent_achievements()

    def set_protection(self, user_id: int, value: float) -> HealthSnapshot:
        with self.store.user_lock(user_id):
            return self.engine(user_id).set_protection(value)

    def has_seen_tutorial(self, user_id: int) -> bool:
        return bool(self.kv.get(state_key(self.config.state_namespace, user_id, "seenTutorial"), False))

    def mark_tutorial_seen(self, user_id: int, seen: bool = True) -> None:
        key = state_key(self.config.state_namespace, user_id, "seenTutorial")
        if seen:
            self.kv.set(key, True)
        else:
            self.kv.clear(key)

    # ── Permissions ──────────────────────────────────────────────

    def list_permissions(self, user_id: int) -> list[Permission]:
        return self.store.list_permissions(user_id)

    def get_permission(self, permission_id: int) -> Optional[Permission]:
        return self.store.get_permission(permission_id)

    def create_permission(self, payload: Mapping[str, Any] | PermissionCreate) -> Permission:
        data = validate_payload(PermissionCreate, payload)
        with self.store.user_lock(data.user_id):
            permission = self.store.create_permission(data)
            self.refresh_health(data.user_id)
        logger.info(
            "Permission created (%s, %s)",
            permission.type.value,
            permission.app_name,
            user_id=permission.user_id,
            permission_id=permission.id,
        )
        return permission

    def update_permission(
        self,
        permission_id: int,
        payload: Mapping[str, Any] | PermissionUpdate,
    ) -> Optional[Permission]:
        """Validated partial update. ``None`` when the permission is absent.

        Raises:
            ValidationFailure: malformed payload, ``calls_used`` decreasing,
                or ``calls_used`` above ``max_calls``.
        """
        patch = validate_payload(PermissionUpdate, payload).to_patch()
        return self._apply(permission_id, lambda current: patch)

    def delete_permission(self, permission_id: int) -> bool:
        existing = self.store.get_permission(permission_id)
        if existing is None:
            return False
        with self.store.user_lock(existing.user_id):
            deleted = self.store.delete_permission(permission_id)
            if deleted:
                self.refresh_health(existing.user_id)
        if deleted:
            logger.info("Permission deleted", user_id=existing.user_id, permission_id=permission_id)
        return deleted

    def stop_permission(self, permission_id: int) -> Optional[Permission]:
        """Stop a stream / end a session: ``is_active = False``."""
        return self._apply(permission_id, lambda current: {"is_active": False})

    def extend_permission(
        self,
        permission_id: int,
        duration: timedelta = DEFAULT_EXTENSION,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[Permission]:
        """Move the expiry to ``now + duration``."""
        if duration <= timedelta(0):
            raise ValidationFailure("Extension must be a positive duration", permission_id=permission_id)
        expiry = as_utc(now or self._clock()) + duration
        return self._apply(permission_id, lambda current: {"expiry_time": expiry})

    def record_calls(self, permission_id: int, delta: int = 1, *, now: Optional[datetime] = None) -> Optional[Permission]:
        """Count ``delta`` more calls against a permission.

        Raises:
            ValidationFailure: non-positive delta, inactive or expired
                permission, or the call budget would be exceeded.
        """
        if isinstance(delta, bool) or not isinstance(delta, int) or delta <= 0:
            raise ValidationFailure("Call delta must be a positive integer", permission_id=permission_id)

        def patch(current: Permission) -> dict[str, Any]:
            self._check_usable(current, now)
            new_total = current.calls_used + delta
            if current.max_calls is not None and new_total > current.max_calls:
                raise ValidationFailure(
                    f"Call limit exceeded: {new_total} > {current.max_calls}",
                    permission_id=permission_id,
                    calls_used=current.calls_used,
                    max_calls=current.max_calls,
                )
            return {"calls_used": new_total}

        return self._apply(permission_id, patch)

    def record_streamed(
        self,
        permission_id: int,
        amount: str | Decimal,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[Permission]:
        """Add ``amount`` to a permission's streamed ``total_amount``.

        Raises:
            ValidationFailure: non-positive amount, inactive or expired
                permission, or ``max_amount`` would be exceeded.
        """
        try:
            delta = Decimal(str(amount))
        except InvalidOperation:
            raise ValidationFailure(f"Invalid amount: {amount!r}", permission_id=permission_id)
        if not delta.is_finite() or delta <= 0:
            raise ValidationFailure("Streamed amount must be positive", permission_id=permission_id)

        def patch(current: Permission) -> dict[str, Any]:
            self._check_usable(current, now)
            new_total = (to_decimal(current.total_amount) or Decimal(0)) + delta
            bound = to_decimal(current.max_amount)
            if bound is not None and new_total > bound:
                raise ValidationFailure(
                    f"Amount limit exceeded: {new_total} > {bound}",
                    permission_id=permission_id,
                    total_amount=current.total_amount,
                    max_amount=current.max_amount,
                )
            return {"total_amount": str(new_total)}

        return self._apply(permission_id, patch)

    def usage(self, permission_id: int, *, now: Optional[datetime] = None) -> Optional[UsageView]:
        """Derived status / time remaining / progress, or ``None`` if absent."""
        permission = self.store.get_permission(permission_id)
        if permission is None:
            return None
        return derive_usage(permission, now or self._clock(), self.config.limited_threshold)

    # ── Permission requests ──────────────────────────────────────

    def list_requests(self, user_id: int) -> list[PermissionRequest]:
        return self.store.list_requests(user_id)

    def get_request(self, request_id: int) -> Optional[PermissionRequest]:
        return self.store.get_request(request_id)

    def create_request(self, payload: Mapping[str, Any] | PermissionRequestCreate) -> PermissionRequest:
        data = validate_payload(PermissionRequestCreate, payload)
        with self.store.user_lock(data.user_id):
            request = self.store.create_request(data)
        logger.info(
            "Permission request created (%s, %s)",
            request.type.value,
            request.app_name,
            user_id=request.user_id,
            request_id=request.id,
        )
        return request

    def approve_request(self, request_id: int) -> Permission:
        """Approve a pending request.

        Raises:
            NotFoundError: the request does not exist (or was already decided).
        """
        request = self.store.get_request(request_id)
        if request is None:
            raise NotFoundError(f"Permission request {request_id} not found", request_id=request_id)
        with self.store.user_lock(request.user_id):
            permission = self.workflow.approve(request_id)
            self.refresh_health(request.user_id)
        return permission

    def deny_request(self, request_id: int) -> bool:
        request = self.store.get_request(request_id)
        if request is None:
            return False
        with self.store.user_lock(request.user_id):
            return self.workflow.deny(request_id)

    # ── Internals ────────────────────────────────────────────────

    def _check_usable(self, permission: Permission, now: Optional[datetime]) -> None:
        if not permission.is_active:
            raise ValidationFailure("Permission is not active", permission_id=permission.id)
        if is_time_expired(permission, now or self._clock()):
            raise ValidationFailure("Permission has expired", permission_id=permission.id)

    def _apply(
        self,
        permission_id: int,
        build_patch: Callable[[Permission], dict[str, Any]],
    ) -> Optional[Permission]:
        """Read-check-write one permission under its owner's lock."""
        existing = self.store.get_permission(permission_id)
        if existing is None:
            return None
        with self.store.user_lock(existing.user_id):
            current = self.store.get_permission(permission_id)
            if current is None:
                return None
            patch = build_patch(current)
            _check_call_invariants(current, patch)
            updated = self.store.update_permission(permission_id, patch)
            if updated is None:
                return None
            self.refresh_health(current.user_id)
        logger.debug(
            "Permission updated: %s",
            sorted(patch),
            user_id=current.user_id,
            permission_id=permission_id,
        )
        return updated


def _check_call_invariants(current: Permission, patch: Mapping[str, Any]) -> None:
    """``calls_used`` never decreases and never exceeds ``max_calls``."""
    calls_used = patch.get("calls_used", current.calls_used)
    max_calls = patch.get("max_calls", current.max_calls)
    if calls_used < current.calls_used:
        raise ValidationFailure(
            f"calls_used cannot decrease ({current.calls_used} → {calls_used})",
            permission_id=current.id,
        )
    if max_calls is not None and calls_used > max_calls:
        raise ValidationFailure(
            f"calls_used ({calls_used}) exceeds max_calls ({max_calls})",
            permission_id=current.id,
        )


def build_service(
    config: Optional[HubConfig] = None,
    *,
    kv: Optional[KeyValueStore] = None,
    clock: Callable[[], datetime] = utc_now,
) -> PermissionService:
    """Wire store, persistence port and service from config.

    Seeds demo data for ``config.demo_user_id`` when ``config.seed_demo_data``
    is set.
    """
    if config is None:
        from .config import load_config_from_env
        config = load_config_from_env()

    store = PermissionStore(clock=clock)
    service = PermissionService(store, kv or create_kv_store(config), config=config, clock=clock)
    if config.seed_demo_data:
        from .demo import seed_demo_data

        seed_demo_data(store, user_id=config.demo_user_id, now=clock())
        service.refresh_health(config.demo_user_id)
    return service


__all__ = ["DEFAULT_EXTENSION", "PermissionService", "build_service"]
