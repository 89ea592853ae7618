"""Request approval workflow.

A PermissionRequest has exactly two exits from ``pending``:

    approve → a new active Permission is written, the request is deleted
    deny    → the request is deleted, nothing else happens

Approval is one logical unit: the permission write and the request deletion
run inside ``PermissionStore.transaction()``, so a failure in either step
leaves the store exactly as it was.
"""

from __future__ import annotations

import logging

from .exceptions import AtomicityError, NotFoundError
from .models import Permission, PermissionCreate, PermissionRequest
from .store import PermissionStore

logger = logging.getLogger(__name__)

# Request fields carried over verbatim to the new permission.
SHARED_FIELDS = (
    "user_id",
    "type",
    "app_name",
    "description",
    "contract_address",
    "function_signature",
    "max_amount",
    "amount_per_second",
    "max_calls",
    "expiry_time",
    "additional_data",
)


def permission_from_request(request: PermissionRequest) -> PermissionCreate:
    """Build the permission terms an approved request turns into."""
    terms = {field: getattr(request, field) for field in SHARED_FIELDS}
    return PermissionCreate(
        **terms,
        name=request.description or f"{request.app_name} Permission",
        is_active=True,
        total_amount="0",
    )


class RequestApprovalWorkflow:
    """Approve or deny pending permission requests against a store."""

    def __init__(self, store: PermissionStore) -> None:
        self._store = store

    def approve(self, request_id: int) -> Permission:
        """Turn a pending request into an active permission.

        Raises:
            NotFoundError: the request does not exist (including when it was
                already approved or denied; retries never duplicate).
        """
        with self._store.transaction() as store:
            request = store.get_request(request_id)
            if request is None:
                raise NotFoundError(
                    f"Permission request {request_id} not found",
                    request_id=request_id,
                )

            permission = store.create_permission(permission_from_request(request))

            if not store.delete_request(request_id):
                raise AtomicityError(
                    f"Permission request {request_id} vanished during approval",
                    request_id=request_id,
                )

        logger.info(
            "Approved request %s as permission %s (%s, %s)",
            request_id,
            permission.id,
            permission.type.value,
            permission.app_name,
        )
        return permission

    def deny(self, request_id: int) -> bool:
        """Delete a pending request. Returns whether it existed."""
        existed = self._store.delete_request(request_id)
        if existed:
            logger.info("Denied request %s", request_id)
        return existed


__all__ = ["RequestApprovalWorkflow", "SHARED_FIELDS", "permission_from_request"]
