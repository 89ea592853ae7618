"""Tests for PermissionService."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from conftest import NOW, FrozenClock, permission_payload, request_payload
from permissionhub import (
    HubConfig,
    InMemoryKeyValueStore,
    NotFoundError,
    PermissionService,
    PermissionStatus,
    PermissionStore,
    ValidationFailure,
    build_service,
    get_http_status,
)
from permissionhub.scoring import (
    EXPIRY,
    LIMITATION,
    PROTECTION,
    REGULATION,
    count_permissions,
    default_factors,
    recompute_factors,
)


def _values(snapshot) -> dict[str, float]:
    return {f.id: f.value for f in snapshot.factors}


class TestPermissionCrud:
    """Create / update / delete through the service."""

    def test_create_refreshes_health(self, service: PermissionService) -> None:
        """A new bounded, time-bound permission lifts expiry and limitation."""
        permission = service.create_permission(permission_payload())
        assert permission.id == 1
        health = service.health(1)
        assert _values(health) == {EXPIRY: 10, LIMITATION: 10, REGULATION: 5, PROTECTION: 8}
        assert health.score == 83

    def test_create_invalid_payload(self, service: PermissionService) -> None:
        """Malformed payloads map to 400 and store nothing."""
        with pytest.raises(ValidationFailure) as exc_info:
            service.create_permission(permission_payload(type="root-access"))
        assert get_http_status(exc_info.value) == 400
        assert service.list_permissions(1) == []

    def test_get_missing(self, service: PermissionService) -> None:
        """Unknown ids return None."""
        assert service.get_permission(404) is None

    def test_update(self, service: PermissionService) -> None:
        """Partial updates change only the given fields."""
        permission = service.create_permission(permission_payload())
        updated = service.update_permission(permission.id, {"name": "Renamed", "callsUsed": 3})
        assert updated.name == "Renamed"
        assert updated.calls_used == 3
        assert updated.app_name == permission.app_name

    def test_update_missing(self, service: PermissionService) -> None:
        """Updating an unknown id returns None."""
        assert service.update_permission(99, {"name": "x"}) is None

    def test_update_rejects_immutable_fields(self, service: PermissionService) -> None:
        """userId cannot be patched."""
        permission = service.create_permission(permission_payload())
        with pytest.raises(ValidationFailure):
            service.update_permission(permission.id, {"userId": 2})

    def test_calls_used_cannot_decrease(self, service: PermissionService) -> None:
        """calls_used is monotonic."""
        permission = service.create_permission(permission_payload())
        service.update_permission(permission.id, {"callsUsed": 5})
        with pytest.raises(ValidationFailure, match="cannot decrease"):
            service.update_permission(permission.id, {"callsUsed": 4})

    def test_calls_used_cannot_exceed_max(self, service: PermissionService) -> None:
        """calls_used never exceeds max_calls, including when max_calls shrinks."""
        permission = service.create_permission(permission_payload(maxCalls=10))
        with pytest.raises(ValidationFailure, match="exceeds max_calls"):
            service.update_permission(permission.id, {"callsUsed": 11})
        service.update_permission(permission.id, {"callsUsed": 6})
        with pytest.raises(ValidationFailure):
            service.update_permission(permission.id, {"maxCalls": 5})

    def test_deactivate_updates_regulation(self, service: PermissionService) -> None:
        """An inactive permission with an expiry counts as expired."""
        permission = service.create_permission(permission_payload())
        service.update_permission(permission.id, {"isActive": False})
        assert _values(service.health(1))[REGULATION] == 6

    def test_delete(self, service: PermissionService) -> None:
        """Delete reports True once, then False."""
        permission = service.create_permission(permission_payload())
        assert service.delete_permission(permission.id) is True
        assert service.delete_permission(permission.id) is False
        assert service.get_permission(permission.id) is None

    def test_delete_last_permission_keeps_factors(self, service: PermissionService) -> None:
        """With no permissions left the factors stay as they were."""
        permission = service.create_permission(permission_payload())
        before = _values(service.health(1))
        service.delete_permission(permission.id)
        assert _values(service.health(1)) == before


class TestUsage:
    """Usage recording and derived status."""

    def test_record_calls(self, service: PermissionService) -> None:
        """Calls accumulate up to the budget."""
        permission = service.create_permission(permission_payload(maxCalls=2))
        assert service.record_calls(permission.id).calls_used == 1
        assert service.record_calls(permission.id).calls_used == 2
        with pytest.raises(ValidationFailure):
            service.record_calls(permission.id)
        assert service.usage(permission.id).status is PermissionStatus.EXPIRED

    def test_record_calls_over_budget_in_one_step(self, service: PermissionService) -> None:
        """A delta that would overshoot is rejected whole."""
        permission = service.create_permission(permission_payload(maxCalls=3))
        with pytest.raises(ValidationFailure, match="Call limit exceeded"):
            service.record_calls(permission.id, 4)
        assert service.get_permission(permission.id).calls_used == 0

    @pytest.mark.parametrize("delta", [0, -1, True])
    def test_record_calls_invalid_delta(self, service: PermissionService, delta) -> None:
        """Only positive integers are accepted."""
        permission = service.create_permission(permission_payload())
        with pytest.raises(ValidationFailure):
            service.record_calls(permission.id, delta)

    def test_record_calls_on_inactive(self, service: PermissionService) -> None:
        """Stopped permissions cannot be used."""
        permission = service.create_permission(permission_payload())
        service.stop_permission(permission.id)
        with pytest.raises(ValidationFailure, match="not active"):
            service.record_calls(permission.id)

    def test_record_calls_after_expiry(self, service: PermissionService, clock: FrozenClock) -> None:
        """Time-expired permissions cannot be used."""
        permission = service.create_permission(permission_payload())
        clock.advance(timedelta(days=2))
        with pytest.raises(ValidationFailure, match="expired"):
            service.record_calls(permission.id)

    def test_record_calls_missing(self, service: PermissionService) -> None:
        """Unknown ids return None."""
        assert service.record_calls(99) is None

    def test_record_streamed(self, service: PermissionService) -> None:
        """Streamed amounts add up exactly."""
        permission = service.create_permission(
            permission_payload(maxCalls=None, maxAmount="100", totalAmount="25.32", amountPerSecond="0.0001")
        )
        updated = service.record_streamed(permission.id, "0.68")
        assert updated.total_amount == "26.00"
        assert service.usage(permission.id).progress_percent == 26

    def test_record_streamed_over_limit(self, service: PermissionService) -> None:
        """Streaming past max_amount is rejected."""
        permission = service.create_permission(permission_payload(maxCalls=None, maxAmount="0.5", totalAmount="0.45"))
        with pytest.raises(ValidationFailure, match="Amount limit exceeded"):
            service.record_streamed(permission.id, "0.1")
        assert service.usage(permission.id).status is PermissionStatus.LIMITED

    def test_usage_with_total_far_past_bound(self, service: PermissionService) -> None:
        """An overshooting stream total still derives a clamped view."""
        permission = service.create_permission(
            permission_payload(type="token-stream", maxCalls=None, maxAmount="1", totalAmount="1E+40")
        )
        view = service.usage(permission.id)
        assert view.progress_percent == 100
        assert view.status is PermissionStatus.LIMITED

    @pytest.mark.parametrize("amount", ["0", "-1", "abc"])
    def test_record_streamed_invalid_amount(self, service: PermissionService, amount: str) -> None:
        """Streamed amounts must be positive decimals."""
        permission = service.create_permission(permission_payload(maxAmount="10"))
        with pytest.raises(ValidationFailure):
            service.record_streamed(permission.id, amount)

    def test_stop_and_extend(self, service: PermissionService) -> None:
        """stop clears is_active; extend moves the expiry to now + duration."""
        permission = service.create_permission(permission_payload())
        assert service.stop_permission(permission.id).is_active is False
        extended = service.extend_permission(permission.id)
        assert extended.expiry_time == NOW + timedelta(hours=2)
        extended = service.extend_permission(permission.id, timedelta(days=3))
        assert extended.expiry_time == NOW + timedelta(days=3)

    def test_extend_rejects_non_positive(self, service: PermissionService) -> None:
        """Extensions must move the expiry forward from now."""
        permission = service.create_permission(permission_payload())
        with pytest.raises(ValidationFailure):
            service.extend_permission(permission.id, timedelta(0))

    def test_usage(self, service: PermissionService) -> None:
        """usage derives status, time remaining and progress."""
        permission = service.create_permission(permission_payload(maxCalls=50))
        service.update_permission(permission.id, {"callsUsed": 12})
        view = service.usage(permission.id)
        assert view.status is PermissionStatus.ACTIVE
        assert view.progress_percent == 24
        assert view.time_remaining == timedelta(days=1)
        assert service.usage(99) is None


class TestRequests:
    """Permission request lifecycle through the service."""

    def test_create_and_list(self, service: PermissionService) -> None:
        """Requests are listed per user."""
        request = service.create_request(request_payload())
        assert [r.id for r in service.list_requests(1)] == [request.id]
        assert service.get_request(request.id) == request

    def test_approve(self, service: PermissionService) -> None:
        """Approval creates an active permission and refreshes health."""
        request = service.create_request(request_payload())
        permission = service.approve_request(request.id)
        assert permission.is_active is True
        assert permission.name == "Automated token swaps permission"
        assert service.list_requests(1) == []
        assert [p.id for p in service.list_permissions(1)] == [permission.id]
        assert _values(service.health(1))[EXPIRY] == 10

    def test_approve_missing_is_404(self, service: PermissionService) -> None:
        """Approving an unknown request maps to 404."""
        with pytest.raises(NotFoundError) as exc_info:
            service.approve_request(12)
        assert get_http_status(exc_info.value) == 404

    def test_approve_twice(self, service: PermissionService) -> None:
        """A second approval of the same request is 404 and creates nothing."""
        request = service.create_request(request_payload())
        service.approve_request(request.id)
        with pytest.raises(NotFoundError):
            service.approve_request(request.id)
        assert len(service.list_permissions(1)) == 1

    def test_deny(self, service: PermissionService) -> None:
        """Denial removes the request only."""
        request = service.create_request(request_payload())
        assert service.deny_request(request.id) is True
        assert service.deny_request(request.id) is False
        assert service.list_permissions(1) == []


class TestDerivedState:
    """Health, badges and client flags."""

    def test_initial_health(self, service: PermissionService) -> None:
        """A user with no history sees the default factors."""
        health = service.health(1)
        assert health.score == 65
        assert {b.id for b in health.recent_achievements} == {"revoker"}

    def test_reset_recent_achievements(self, service: PermissionService) -> None:
        """Recent achievements can be acknowledged."""
        service.health(1)
        service.reset_recent_achievements(1)
        assert service.health(1).recent_achievements == []

    def test_set_protection(self, service: PermissionService) -> None:
        """The protection factor is set directly."""
        snapshot = service.set_protection(1, 9.5)
        assert _values(snapshot)[PROTECTION] == 9.5

    def test_tutorial_flag(self, service: PermissionService) -> None:
        """The tutorial flag is stored per user."""
        assert service.has_seen_tutorial(1) is False
        service.mark_tutorial_seen(1)
        assert service.has_seen_tutorial(1) is True
        assert service.has_seen_tutorial(2) is False
        service.mark_tutorial_seen(1, seen=False)
        assert service.has_seen_tutorial(1) is False

    def test_health_persists_across_services(
        self,
        store: PermissionStore,
        kv: InMemoryKeyValueStore,
        clock: FrozenClock,
    ) -> None:
        """A new service over the same port restores factors and badges."""
        first = PermissionService(store, kv, clock=clock)
        first.create_permission(permission_payload())
        second = PermissionService(PermissionStore(clock=clock), kv, clock=clock)
        health = second.health(1)
        assert _values(health)[EXPIRY] == 10
        assert "time-master" in {b.id for b in health.badges if b.achieved}


class TestBuildService:
    """Tests for build_service wiring."""

    def test_seeds_demo_data(self, clock: FrozenClock) -> None:
        """The demo user gets five permissions and two requests."""
        service = build_service(
            HubConfig(seed_demo_data=True, demo_user_id=1),
            kv=InMemoryKeyValueStore(),
            clock=clock,
        )
        permissions = service.list_permissions(1)
        assert len(permissions) == 5
        assert len(service.list_requests(1)) == 2
        assert service.health(1).score == 83
        session = service.get_permission(3)
        assert session.expiry_time == NOW + timedelta(minutes=28)

    def test_no_seed_by_default(self, clock: FrozenClock) -> None:
        """Without seeding the store is empty."""
        service = build_service(HubConfig(), kv=InMemoryKeyValueStore(), clock=clock)
        assert service.list_permissions(1) == []

    def test_new_ids_follow_seeded_ones(self, clock: FrozenClock) -> None:
        """Creates after seeding never collide with demo ids."""
        service = build_service(HubConfig(seed_demo_data=True), kv=InMemoryKeyValueStore(), clock=clock)
        assert service.create_permission(permission_payload()).id == 6
        assert service.create_request(request_payload()).id == 3




class TestConcurrency:
    """Per-user serialization of mutations and health recomputes."""

    WORKERS = 8

    def _record_concurrently(self, service: PermissionService, permission_id: int, attempts: int) -> list[bool]:
        def record(_: int) -> bool:
            try:
                service.record_calls(permission_id)
            except ValidationFailure:
                return False
            return True

        with ThreadPoolExecutor(max_workers=self.WORKERS) as pool:
            return list(pool.map(record, range(attempts)))

    def test_concurrent_calls_all_counted(self, service: PermissionService) -> None:
        """Parallel increments within the budget are never lost."""
        budget = 40
        permission = service.create_permission(permission_payload(maxCalls=budget))
        results = self._record_concurrently(service, permission.id, budget)
        assert all(results)
        assert service.get_permission(permission.id).calls_used == budget

    def test_concurrent_calls_never_exceed_budget(self, service: PermissionService) -> None:
        """Exactly max_calls increments succeed when more are attempted."""
        budget = 25
        permission = service.create_permission(permission_payload(maxCalls=budget))
        results = self._record_concurrently(service, permission.id, budget * 2)
        assert results.count(True) == budget
        assert results.count(False) == budget
        assert service.get_permission(permission.id).calls_used == budget

    def test_persisted_factors_match_final_state(
        self,
        service: PermissionService,
        kv: InMemoryKeyValueStore,
    ) -> None:
        """After concurrent mutations the stored factors equal one fresh recompute."""
        created = []
        for i in range(12):
            overrides = {}
            if i % 3:
                overrides["maxCalls"] = None
            if i % 2:
                overrides["expiryTime"] = None
            created.append(service.create_permission(permission_payload(**overrides)))

        def mutate(index: int) -> None:
            if index % 4 == 0:
                service.stop_permission(created[index].id)
            elif index % 4 == 1:
                service.delete_permission(created[index].id)
            else:
                service.create_permission(permission_payload())

        with ThreadPoolExecutor(max_workers=self.WORKERS) as pool:
            list(pool.map(mutate, range(len(created))))

        expected = recompute_factors(default_factors(), count_permissions(service.list_permissions(1)))
        expected_values = {f.id: f.value for f in expected}
        stored = {f["id"]: f["value"] for f in kv.get(service.engine(1).factors_key)}
        assert stored == expected_values
        assert _values(service.health(1)) == expected_values
