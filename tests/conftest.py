"""Shared fixtures: a frozen clock and a wired service."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from permissionhub import (
    HubConfig,
    InMemoryKeyValueStore,
    PermissionService,
    PermissionStore,
    PermissionType,
)

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store(clock: FrozenClock) -> PermissionStore:
    return PermissionStore(clock=clock)


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def service(store: PermissionStore, kv: InMemoryKeyValueStore, clock: FrozenClock) -> PermissionService:
    return PermissionService(store, kv, config=HubConfig(), clock=clock)


def permission_payload(**overrides: Any) -> dict[str, Any]:
    """camelCase POST /permissions body."""
    payload: dict[str, Any] = {
        "userId": 1,
        "type": PermissionType.SESSION_BASED.value,
        "name": "Gaming NFT Session",
        "appName": "Blockchain Game",
        "maxCalls": 10,
        "expiryTime": (NOW + timedelta(days=1)).isoformat(),
    }
    payload.update(overrides)
    return payload


def request_payload(**overrides: Any) -> dict[str, Any]:
    """camelCase POST /permission-requests body."""
    payload: dict[str, Any] = {
        "userId": 1,
        "type": PermissionType.CONTRACT_INTERACTION.value,
        "appName": "DeFi Protocol",
        "description": "Automated token swaps permission",
        "contractAddress": "0x9c0d1e2f3a4b5c6d7e8f9a0b1c2d3e4f5a6b7c8d",
        "maxAmount": "500",
        "maxCalls": 10,
        "expiryTime": (NOW + timedelta(days=7)).isoformat(),
        "additionalData": {"token": "USDC"},
    }
    payload.update(overrides)
    return payload
