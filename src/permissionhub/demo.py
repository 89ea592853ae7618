"""Demo data for the single demo user.

Five granted permissions (two token streams, two sessions, one smart-account
delegation) and two pending requests, with times relative to ``now``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from .models import Permission, PermissionRequest, PermissionType, utc_now
from .store import PermissionStore

logger = logging.getLogger(__name__)


def demo_permissions(user_id: int, now: datetime) -> list[Permission]:
    day = timedelta(days=1)
    return [
        Permission(
            id=1,
            user_id=user_id,
            type=PermissionType.TOKEN_STREAM,
            name="Music Subscription Stream",
            app_name="Streaming Music App",
            description="Continuous micropayments for music streaming service",
            contract_address="0x1a2b3c4d5e6f7a8b9c0d1e2f3a4b5c6d7e8f9a0b",
            function_signature="transfer(address,uint256)",
            max_amount="100",
            amount_per_second="0.0001",
            total_amount="25.32",
            expiry_time=now + 8 * day,
            created_at=now - 5 * day,
            additional_data={"token": "USDC"},
        ),
        Permission(
            id=2,
            user_id=user_id,
            type=PermissionType.TOKEN_STREAM,
            name="News Subscription",
            app_name="Web3 News Subscription",
            description="Subscription to premium crypto news content",
            contract_address="0x7f8e9a0b1c2d3e4f5a6b7c8d9e0f1a2b3c4d5e6f",
            function_signature="transfer(address,uint256)",
            max_amount="0.5",
            amount_per_second="0.00005",
            total_amount="0.08",
            expiry_time=now + 3 * day,
            created_at=now - 10 * day,
            additional_data={"token": "ETH"},
        ),
        Permission(
            id=3,
            user_id=user_id,
            type=PermissionType.SESSION_BASED,
            name="Gaming NFT Session",
            app_name="Blockchain Game",
            description="Limited access to use in-game NFT assets",
            contract_address="0x3c4d5e6f7a8b9c0d1e2f3a4b5c6d7e8f9a0b1c2d",
            function_signature="useItem(),transferInGame()",
            max_calls=50,
            calls_used=12,
            expiry_time=now + timedelta(minutes=28),
            created_at=now - timedelta(hours=2),
            additional_data={"nftIds": ["#1234", "#5678"]},
        ),
        Permission(
            id=4,
            user_id=user_id,
            type=PermissionType.SESSION_BASED,
            name="Voting Delegation",
            app_name="DAO Voting Portal",
            description="Delegated voting rights for proposal DIP-247",
            contract_address="0x5e6f7a8b9c0d1e2f3a4b5c6d7e8f9a0b1c2d3e4f",
            function_signature="vote(uint256,bool)",
            max_calls=1,
            calls_used=0,
            expiry_time=now + 2 * day + timedelta(hours=4),
            created_at=now - day,
            additional_data={"proposalId": "DIP-247"},
        ),
        Permission(
            id=5,
            user_id=user_id,
            type=PermissionType.DELEGATION,
            name="Smart Account Delegation",
            app_name="AI Trading Agent",
            description="Limited trading permissions for AI agent",
            contract_address="0x8b9c0d1e2f3a4b5c6d7e8f9a0b1c2d3e4f5a6b7c",
            function_signature="executeTrade(address,uint256,uint256)",
            max_amount="500",
            total_amount="325",
            max_calls=20,
            calls_used=7,
            expiry_time=now + 7 * day,
            created_at=now - 3 * day,
            additional_data={"token": "USDC", "dailyLimit": 20},
        ),
    ]


def demo_requests(user_id: int, now: datetime) -> list[PermissionRequest]:
    return [
        PermissionRequest(
            id=1,
            user_id=user_id,
            type=PermissionType.CONTRACT_INTERACTION,
            app_name="DeFi Protocol",
            description="Automated token swaps permission",
            contract_address="0x9c0d1e2f3a4b5c6d7e8f9a0b1c2d3e4f5a6b7c8d",
            function_signature="swap(address,uint256)",
            max_amount="500",
            max_calls=10,
            expiry_time=now + timedelta(days=7),
            requested_at=now,
            additional_data={"token": "USDC"},
        ),
        PermissionRequest(
            id=2,
            user_id=user_id,
            type=PermissionType.SESSION_BASED,
            app_name="NFT Marketplace",
            description="NFT viewing session permission",
            contract_address="0x1e2f3a4b5c6d7e8f9a0b1c2d3e4f5a6b7c8d9e0f",
            function_signature="viewNFT(uint256)",
            max_calls=50,
            expiry_time=now + timedelta(hours=2),
            requested_at=now,
            additional_data={"collectionId": "bored-apes"},
        ),
    ]


def seed_demo_data(
    store: PermissionStore,
    user_id: int = 1,
    now: Optional[datetime] = None,
) -> None:
    """Insert the demo permissions and requests into an empty store."""
    now = now or utc_now()
    for permission in demo_permissions(user_id, now):
        store.insert_permission(permission)
    for request in demo_requests(user_id, now):
        store.insert_request(request)
    logger.info("Seeded demo data for user %s", user_id)


__all__ = ["demo_permissions", "demo_requests", "seed_demo_data"]
