"""
Coin Rewards Ledger

This package provides:
- A transactional in-memory document store with change subscriptions
- The coin ledger: credits, clamped debits, daily-capped ad watches
- Request lifecycles: withdrawal, deposit, video promotion (pending → approved/accepted | rejected)
- Referral linking, verification and first-withdrawal commission
- Tiered one-time challenge rewards
"""

from .models import (
    AdWatchStatus,
    ChallengeCategory,
    CollectStatus,
    ReferralStatus,
    RequestKind,
    RequestStatus,
    UserAccount,
)
from .service import RewardsService
from .store import InMemoryStorage

__all__ = [
    "AdWatchStatus",
    "ChallengeCategory",
    "CollectStatus",
    "InMemoryStorage",
    "ReferralStatus",
    "RequestKind",
    "RequestStatus",
    "RewardsService",
    "UserAccount",
]
