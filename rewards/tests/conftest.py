from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from rewards.config import Settings
from rewards.models import SignUpRequest
from rewards.service import RewardsService
from rewards.store import InMemoryStorage


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def make_service(clock):
    def factory(**overrides) -> RewardsService:
        values = {
            "daily_ad_view_limit": 500,
            "coin_to_usd_rate": Decimal("0.00001"),
            "referral_commission_percent": Decimal("5"),
            "ad_watch_reward_coins": 10,
            "whatsapp_reward_coins": 20,
            "youtube_subscribe_reward_coins": 20,
            "youtube_promotion_reward_coins": 25000,
        }
        values.update(overrides)
        return RewardsService(storage=InMemoryStorage(), settings=Settings(**values), clock=clock)

    return factory


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def sign_up(service):
    def create(uid: str, balance: int = 0, referral_code: str = None):
        service.accounts.sign_up(
            SignUpRequest(uid=uid, email=f"{uid}@example.com", referral_code=referral_code)
        )
        if balance:
            service.ledger.set_coins(uid, balance)
        return service.accounts.get_account(uid)

    return create
