from datetime import datetime
from typing import Callable, Optional

from .accounts import AccountService
from .admin import AdminService
from .challenges import ChallengeTracker
from .config import Settings, get_settings, load_admin_config
from .ledger import LedgerService
from .models import AdWatchResult, ChallengeCategory, utcnow
from .referrals import ReferralService
from .store import InMemoryStorage
from .workflow import RequestWorkflow


class RewardsService:
    """Wires the ledger, workflows, referrals and challenges over one store."""

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or get_settings()
        self.storage = storage or InMemoryStorage(max_retries=self.settings.transaction_max_retries)
        self.ledger = LedgerService(self.storage, self.settings, clock=clock)
        self.referrals = ReferralService(self.ledger)
        self.accounts = AccountService(self.ledger, self.referrals)
        self.workflow = RequestWorkflow(self.ledger, self.referrals)
        self.challenges = ChallengeTracker(self.ledger)
        self.admin = AdminService(self.ledger)

    def watch_ad(
        self,
        user_id: str,
        ad_id: Optional[str] = None,
        category: ChallengeCategory = ChallengeCategory.PTC_ADS,
    ) -> AdWatchResult:
        reward = load_admin_config(self.storage, self.settings).ad_reward(ad_id)
        return self.ledger.record_ad_watch(user_id, reward, category)
