from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from .config import Settings, get_settings, load_admin_config
from .errors import RequestValidationError, UserNotFoundError
from .models import (
    AdWatchResult,
    AdWatchStatus,
    ChallengeCategory,
    DailyAdStats,
    SocialTask,
    UserAccount,
    utcnow,
)
from .store import InMemoryStorage

logger = structlog.get_logger(__name__)

AD_CATEGORIES = (ChallengeCategory.PTC_ADS, ChallengeCategory.SURF_ADS)


def is_valid_id(value: Optional[str]) -> bool:
    """Ids are single path segments."""
    return bool(value) and "/" not in value


def user_path(user_id: str) -> str:
    if not is_valid_id(user_id):
        raise RequestValidationError(f"Invalid user id: {user_id!r}")
    return f"users/{user_id}"


def ad_day(now: datetime) -> str:
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d")


@dataclass(frozen=True)
class WithdrawalDebit:
    balance: int
    was_first_withdrawal: bool
    referred_by: Optional[str]


class LedgerService:
    """Sole writer of coin balances.

    Every balance change is a transaction on the user document, so concurrent
    sessions for the same user never lose updates and deductions clamp at 0.
    """

    def __init__(
        self,
        storage: InMemoryStorage,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.settings = settings or get_settings()
        self.clock = clock

    def get_account(self, user_id: str) -> Optional[UserAccount]:
        data = self.storage.get(user_path(user_id))
        return UserAccount.model_validate(data) if data else None

    def transact_account(
        self, user_id: str, mutate: Callable[[UserAccount], Optional[bool]]
    ) -> Optional[UserAccount]:
        """Apply ``mutate`` to the account in a store transaction.

        ``mutate`` edits the account in place and returns False to abort.
        Returns the committed account, or None when aborted.
        """

        def apply(current):
            if current is None:
                raise UserNotFoundError(f"User {user_id} not found")
            account = UserAccount.model_validate(current)
            if mutate(account) is False:
                return None
            return account.to_document()

        result = self.storage.transaction(user_path(user_id), apply)
        if not result.committed:
            return None
        return UserAccount.model_validate(result.value)

    def credit_coins(self, user_id: str, amount: int) -> int:
        if amount < 0:
            raise RequestValidationError(f"Credit amount must be non-negative, got {amount}")

        def mutate(account: UserAccount) -> None:
            account.coins += amount

        account = self.transact_account(user_id, mutate)
        logger.info("coins_credited", user_id=user_id, amount=amount, balance=account.coins)
        return account.coins

    def debit_coins(self, user_id: str, amount: int) -> int:
        """Deduct coins, clamping at zero instead of failing."""
        if amount < 0:
            raise RequestValidationError(f"Debit amount must be non-negative, got {amount}")

        def mutate(account: UserAccount) -> None:
            account.coins = max(0, account.coins - amount)

        account = self.transact_account(user_id, mutate)
        logger.info("coins_debited", user_id=user_id, amount=amount, balance=account.coins)
        return account.coins

    def debit_for_withdrawal(self, user_id: str, amount: int) -> WithdrawalDebit:
        """Debit an approved withdrawal and mark the first withdrawal done.

        The returned flag is the value read in the committing snapshot, before
        this debit set it.
        """
        if amount < 0:
            raise RequestValidationError(f"Debit amount must be non-negative, got {amount}")
        before = {}

        def mutate(account: UserAccount) -> None:
            before["first_withdrawal_completed"] = account.first_withdrawal_completed
            before["referred_by"] = account.referred_by
            account.coins = max(0, account.coins - amount)
            account.first_withdrawal_completed = True

        account = self.transact_account(user_id, mutate)
        logger.info("withdrawal_debited", user_id=user_id, amount=amount, balance=account.coins)
        return WithdrawalDebit(
            balance=account.coins,
            was_first_withdrawal=not before["first_withdrawal_completed"],
            referred_by=before["referred_by"],
        )

    def set_coins(self, user_id: str, coins: int) -> int:
        if coins < 0:
            raise RequestValidationError("Balance cannot be negative")

        def mutate(account: UserAccount) -> None:
            account.coins = coins

        self.transact_account(user_id, mutate)
        logger.info("coins_overridden", user_id=user_id, balance=coins)
        return coins

    def record_ad_watch(
        self,
        user_id: str,
        reward_coins: int,
        category: ChallengeCategory = ChallengeCategory.PTC_ADS,
    ) -> AdWatchResult:
        if category not in AD_CATEGORIES:
            raise RequestValidationError(f"{category.value} is not an ad category")
        if reward_coins < 0:
            raise RequestValidationError("Ad reward must be non-negative")

        limit = load_admin_config(self.storage, self.settings).daily_ad_view_limit
        today = ad_day(self.clock())
        seen = {}

        def apply(current):
            seen["autocreated"] = current is None
            if current is None:
                account = UserAccount(uid=user_id)
            else:
                account = UserAccount.model_validate(current)

            watches = account.watches_on(today)
            seen["watches"] = watches
            if watches >= limit:
                return None

            account.daily_ad_stats[today] = DailyAdStats(total_watches=watches + 1)
            account.coins += reward_coins
            account.challenges.for_category(category).count += 1
            seen["watches"] = watches + 1
            return account.to_document()

        result = self.storage.transaction(user_path(user_id), apply)

        if not result.committed:
            logger.info("ad_watch_daily_limit_reached", user_id=user_id, day=today, limit=limit)
            return AdWatchResult(
                status=AdWatchStatus.DAILY_LIMIT_REACHED,
                watches_today=seen["watches"],
                daily_limit=limit,
            )

        if seen["autocreated"]:
            logger.warning("ad_watch_account_autocreated", user_id=user_id)
        return AdWatchResult(
            status=AdWatchStatus.RECORDED,
            coins_awarded=reward_coins,
            watches_today=seen["watches"],
            daily_limit=limit,
        )

    def collect_one_time_reward(
        self,
        user_id: str,
        category: ChallengeCategory,
        tier_key: str,
        reward_coins: int,
    ) -> bool:
        """Set the tier's collected flag and credit once; False if already set."""

        def mutate(account: UserAccount) -> Optional[bool]:
            progress = account.challenges.for_category(category)
            if progress.rewards_collected.get(tier_key):
                return False
            progress.rewards_collected[tier_key] = True
            account.coins += reward_coins
            return None

        account = self.transact_account(user_id, mutate)
        if account is None:
            return False
        logger.info(
            "challenge_reward_collected",
            user_id=user_id,
            category=category.value,
            tier_key=tier_key,
            reward=reward_coins,
        )
        return True

    def complete_social_task(self, user_id: str, task: SocialTask) -> bool:
        config = load_admin_config(self.storage, self.settings)
        if task == SocialTask.WHATSAPP:
            reward = config.whatsapp_reward_coins
        else:
            reward = config.youtube_subscribe_reward_coins

        def mutate(account: UserAccount) -> Optional[bool]:
            tasks = account.social_tasks
            if task == SocialTask.WHATSAPP:
                if tasks.whatsapp_joined:
                    return False
                tasks.whatsapp_joined = True
            else:
                if tasks.youtube_subscribed:
                    return False
                tasks.youtube_subscribed = True
            account.coins += reward
            return None

        if self.transact_account(user_id, mutate) is None:
            return False
        logger.info("social_task_completed", user_id=user_id, task=task.value, reward=reward)
        return True
