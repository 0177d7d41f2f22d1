from dataclasses import dataclass

from .errors import UnknownChallengeTierError, UserNotFoundError
from .ledger import LedgerService
from .models import (
    ChallengeCategory,
    ChallengeCategoryProgress,
    ChallengeTierProgress,
    CollectResult,
    CollectStatus,
    UserAccount,
)


@dataclass(frozen=True)
class ChallengeTier:
    category: ChallengeCategory
    index: int
    target: int
    reward: int
    label: str

    @property
    def key(self) -> str:
        return f"{self.category.value}-{self.index}-{self.target}"


def _tiers(category: ChallengeCategory, label: str, levels: list[tuple[int, int]]) -> list[ChallengeTier]:
    return [
        ChallengeTier(category, index, target, reward, label.format(target=target))
        for index, (target, reward) in enumerate(levels)
    ]


CHALLENGE_TIERS: dict[ChallengeCategory, list[ChallengeTier]] = {
    ChallengeCategory.PTC_ADS: _tiers(
        ChallengeCategory.PTC_ADS, "Watch {target} PTC Ads", [(100, 100), (1000, 1000), (5000, 5000)]
    ),
    ChallengeCategory.SURF_ADS: _tiers(
        ChallengeCategory.SURF_ADS, "Watch {target} Surf Ads", [(100, 100), (1000, 1000), (5000, 5000)]
    ),
    ChallengeCategory.VERIFIED_INVITES: _tiers(
        ChallengeCategory.VERIFIED_INVITES,
        "{target} Verified Invites",
        [(10, 500), (30, 3000), (100, 25000), (500, 200000), (1000, 500000)],
    ),
}


def find_tier(category: ChallengeCategory, tier_key: str) -> ChallengeTier:
    for tier in CHALLENGE_TIERS[category]:
        if tier.key == tier_key:
            return tier
    raise UnknownChallengeTierError(f"No {category.value} tier with key {tier_key}")


class ChallengeTracker:
    """Read access to challenge counters plus the one-time collect."""

    def __init__(self, ledger: LedgerService):
        self.ledger = ledger

    def get_progress(self, user_id: str) -> list[ChallengeCategoryProgress]:
        account = self._account(user_id)
        return [self._category_progress(account, category) for category in ChallengeCategory]

    def collect(self, user_id: str, category: ChallengeCategory, tier_key: str) -> CollectResult:
        tier = find_tier(category, tier_key)
        account = self._account(user_id)

        if account.challenges.for_category(category).count < tier.target:
            return CollectResult(status=CollectStatus.NOT_REACHED, category=category, tier_key=tier_key)

        collected = self.ledger.collect_one_time_reward(user_id, category, tier_key, tier.reward)
        if not collected:
            return CollectResult(status=CollectStatus.ALREADY_COLLECTED, category=category, tier_key=tier_key)
        return CollectResult(
            status=CollectStatus.COLLECTED, category=category, tier_key=tier_key, reward=tier.reward
        )

    def _account(self, user_id: str) -> UserAccount:
        account = self.ledger.get_account(user_id)
        if account is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return account

    @staticmethod
    def _category_progress(account: UserAccount, category: ChallengeCategory) -> ChallengeCategoryProgress:
        progress = account.challenges.for_category(category)
        return ChallengeCategoryProgress(
            category=category,
            count=progress.count,
            tiers=[
                ChallengeTierProgress(
                    key=tier.key,
                    label=tier.label,
                    target=tier.target,
                    reward=tier.reward,
                    reached=progress.count >= tier.target,
                    collected=bool(progress.rewards_collected.get(tier.key)),
                )
                for tier in CHALLENGE_TIERS[category]
            ],
        )
