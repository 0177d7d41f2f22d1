from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class RequestKind(str, Enum):
    WITHDRAWAL = "withdrawal"
    DEPOSIT = "deposit"
    VIDEO_PROMOTION = "video_promotion"


class ReferralStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"


class ChallengeCategory(str, Enum):
    PTC_ADS = "ptcAds"
    SURF_ADS = "surfAds"
    VERIFIED_INVITES = "verifiedInvites"


class SocialTask(str, Enum):
    WHATSAPP = "whatsapp"
    YOUTUBE = "youtube"


class AdWatchStatus(str, Enum):
    RECORDED = "recorded"
    DAILY_LIMIT_REACHED = "daily_limit_reached"


class CollectStatus(str, Enum):
    COLLECTED = "collected"
    ALREADY_COLLECTED = "already_collected"
    NOT_REACHED = "not_reached"


class Document(BaseModel):
    """Base for everything persisted in the store (camelCase keys)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ChallengeProgress(Document):
    count: int = 0
    rewards_collected: dict[str, bool] = Field(default_factory=dict)


class Challenges(Document):
    ptc_ads: ChallengeProgress = Field(default_factory=ChallengeProgress)
    surf_ads: ChallengeProgress = Field(default_factory=ChallengeProgress)
    verified_invites: ChallengeProgress = Field(default_factory=ChallengeProgress)

    def for_category(self, category: ChallengeCategory) -> ChallengeProgress:
        if category == ChallengeCategory.PTC_ADS:
            return self.ptc_ads
        if category == ChallengeCategory.SURF_ADS:
            return self.surf_ads
        return self.verified_invites


class DailyAdStats(Document):
    total_watches: int = 0


class SocialTasks(Document):
    whatsapp_joined: bool = False
    youtube_subscribed: bool = False


class Referral(Document):
    id: str
    email: str = ""
    referred_at: datetime = Field(default_factory=utcnow)
    first_withdrawal_approved: bool = False
    status: ReferralStatus = ReferralStatus.PENDING


class ReferralEntry(Document):
    inviter_id: str
    referral: Referral


class VideoPromotion(Document):
    id: str
    user_id: str
    user_email: str
    video_link: str
    coins: int
    status: RequestStatus = RequestStatus.PENDING
    timestamp: datetime = Field(default_factory=utcnow)


class WithdrawRequest(Document):
    id: str
    user_id: str
    user_email: str
    amount_coins: int
    amount_usd: float = Field(alias="amountUSD")
    method: str
    account_details: str
    status: RequestStatus = RequestStatus.PENDING
    timestamp: datetime = Field(default_factory=utcnow)


class DepositRequest(Document):
    id: str
    user_id: str
    user_email: str
    transaction_id: str
    amount_deposited: float
    coins_to_receive: int
    status: RequestStatus = RequestStatus.PENDING
    timestamp: datetime = Field(default_factory=utcnow)


class UserAccount(Document):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    uid: str
    email: str = ""
    coins: int = 0
    daily_ad_stats: dict[str, DailyAdStats] = Field(default_factory=dict)
    social_tasks: SocialTasks = Field(default_factory=SocialTasks)
    referred_by: Optional[str] = None
    total_invites: int = 0
    verified_invites_count: int = 0
    first_withdrawal_completed: bool = False
    challenges: Challenges = Field(default_factory=Challenges)
    referrals: dict[str, Referral] = Field(default_factory=dict)
    video_promotions: dict[str, VideoPromotion] = Field(default_factory=dict)

    def watches_on(self, day: str) -> int:
        stats = self.daily_ad_stats.get(day)
        return stats.total_watches if stats else 0


class SignUpRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    uid: str = Field(..., description="Stable id issued by the identity provider")
    email: str
    referral_code: Optional[str] = Field(default=None, description="Inviter's uid")


class CreateWithdrawalRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str
    user_email: str
    amount_coins: int
    method: str = Field(..., description="Payout method, e.g. Easypaisa, UPI, Bank Transfer")
    account_details: str


class CreateDepositRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str
    user_email: str
    transaction_id: str = Field(..., description="External payment reference, not verified")
    amount_deposited: Decimal


class CreateVideoPromotionRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str
    user_email: str
    video_link: str


class StatusUpdateRequest(BaseModel):
    status: RequestStatus


class SetCoinsRequest(BaseModel):
    coins: int


class AdLinkUpdateRequest(BaseModel):
    url: str
    coins: Optional[int] = None


class SocialLinkUpdateRequest(BaseModel):
    url: str


class DailyLimitUpdateRequest(BaseModel):
    limit: int


class AdWatchResult(Document):
    status: AdWatchStatus
    coins_awarded: int = 0
    watches_today: int
    daily_limit: int

    @property
    def recorded(self) -> bool:
        return self.status == AdWatchStatus.RECORDED


class ChallengeTierProgress(Document):
    key: str
    label: str
    target: int
    reward: int
    reached: bool
    collected: bool


class ChallengeCategoryProgress(Document):
    category: ChallengeCategory
    count: int
    tiers: list[ChallengeTierProgress]


class CollectResult(Document):
    status: CollectStatus
    category: ChallengeCategory
    tier_key: str
    reward: int = 0


class TransitionResponse(Document):
    kind: RequestKind
    request_id: str
    status: RequestStatus
    coins_moved: int = 0
    commission_paid: int = 0
    message: str
