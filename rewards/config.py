from decimal import Decimal
from functools import lru_cache
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

ADMIN_PATH = "admin"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    daily_ad_view_limit: int = Field(default=500, alias="DAILY_AD_VIEW_LIMIT")
    coin_to_usd_rate: Decimal = Field(default=Decimal("0.00001"), alias="COIN_TO_USD_RATE")
    referral_commission_percent: Decimal = Field(default=Decimal("5"), alias="REFERRAL_COMMISSION_PERCENT")

    ad_watch_reward_coins: int = Field(default=10, alias="AD_WATCH_REWARD_COINS")
    whatsapp_reward_coins: int = Field(default=20, alias="WHATSAPP_REWARD_COINS")
    youtube_subscribe_reward_coins: int = Field(default=20, alias="YOUTUBE_SUBSCRIBE_REWARD_COINS")
    youtube_promotion_reward_coins: int = Field(default=25000, alias="YOUTUBE_PROMOTION_REWARD_COINS")

    transaction_max_retries: int = Field(default=25, alias="TRANSACTION_MAX_RETRIES")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


class AdConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str = ""
    coins: Optional[int] = None


class SocialTaskLinks(BaseModel):
    model_config = ConfigDict(frozen=True)

    whatsapp: str = ""
    youtube: str = ""


class AdminConfig(BaseModel):
    """Admin-tunable settings, read from the ``admin`` document per operation."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    ads: dict[str, AdConfig] = Field(default_factory=dict)
    social_task_links: SocialTaskLinks = Field(default_factory=SocialTaskLinks)
    daily_ad_view_limit: int
    youtube_promotion_coins: int
    referral_commission_percent: Decimal
    coin_to_usd_rate: Decimal
    ad_watch_reward_coins: int
    whatsapp_reward_coins: int
    youtube_subscribe_reward_coins: int

    @classmethod
    def from_document(cls, document: Optional[dict[str, Any]], settings: Settings) -> "AdminConfig":
        document = document or {}
        commission = document.get("referralCommission")
        rate = document.get("coinToUsdRate")
        return cls(
            ads=document.get("ads") or {},
            social_task_links=document.get("socialTaskLinks") or {},
            daily_ad_view_limit=document.get("dailyAdViewLimit", settings.daily_ad_view_limit),
            youtube_promotion_coins=document.get(
                "youtubePromotionCoins", settings.youtube_promotion_reward_coins
            ),
            # stored as a fraction (0.05), exposed as a percentage
            referral_commission_percent=(
                Decimal(str(commission)) * 100
                if commission is not None
                else settings.referral_commission_percent
            ),
            coin_to_usd_rate=Decimal(str(rate)) if rate is not None else settings.coin_to_usd_rate,
            ad_watch_reward_coins=settings.ad_watch_reward_coins,
            whatsapp_reward_coins=settings.whatsapp_reward_coins,
            youtube_subscribe_reward_coins=settings.youtube_subscribe_reward_coins,
        )

    def ad_reward(self, ad_id: Optional[str]) -> int:
        ad = self.ads.get(ad_id) if ad_id else None
        if ad is None or ad.coins is None:
            return self.ad_watch_reward_coins
        return ad.coins


def load_admin_config(storage, settings: Settings) -> AdminConfig:
    return AdminConfig.from_document(storage.get(ADMIN_PATH), settings)
