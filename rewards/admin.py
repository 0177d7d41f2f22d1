from typing import Callable, Optional

import structlog

from .config import ADMIN_PATH, AdConfig, AdminConfig, SocialTaskLinks, load_admin_config
from .errors import RequestValidationError
from .ledger import LedgerService, is_valid_id
from .models import SocialTask, UserAccount

logger = structlog.get_logger(__name__)

DEFAULT_ADS = {
    "ad1": {"url": "https://www.google.com", "coins": 10},
    "ad2": {"url": "https://www.youtube.com", "coins": 10},
    "ad3": {"url": "https://www.bing.com", "coins": 10},
}


def _parse_users(data: Optional[dict]) -> list[UserAccount]:
    return [UserAccount.model_validate({"uid": uid, **value}) for uid, value in (data or {}).items()]


class AdminService:
    def __init__(self, ledger: LedgerService):
        self.ledger = ledger
        self.storage = ledger.storage
        self.settings = ledger.settings

    def config(self) -> AdminConfig:
        return load_admin_config(self.storage, self.settings)

    def setup_initial_settings(self) -> bool:
        """Write default admin settings once; False if they already exist."""
        defaults = {
            "ads": DEFAULT_ADS,
            "socialTaskLinks": {"whatsapp": "", "youtube": ""},
            "youtubePromotionCoins": self.settings.youtube_promotion_reward_coins,
            "referralCommission": float(self.settings.referral_commission_percent / 100),
            "coinToUsdRate": float(self.settings.coin_to_usd_rate),
            "dailyAdViewLimit": self.settings.daily_ad_view_limit,
        }
        result = self.storage.transaction(ADMIN_PATH, lambda current: defaults if current is None else None)
        if result.committed:
            logger.info("admin_settings_initialized")
        return result.committed

    def update_ad_link(self, ad_id: str, url: str, coins: Optional[int] = None) -> None:
        url = url.strip()
        if not is_valid_id(ad_id.strip()) or not url:
            raise RequestValidationError("Ad id and url are required")
        values = {"url": url}
        if coins is not None:
            if coins < 0:
                raise RequestValidationError("Ad reward must be non-negative")
            values["coins"] = coins
        self.storage.update(f"{ADMIN_PATH}/ads/{ad_id}", values)
        logger.info("ad_link_updated", ad_id=ad_id)

    def update_social_task_link(self, task: SocialTask, url: str) -> None:
        self.storage.update(f"{ADMIN_PATH}/socialTaskLinks", {task.value: url.strip()})
        logger.info("social_task_link_updated", task=task.value)

    def update_daily_ad_view_limit(self, limit: int) -> None:
        if limit <= 0:
            raise RequestValidationError("Daily ad view limit must be positive")
        self.storage.update(ADMIN_PATH, {"dailyAdViewLimit": limit})
        logger.info("daily_ad_view_limit_updated", limit=limit)

    def listen_to_ads(self, callback: Callable[[dict[str, AdConfig]], None]) -> Callable[[], None]:
        return self.storage.subscribe(
            f"{ADMIN_PATH}/ads",
            lambda data: callback({ad_id: AdConfig.model_validate(ad) for ad_id, ad in (data or {}).items()}),
        )

    def listen_to_social_task_links(self, callback: Callable[[SocialTaskLinks], None]) -> Callable[[], None]:
        return self.storage.subscribe(
            f"{ADMIN_PATH}/socialTaskLinks",
            lambda data: callback(SocialTaskLinks.model_validate(data or {})),
        )

    def listen_to_daily_ad_view_limit(self, callback: Callable[[int], None]) -> Callable[[], None]:
        """Deliver the effective limit, falling back to settings when unset."""
        return self.storage.subscribe(
            f"{ADMIN_PATH}/dailyAdViewLimit",
            lambda data: callback(data if data is not None else self.settings.daily_ad_view_limit),
        )

    def list_users(self) -> list[UserAccount]:
        return _parse_users(self.storage.get("users"))

    def listen_to_users(self, callback: Callable[[list[UserAccount]], None]) -> Callable[[], None]:
        return self.storage.subscribe("users", lambda data: callback(_parse_users(data)))

    def set_user_coins(self, user_id: str, coins: int) -> int:
        return self.ledger.set_coins(user_id, coins)
