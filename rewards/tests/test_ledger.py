"""
Unit Tests for the Ledger Service

Tests cover:
1. Credit and clamped debit
2. Daily-capped ad watches, including concurrent submissions
3. One-time reward collection
4. Social task rewards
5. Balance never negative
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from rewards.errors import RequestValidationError, UserNotFoundError
from rewards.models import AdWatchStatus, ChallengeCategory, SignUpRequest, SocialTask


class TestCreditDebit:
    """Tests for direct balance mutation."""

    def test_credit_adds_to_balance(self, service, sign_up):
        """Test that credits accumulate."""
        sign_up("alice")

        service.ledger.credit_coins("alice", 100)
        balance = service.ledger.credit_coins("alice", 250)

        assert balance == 350
        assert service.accounts.get_account("alice").coins == 350

    def test_credit_rejects_negative_amount(self, service, sign_up):
        """Test that a negative credit is a validation error."""
        sign_up("alice")

        with pytest.raises(RequestValidationError):
            service.ledger.credit_coins("alice", -5)

    def test_credit_unknown_user_fails(self, service):
        """Test that crediting a missing user does not create it."""
        with pytest.raises(UserNotFoundError):
            service.ledger.credit_coins("ghost", 10)

        assert service.ledger.get_account("ghost") is None

    def test_debit_clamps_at_zero(self, service, sign_up):
        """Test that over-debiting leaves a zero balance instead of failing."""
        sign_up("alice", balance=300)

        balance = service.ledger.debit_coins("alice", 1000)

        assert balance == 0
        assert service.accounts.get_account("alice").coins == 0

    def test_balance_never_negative_over_mixed_sequence(self, service, sign_up):
        """Test the non-negative invariant over a mixed sequence of operations."""
        sign_up("alice")
        operations = [
            lambda: service.ledger.credit_coins("alice", 30),
            lambda: service.ledger.debit_coins("alice", 50),
            lambda: service.ledger.record_ad_watch("alice", 10),
            lambda: service.ledger.debit_coins("alice", 5),
            lambda: service.ledger.collect_one_time_reward("alice", ChallengeCategory.PTC_ADS, "bonus", 7),
            lambda: service.ledger.debit_coins("alice", 100),
        ]

        for operation in operations:
            operation()
            assert service.accounts.get_account("alice").coins >= 0

    def test_set_coins_rejects_negative(self, service, sign_up):
        """Test that an admin override cannot set a negative balance."""
        sign_up("alice")

        with pytest.raises(RequestValidationError):
            service.ledger.set_coins("alice", -1)


class TestAdWatch:
    """Tests for the daily-capped ad watch."""

    def test_watch_credits_and_counts(self, service, sign_up, clock):
        """Test that a watch credits coins and bumps today's and the challenge counters."""
        sign_up("alice")

        result = service.ledger.record_ad_watch("alice", 10)

        account = service.accounts.get_account("alice")
        assert result.status == AdWatchStatus.RECORDED
        assert result.coins_awarded == 10
        assert result.watches_today == 1
        assert account.coins == 10
        assert account.daily_ad_stats["2026-03-14"].total_watches == 1
        assert account.challenges.ptc_ads.count == 1
        assert account.challenges.surf_ads.count == 0

    def test_surf_ads_category(self, service, sign_up):
        """Test that surf ad watches count toward the surf challenge."""
        sign_up("alice")

        service.ledger.record_ad_watch("alice", 10, ChallengeCategory.SURF_ADS)

        account = service.accounts.get_account("alice")
        assert account.challenges.surf_ads.count == 1
        assert account.challenges.ptc_ads.count == 0

    def test_invites_are_not_an_ad_category(self, service, sign_up):
        """Test that the verified-invites counter cannot be bumped by ad watches."""
        sign_up("alice")

        with pytest.raises(RequestValidationError):
            service.ledger.record_ad_watch("alice", 10, ChallengeCategory.VERIFIED_INVITES)

    def test_limit_plus_one_watches(self, make_service, clock):
        """Test that the watch after the daily limit changes nothing."""
        service = make_service(daily_ad_view_limit=3)
        service.accounts.sign_up(SignUpRequest(uid="alice", email="alice@example.com"))

        results = [service.ledger.record_ad_watch("alice", 10) for _ in range(3)]
        after_limit = service.accounts.get_account("alice")
        rejected = service.ledger.record_ad_watch("alice", 10)
        final = service.accounts.get_account("alice")

        assert all(r.status == AdWatchStatus.RECORDED for r in results)
        assert rejected.status == AdWatchStatus.DAILY_LIMIT_REACHED
        assert not rejected.recorded
        assert rejected.coins_awarded == 0
        assert rejected.watches_today == 3
        assert final.coins == after_limit.coins == 30
        assert final.daily_ad_stats["2026-03-14"].total_watches == 3
        assert final.challenges.ptc_ads.count == 3

    def test_limit_resets_next_day(self, make_service, clock):
        """Test that the cap is per calendar day."""
        service = make_service(daily_ad_view_limit=1)
        service.accounts.sign_up(SignUpRequest(uid="alice", email="alice@example.com"))

        service.ledger.record_ad_watch("alice", 10)
        assert service.ledger.record_ad_watch("alice", 10).status == AdWatchStatus.DAILY_LIMIT_REACHED

        clock.advance(days=1)
        result = service.ledger.record_ad_watch("alice", 10)

        account = service.accounts.get_account("alice")
        assert result.status == AdWatchStatus.RECORDED
        assert account.daily_ad_stats["2026-03-15"].total_watches == 1
        assert account.coins == 20

    def test_admin_limit_overrides_settings(self, service, sign_up):
        """Test that the limit is read from the admin document on each watch."""
        sign_up("alice")
        service.admin.update_daily_ad_view_limit(2)

        statuses = [service.ledger.record_ad_watch("alice", 10).status for _ in range(3)]

        assert statuses == [AdWatchStatus.RECORDED, AdWatchStatus.RECORDED, AdWatchStatus.DAILY_LIMIT_REACHED]

    def test_missing_account_is_created_on_watch(self, service):
        """Test that a watch for an account without a document does not fail."""
        result = service.ledger.record_ad_watch("newcomer", 10)

        account = service.ledger.get_account("newcomer")
        assert result.status == AdWatchStatus.RECORDED
        assert account.coins == 10
        assert account.email == ""

    def test_concurrent_watches_lose_no_updates(self, make_service):
        """Test that parallel watches for one user all land, up to the limit."""
        service = make_service(daily_ad_view_limit=40)
        service.storage.max_retries = 500
        service.accounts.sign_up(SignUpRequest(uid="alice", email="alice@example.com"))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: service.ledger.record_ad_watch("alice", 10), range(60)))

        recorded = sum(1 for r in results if r.recorded)
        account = service.accounts.get_account("alice")
        assert recorded == 40
        assert account.daily_ad_stats["2026-03-14"].total_watches == recorded
        assert account.coins == recorded * 10
        assert account.challenges.ptc_ads.count == recorded

    def test_watch_ad_uses_configured_ad_reward(self, service, sign_up):
        """Test that the per-ad reward comes from the admin ad settings."""
        sign_up("alice")
        service.admin.update_ad_link("ad7", "https://example.com/ad7", coins=25)

        configured = service.watch_ad("alice", "ad7")
        default = service.watch_ad("alice", "unknown-ad")

        assert configured.coins_awarded == 25
        assert default.coins_awarded == 10
        assert service.accounts.get_account("alice").coins == 35


class TestOneTimeReward:
    """Tests for one-time reward collection."""

    def test_collect_twice_credits_once(self, service, sign_up):
        """Test that a tier's reward can only be collected once."""
        sign_up("alice")

        first = service.ledger.collect_one_time_reward("alice", ChallengeCategory.PTC_ADS, "ptcAds-0-100", 100)
        second = service.ledger.collect_one_time_reward("alice", ChallengeCategory.PTC_ADS, "ptcAds-0-100", 100)

        account = service.accounts.get_account("alice")
        assert first is True
        assert second is False
        assert account.coins == 100
        assert account.challenges.ptc_ads.rewards_collected == {"ptcAds-0-100": True}

    def test_concurrent_collects_credit_once(self, service, sign_up):
        """Test that duplicate concurrent clicks still pay a single reward."""
        sign_up("alice")
        service.storage.max_retries = 100

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(
                pool.map(
                    lambda _: service.ledger.collect_one_time_reward(
                        "alice", ChallengeCategory.SURF_ADS, "surfAds-0-100", 100
                    ),
                    range(16),
                )
            )

        assert outcomes.count(True) == 1
        assert service.accounts.get_account("alice").coins == 100

    def test_collect_unknown_user_fails(self, service):
        """Test that collecting for a missing user is an error, not a silent False."""
        with pytest.raises(UserNotFoundError):
            service.ledger.collect_one_time_reward("ghost", ChallengeCategory.PTC_ADS, "ptcAds-0-100", 100)


class TestSocialTasks:
    """Tests for one-way social task rewards."""

    def test_whatsapp_join_rewards_once(self, service, sign_up):
        """Test that joining WhatsApp twice pays once."""
        sign_up("alice")

        assert service.ledger.complete_social_task("alice", SocialTask.WHATSAPP) is True
        assert service.ledger.complete_social_task("alice", SocialTask.WHATSAPP) is False

        account = service.accounts.get_account("alice")
        assert account.social_tasks.whatsapp_joined
        assert not account.social_tasks.youtube_subscribed
        assert account.coins == 20

    def test_both_tasks(self, service, sign_up):
        """Test that each task pays its own reward."""
        sign_up("alice")

        service.ledger.complete_social_task("alice", SocialTask.WHATSAPP)
        service.ledger.complete_social_task("alice", SocialTask.YOUTUBE)

        assert service.accounts.get_account("alice").coins == 40
