from decimal import ROUND_FLOOR, Decimal
from typing import Callable, Optional

import structlog

from .config import load_admin_config
from .errors import CommissionCascadeError, ReferralNotFoundError, UserNotFoundError
from .ledger import LedgerService, WithdrawalDebit, is_valid_id, user_path
from .models import Referral, ReferralEntry, ReferralStatus, UserAccount
from .store import StoreError

logger = structlog.get_logger(__name__)


def commission_for(amount_coins: int, percent: Decimal) -> int:
    commission = Decimal(amount_coins) * percent / 100
    return int(commission.to_integral_value(rounding=ROUND_FLOOR))


def _parse_referrals(data: Optional[dict]) -> list[Referral]:
    referrals = [Referral.model_validate(value) for value in (data or {}).values()]
    referrals.sort(key=lambda r: r.referred_at, reverse=True)
    return referrals


class ReferralService:
    def __init__(self, ledger: LedgerService):
        self.ledger = ledger
        self.storage = ledger.storage

    def link_referred_account(self, inviter_id: str, referred_id: str, email: str) -> bool:
        """Add a pending referral record under the inviter and count the invite.

        Returns False when the inviter does not exist or already lists the user.
        """
        if not is_valid_id(inviter_id):
            logger.warning("referral_inviter_not_found", inviter_id=inviter_id, referred_id=referred_id)
            return False

        referred_at = self.ledger.clock()

        def mutate(account: UserAccount) -> Optional[bool]:
            if referred_id in account.referrals:
                return False
            account.referrals[referred_id] = Referral(id=referred_id, email=email, referred_at=referred_at)
            account.total_invites += 1
            return None

        try:
            linked = self.ledger.transact_account(inviter_id, mutate) is not None
        except UserNotFoundError:
            logger.warning("referral_inviter_not_found", inviter_id=inviter_id, referred_id=referred_id)
            return False

        if linked:
            logger.info("referral_linked", inviter_id=inviter_id, referred_id=referred_id)
        return linked

    def on_withdrawal_approved(self, referred_id: str, debit: WithdrawalDebit, amount_coins: int) -> int:
        """Pay the inviter if this was the referred user's first approved withdrawal.

        Runs after the invitee debit has committed; a failure here leaves the
        debit in place and is reported for manual reconciliation.
        """
        if not debit.was_first_withdrawal or not debit.referred_by:
            return 0

        inviter_id = debit.referred_by
        config = load_admin_config(self.storage, self.ledger.settings)
        commission = commission_for(amount_coins, config.referral_commission_percent)
        try:
            self._credit_commission(inviter_id, referred_id, commission)
        except UserNotFoundError:
            logger.warning("referral_commission_inviter_missing", inviter_id=inviter_id, referred_id=referred_id)
            return 0
        except StoreError as exc:
            logger.error(
                "referral_commission_failed",
                inviter_id=inviter_id,
                referred_id=referred_id,
                withdrawn=amount_coins,
                commission=commission,
                exc_info=exc,
            )
            raise CommissionCascadeError(
                f"Withdrawal debited for {referred_id} but commission for {inviter_id} was not paid",
                inviter_id=inviter_id,
                referred_id=referred_id,
                commission=commission,
            ) from exc

        logger.info(
            "referral_commission_paid",
            inviter_id=inviter_id,
            referred_id=referred_id,
            withdrawn=amount_coins,
            commission=commission,
        )
        return commission

    def _credit_commission(self, inviter_id: str, referred_id: str, commission: int) -> None:
        def mutate(account: UserAccount) -> None:
            account.coins += commission
            referral = account.referrals.get(referred_id)
            if referral is not None:
                referral.first_withdrawal_approved = True

        self.ledger.transact_account(inviter_id, mutate)

    def verify_referral(self, inviter_id: str, referred_id: str) -> bool:
        return self._set_verified(inviter_id, referred_id, verified=True)

    def unverify_referral(self, inviter_id: str, referred_id: str) -> bool:
        return self._set_verified(inviter_id, referred_id, verified=False)

    def _set_verified(self, inviter_id: str, referred_id: str, verified: bool) -> bool:
        target = ReferralStatus.VERIFIED if verified else ReferralStatus.PENDING

        def mutate(account: UserAccount) -> Optional[bool]:
            referral = account.referrals.get(referred_id)
            if referral is None:
                raise ReferralNotFoundError(f"User {inviter_id} has no referral {referred_id}")
            if referral.status == target:
                return False

            referral.status = target
            if verified:
                count = account.verified_invites_count + 1
            else:
                count = max(0, account.verified_invites_count - 1)
            # both counters move together
            account.verified_invites_count = count
            account.challenges.verified_invites.count = count
            return None

        try:
            account = self.ledger.transact_account(inviter_id, mutate)
        except UserNotFoundError as exc:
            raise ReferralNotFoundError(f"Inviter {inviter_id} not found") from exc

        if account is None:
            return False
        logger.info(
            "referral_verification_changed",
            inviter_id=inviter_id,
            referred_id=referred_id,
            status=target.value,
            verified_invites=account.verified_invites_count,
        )
        return True

    def list_referrals(self, inviter_id: str) -> list[Referral]:
        return _parse_referrals(self.storage.get(f"{user_path(inviter_id)}/referrals"))

    def list_all_referrals(self) -> list[ReferralEntry]:
        users = self.storage.get("users") or {}
        return [
            ReferralEntry(inviter_id=inviter_id, referral=referral)
            for inviter_id, data in users.items()
            for referral in _parse_referrals(data.get("referrals"))
        ]

    def listen_to_referrals(
        self, inviter_id: str, callback: Callable[[list[Referral]], None]
    ) -> Callable[[], None]:
        return self.storage.subscribe(
            f"{user_path(inviter_id)}/referrals",
            lambda data: callback(_parse_referrals(data)),
        )
