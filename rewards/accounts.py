from typing import Optional

import structlog

from .errors import RequestValidationError, UserNotFoundError
from .ledger import LedgerService, is_valid_id, user_path
from .models import SignUpRequest, UserAccount
from .referrals import ReferralService

logger = structlog.get_logger(__name__)


class AccountService:
    def __init__(self, ledger: LedgerService, referrals: ReferralService):
        self.ledger = ledger
        self.referrals = referrals
        self.storage = ledger.storage

    def sign_up(self, request: SignUpRequest) -> UserAccount:
        """Create the account document for a newly authenticated user.

        A referral code is the inviter's uid. Unknown codes and self-referrals
        are ignored; the account is created either way. Signing up again
        returns the stored account unchanged.
        """
        uid = request.uid.strip()
        if not is_valid_id(uid):
            raise RequestValidationError("uid is required and must not contain '/'")

        existing = self.ledger.get_account(uid)
        if existing is not None and existing.email:
            return existing

        referral_code = (request.referral_code or "").strip() or None
        if referral_code == uid:
            logger.warning("self_referral_ignored", uid=uid)
            referral_code = None
        elif referral_code and not is_valid_id(referral_code):
            logger.warning("malformed_referral_code_ignored", uid=uid, referral_code=referral_code)
            referral_code = None

        referred_by: Optional[str] = None
        if referral_code and self.referrals.link_referred_account(referral_code, uid, request.email):
            referred_by = referral_code

        def apply(current):
            if current is None:
                return UserAccount(uid=uid, email=request.email, referred_by=referred_by).to_document()
            if current.get("email"):
                return None
            # placeholder left by a self-healed ad watch: keep its balance
            account = UserAccount.model_validate(current)
            account.email = request.email
            if account.referred_by is None:
                account.referred_by = referred_by
            return account.to_document()

        result = self.storage.transaction(user_path(uid), apply)
        account = UserAccount.model_validate(result.value)
        if result.committed:
            logger.info("account_created", uid=uid, referred_by=account.referred_by)
        return account

    def get_account(self, user_id: str) -> UserAccount:
        account = self.ledger.get_account(user_id)
        if account is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return account
