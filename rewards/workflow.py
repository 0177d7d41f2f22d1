from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Callable, Optional, Union

import structlog

from .config import load_admin_config
from .errors import (
    InsufficientBalanceError,
    InvalidStateTransitionError,
    RequestNotFoundError,
    RequestValidationError,
    UserNotFoundError,
)
from .ledger import LedgerService, user_path
from .models import (
    CreateDepositRequest,
    CreateVideoPromotionRequest,
    CreateWithdrawalRequest,
    DepositRequest,
    RequestKind,
    RequestStatus,
    TransitionResponse,
    UserAccount,
    VideoPromotion,
    WithdrawRequest,
)
from .referrals import ReferralService
from .store import StoreError

logger = structlog.get_logger(__name__)

AnyRequest = Union[WithdrawRequest, DepositRequest, VideoPromotion]

COLLECTIONS = {
    RequestKind.WITHDRAWAL: "withdrawRequests",
    RequestKind.DEPOSIT: "depositRequests",
    RequestKind.VIDEO_PROMOTION: "videoPromotions",
}

MODELS = {
    RequestKind.WITHDRAWAL: WithdrawRequest,
    RequestKind.DEPOSIT: DepositRequest,
    RequestKind.VIDEO_PROMOTION: VideoPromotion,
}

POSITIVE_STATUS = {
    RequestKind.WITHDRAWAL: RequestStatus.APPROVED,
    RequestKind.DEPOSIT: RequestStatus.APPROVED,
    RequestKind.VIDEO_PROMOTION: RequestStatus.ACCEPTED,
}

USD_PLACES = Decimal("0.00001")


def _require(value: Optional[str], field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise RequestValidationError(f"{field} is required")
    return value


class RequestWorkflow:
    """Withdrawal, deposit and video-promotion requests.

    Submitting a request never moves coins. The admin's terminal decision
    does, exactly once: the status changes by compare-and-swap from
    ``pending`` and only the caller that wins the swap applies the ledger
    effect.
    """

    def __init__(self, ledger: LedgerService, referrals: ReferralService):
        self.ledger = ledger
        self.referrals = referrals
        self.storage = ledger.storage

    def submit_withdrawal(self, request: CreateWithdrawalRequest) -> WithdrawRequest:
        user_id = _require(request.user_id, "user_id")
        method = _require(request.method, "method")
        account_details = _require(request.account_details, "account_details")
        if request.amount_coins <= 0:
            raise RequestValidationError("Withdrawal amount must be positive")

        account = self._account(user_id)
        if request.amount_coins > account.coins:
            raise InsufficientBalanceError(
                f"Requested {request.amount_coins} coins but balance is {account.coins}"
            )

        config = load_admin_config(self.storage, self.ledger.settings)
        amount_usd = (Decimal(request.amount_coins) * config.coin_to_usd_rate).quantize(
            USD_PLACES, rounding=ROUND_HALF_UP
        )

        collection = COLLECTIONS[RequestKind.WITHDRAWAL]
        request_id = self.storage.push(collection)
        withdrawal = WithdrawRequest(
            id=request_id,
            user_id=user_id,
            user_email=request.user_email,
            amount_coins=request.amount_coins,
            amount_usd=float(amount_usd),
            method=method,
            account_details=account_details,
            timestamp=self.ledger.clock(),
        )
        self.storage.set(f"{collection}/{request_id}", withdrawal.to_document())
        logger.info("withdrawal_submitted", request_id=request_id, user_id=user_id, amount=request.amount_coins)
        return withdrawal

    def submit_deposit(self, request: CreateDepositRequest) -> DepositRequest:
        user_id = _require(request.user_id, "user_id")
        transaction_id = _require(request.transaction_id, "transaction_id")
        if request.amount_deposited <= 0:
            raise RequestValidationError("Deposited amount must be positive")
        self._account(user_id)

        config = load_admin_config(self.storage, self.ledger.settings)
        coins = int((request.amount_deposited / config.coin_to_usd_rate).to_integral_value(rounding=ROUND_FLOOR))
        if coins <= 0:
            raise RequestValidationError("Deposit is too small to buy any coins")

        collection = COLLECTIONS[RequestKind.DEPOSIT]
        request_id = self.storage.push(collection)
        deposit = DepositRequest(
            id=request_id,
            user_id=user_id,
            user_email=request.user_email,
            transaction_id=transaction_id,
            amount_deposited=float(request.amount_deposited),
            coins_to_receive=coins,
            timestamp=self.ledger.clock(),
        )
        self.storage.set(f"{collection}/{request_id}", deposit.to_document())
        logger.info("deposit_submitted", request_id=request_id, user_id=user_id, coins=coins)
        return deposit

    def submit_video_promotion(self, request: CreateVideoPromotionRequest) -> VideoPromotion:
        user_id = _require(request.user_id, "user_id")
        video_link = _require(request.video_link, "video_link")
        self._account(user_id)

        config = load_admin_config(self.storage, self.ledger.settings)
        collection = COLLECTIONS[RequestKind.VIDEO_PROMOTION]
        promo_id = self.storage.push(collection)
        promotion = VideoPromotion(
            id=promo_id,
            user_id=user_id,
            user_email=request.user_email,
            video_link=video_link,
            coins=config.youtube_promotion_coins,
            timestamp=self.ledger.clock(),
        )
        document = promotion.to_document()
        self.storage.update(
            "",
            {
                f"{collection}/{promo_id}": document,
                f"{user_path(user_id)}/videoPromotions/{promo_id}": document,
            },
        )
        logger.info("video_promotion_submitted", request_id=promo_id, user_id=user_id)
        return promotion

    def update_withdrawal_status(self, request_id: str, status: RequestStatus) -> TransitionResponse:
        withdrawal = self._transition(RequestKind.WITHDRAWAL, request_id, status)
        if status == RequestStatus.REJECTED:
            return self._response(withdrawal, RequestKind.WITHDRAWAL, "Withdrawal rejected")

        try:
            debit = self.ledger.debit_for_withdrawal(withdrawal.user_id, withdrawal.amount_coins)
        except (UserNotFoundError, StoreError):
            logger.error(
                "withdrawal_debit_failed",
                request_id=request_id,
                user_id=withdrawal.user_id,
                amount=withdrawal.amount_coins,
            )
            self._reopen(RequestKind.WITHDRAWAL, request_id, status)
            raise

        commission = self.referrals.on_withdrawal_approved(withdrawal.user_id, debit, withdrawal.amount_coins)
        return self._response(
            withdrawal,
            RequestKind.WITHDRAWAL,
            "Withdrawal approved",
            coins_moved=withdrawal.amount_coins,
            commission_paid=commission,
        )

    def update_deposit_status(self, request_id: str, status: RequestStatus) -> TransitionResponse:
        deposit = self._transition(RequestKind.DEPOSIT, request_id, status)
        if status == RequestStatus.REJECTED:
            return self._response(deposit, RequestKind.DEPOSIT, "Deposit rejected")

        try:
            self.ledger.credit_coins(deposit.user_id, deposit.coins_to_receive)
        except (UserNotFoundError, StoreError):
            logger.error(
                "deposit_credit_failed",
                request_id=request_id,
                user_id=deposit.user_id,
                coins=deposit.coins_to_receive,
            )
            self._reopen(RequestKind.DEPOSIT, request_id, status)
            raise

        return self._response(
            deposit, RequestKind.DEPOSIT, "Deposit approved", coins_moved=deposit.coins_to_receive
        )

    def update_video_promotion_status(self, promo_id: str, status: RequestStatus) -> TransitionResponse:
        promotion = self._transition(RequestKind.VIDEO_PROMOTION, promo_id, status)
        accepted = status == RequestStatus.ACCEPTED

        # the user's copy follows the top-level record in one user-document write
        def mutate(account: UserAccount) -> None:
            account.video_promotions[promo_id] = promotion
            if accepted:
                account.coins += promotion.coins

        try:
            self.ledger.transact_account(promotion.user_id, mutate)
        except (UserNotFoundError, StoreError):
            logger.error(
                "video_promotion_credit_failed",
                request_id=promo_id,
                user_id=promotion.user_id,
                status=status.value,
                coins=promotion.coins if accepted else 0,
            )
            self._reopen(RequestKind.VIDEO_PROMOTION, promo_id, status)
            raise

        if accepted:
            return self._response(
                promotion,
                RequestKind.VIDEO_PROMOTION,
                "Video promotion accepted",
                coins_moved=promotion.coins,
            )
        return self._response(promotion, RequestKind.VIDEO_PROMOTION, "Video promotion rejected")

    def update_status(self, kind: RequestKind, request_id: str, status: RequestStatus) -> TransitionResponse:
        if kind == RequestKind.WITHDRAWAL:
            return self.update_withdrawal_status(request_id, status)
        if kind == RequestKind.DEPOSIT:
            return self.update_deposit_status(request_id, status)
        return self.update_video_promotion_status(request_id, status)

    def get_request(self, kind: RequestKind, request_id: str) -> AnyRequest:
        data = self.storage.get(f"{COLLECTIONS[kind]}/{request_id}")
        if data is None:
            raise RequestNotFoundError(f"{kind.value} {request_id} not found")
        return MODELS[kind].model_validate(data)

    def list_requests(self, kind: RequestKind, user_id: Optional[str] = None) -> list[AnyRequest]:
        return self._parse(kind, self.storage.get(COLLECTIONS[kind]), user_id)

    def listen(
        self,
        kind: RequestKind,
        callback: Callable[[list[AnyRequest]], None],
        user_id: Optional[str] = None,
    ) -> Callable[[], None]:
        """Subscribe to a request collection, newest first. Returns the unsubscribe function."""
        return self.storage.subscribe(
            COLLECTIONS[kind], lambda data: callback(self._parse(kind, data, user_id))
        )

    def _transition(self, kind: RequestKind, request_id: str, status: RequestStatus) -> AnyRequest:
        if status not in (POSITIVE_STATUS[kind], RequestStatus.REJECTED):
            raise RequestValidationError(f"{status.value} is not a valid outcome for a {kind.value} request")

        seen = {}

        def apply(current):
            if current is None:
                raise RequestNotFoundError(f"{kind.value} {request_id} not found")
            seen["status"] = current.get("status")
            if current.get("status") != RequestStatus.PENDING.value:
                return None
            current["status"] = status.value
            return current

        result = self.storage.transaction(f"{COLLECTIONS[kind]}/{request_id}", apply)
        if not result.committed:
            raise InvalidStateTransitionError(
                f"Cannot move {kind.value} {request_id} from {seen['status']} to {status.value}"
            )

        logger.info("request_transitioned", kind=kind.value, request_id=request_id, status=status.value)
        return MODELS[kind].model_validate(result.value)

    def _reopen(self, kind: RequestKind, request_id: str, status: RequestStatus) -> None:
        """Move a request back to pending after its ledger effect failed.

        Only a record still in ``status`` is reopened, so an admin can retry
        the decision and the effect runs again exactly once.
        """

        def apply(current):
            if current is None or current.get("status") != status.value:
                return None
            current["status"] = RequestStatus.PENDING.value
            return current

        try:
            result = self.storage.transaction(f"{COLLECTIONS[kind]}/{request_id}", apply)
        except StoreError:
            logger.exception("request_reopen_failed", kind=kind.value, request_id=request_id, status=status.value)
            return
        if result.committed:
            logger.warning("request_reopened", kind=kind.value, request_id=request_id, status=status.value)

    def _account(self, user_id: str) -> UserAccount:
        account = self.ledger.get_account(user_id)
        if account is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return account

    @staticmethod
    def _parse(kind: RequestKind, data: Optional[dict], user_id: Optional[str]) -> list[AnyRequest]:
        requests = [MODELS[kind].model_validate(value) for value in (data or {}).values()]
        if user_id is not None:
            requests = [r for r in requests if r.user_id == user_id]
        requests.sort(key=lambda r: r.timestamp, reverse=True)
        return requests

    @staticmethod
    def _response(record: AnyRequest, kind: RequestKind, message: str, **amounts: int) -> TransitionResponse:
        return TransitionResponse(
            kind=kind, request_id=record.id, status=record.status, message=message, **amounts
        )
