from typing import Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .errors import (
    CommissionCascadeError,
    InvalidStateTransitionError,
    ReferralNotFoundError,
    RequestNotFoundError,
    RequestValidationError,
    RewardsServiceError,
    UnknownChallengeTierError,
    UserNotFoundError,
)
from .logging import configure_logging
from .models import (
    AdLinkUpdateRequest,
    AdWatchResult,
    ChallengeCategory,
    ChallengeCategoryProgress,
    CollectResult,
    CreateDepositRequest,
    CreateVideoPromotionRequest,
    CreateWithdrawalRequest,
    DailyLimitUpdateRequest,
    DepositRequest,
    Referral,
    ReferralEntry,
    RequestKind,
    SetCoinsRequest,
    SignUpRequest,
    SocialLinkUpdateRequest,
    SocialTask,
    StatusUpdateRequest,
    TransitionResponse,
    UserAccount,
    VideoPromotion,
    WithdrawRequest,
)
from .service import RewardsService
from .store import StoreError

settings = get_settings()
configure_logging(settings.log_level)

app = FastAPI(
    title="Coin Rewards API",
    description="Coin ledger, payout/deposit workflows, referrals and challenge rewards",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

rewards_service = RewardsService(settings=settings)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, (UserNotFoundError, RequestNotFoundError, ReferralNotFoundError, UnknownChallengeTierError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (InvalidStateTransitionError, RequestValidationError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, CommissionCascadeError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, StoreError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "coin-rewards"}


@app.post("/users", response_model=UserAccount, status_code=status.HTTP_201_CREATED, tags=["Users"])
def sign_up(request: SignUpRequest) -> UserAccount:
    try:
        return rewards_service.accounts.sign_up(request)
    except (RewardsServiceError, StoreError) as e:
        raise _http_error(e)


@app.get("/users/{user_id}", response_model=UserAccount, tags=["Users"])
def get_user(user_id: str) -> UserAccount:
    try:
        return rewards_service.accounts.get_account(user_id)
    except UserNotFoundError as e:
        raise _http_error(e)


@app.post("/users/{user_id}/ads/{ad_id}/watch", response_model=AdWatchResult, tags=["Earn"])
def watch_ad(user_id: str, ad_id: str, category: ChallengeCategory = ChallengeCategory.PTC_ADS) -> AdWatchResult:
    try:
        return rewards_service.watch_ad(user_id, ad_id, category)
    except (RewardsServiceError, StoreError) as e:
        raise _http_error(e)


@app.post("/users/{user_id}/social-tasks/{task}", tags=["Earn"])
def complete_social_task(user_id: str, task: SocialTask):
    try:
        completed = rewards_service.ledger.complete_social_task(user_id, task)
    except (RewardsServiceError, StoreError) as e:
        raise _http_error(e)
    return {"task": task.value, "completed": completed}


@app.get("/users/{user_id}/challenges", response_model=list[ChallengeCategoryProgress], tags=["Challenges"])
def get_challenges(user_id: str) -> list[ChallengeCategoryProgress]:
    try:
        return rewards_service.challenges.get_progress(user_id)
    except UserNotFoundError as e:
        raise _http_error(e)


@app.post(
    "/users/{user_id}/challenges/{category}/{tier_key}/collect",
    response_model=CollectResult,
    tags=["Challenges"],
)
def collect_challenge_reward(user_id: str, category: ChallengeCategory, tier_key: str) -> CollectResult:
    try:
        return rewards_service.challenges.collect(user_id, category, tier_key)
    except (RewardsServiceError, StoreError) as e:
        raise _http_error(e)


@app.get("/users/{user_id}/referrals", response_model=list[Referral], tags=["Referrals"])
def list_referrals(user_id: str) -> list[Referral]:
    return rewards_service.referrals.list_referrals(user_id)


@app.post("/withdrawals", response_model=WithdrawRequest, status_code=status.HTTP_201_CREATED, tags=["Requests"])
def submit_withdrawal(request: CreateWithdrawalRequest) -> WithdrawRequest:
    try:
        return rewards_service.workflow.submit_withdrawal(request)
    except (RewardsServiceError, StoreError) as e:
        raise _http_error(e)


@app.get("/withdrawals", response_model=list[WithdrawRequest], tags=["Requests"])
def list_withdrawals(user_id: Optional[str] = None) -> list[WithdrawRequest]:
    return rewards_service.workflow.list_requests(RequestKind.WITHDRAWAL, user_id)


@app.post("/deposits", response_model=DepositRequest, status_code=status.HTTP_201_CREATED, tags=["Requests"])
def submit_deposit(request: CreateDepositRequest) -> DepositRequest:
    try:
        return rewards_service.workflow.submit_deposit(request)
    except (RewardsServiceError, StoreError) as e:
        raise _http_error(e)


@app.get("/deposits", response_model=list[DepositRequest], tags=["Requests"])
def list_deposits(user_id: Optional[str] = None) -> list[DepositRequest]:
    return rewards_service.workflow.list_requests(RequestKind.DEPOSIT, user_id)


@app.post(
    "/video-promotions", response_model=VideoPromotion, status_code=status.HTTP_201_CREATED, tags=["Requests"]
)
def submit_video_promotion(request: CreateVideoPromotionRequest) -> VideoPromotion:
    try:
        return rewards_service.workflow.submit_video_promotion(request)
    except (RewardsServiceError, StoreError) as e:
        raise _http_error(e)


@app.get("/video-promotions", response_model=list[VideoPromotion], tags=["Requests"])
def list_video_promotions(user_id: Optional[str] = None) -> list[VideoPromotion]:
    return rewards_service.workflow.list_requests(RequestKind.VIDEO_PROMOTION, user_id)


@app.post("/admin/requests/{kind}/{request_id}/status", response_model=TransitionResponse, tags=["Admin"])
def update_request_status(kind: RequestKind, request_id: str, request: StatusUpdateRequest) -> TransitionResponse:
    try:
        return rewards_service.workflow.update_status(kind, request_id, request.status)
    except (RewardsServiceError, StoreError) as e:
        raise _http_error(e)


@app.get("/admin/referrals", response_model=list[ReferralEntry], tags=["Admin"])
def list_all_referrals() -> list[ReferralEntry]:
    return rewards_service.referrals.list_all_referrals()


@app.post("/admin/referrals/{inviter_id}/{referred_id}/verify", tags=["Admin"])
def verify_referral(inviter_id: str, referred_id: str):
    try:
        changed = rewards_service.referrals.verify_referral(inviter_id, referred_id)
    except (RewardsServiceError, StoreError) as e:
        raise _http_error(e)
    return {"inviterId": inviter_id, "referredId": referred_id, "changed": changed}


@app.post("/admin/referrals/{inviter_id}/{referred_id}/unverify", tags=["Admin"])
def unverify_referral(inviter_id: str, referred_id: str):
    try:
        changed = rewards_service.referrals.unverify_referral(inviter_id, referred_id)
    except (RewardsServiceError, StoreError) as e:
        raise _http_error(e)
    return {"inviterId": inviter_id, "referredId": referred_id, "changed": changed}


@app.get("/admin/users", response_model=list[UserAccount], tags=["Admin"])
def list_users() -> list[UserAccount]:
    return rewards_service.admin.list_users()


@app.put("/admin/users/{user_id}/coins", tags=["Admin"])
def set_user_coins(user_id: str, request: SetCoinsRequest):
    try:
        coins = rewards_service.admin.set_user_coins(user_id, request.coins)
    except (RewardsServiceError, StoreError) as e:
        raise _http_error(e)
    return {"userId": user_id, "coins": coins}


@app.put("/admin/ads/{ad_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Admin"])
def update_ad_link(ad_id: str, request: AdLinkUpdateRequest) -> None:
    try:
        rewards_service.admin.update_ad_link(ad_id, request.url, request.coins)
    except RequestValidationError as e:
        raise _http_error(e)


@app.put("/admin/social-task-links/{task}", status_code=status.HTTP_204_NO_CONTENT, tags=["Admin"])
def update_social_task_link(task: SocialTask, request: SocialLinkUpdateRequest) -> None:
    rewards_service.admin.update_social_task_link(task, request.url)


@app.put("/admin/daily-ad-view-limit", status_code=status.HTTP_204_NO_CONTENT, tags=["Admin"])
def update_daily_ad_view_limit(request: DailyLimitUpdateRequest) -> None:
    try:
        rewards_service.admin.update_daily_ad_view_limit(request.limit)
    except RequestValidationError as e:
        raise _http_error(e)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
