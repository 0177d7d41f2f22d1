class RewardsServiceError(Exception):
    pass


class RequestValidationError(RewardsServiceError):
    pass


class InsufficientBalanceError(RequestValidationError):
    pass


class UserNotFoundError(RewardsServiceError):
    pass


class RequestNotFoundError(RewardsServiceError):
    pass


class ReferralNotFoundError(RewardsServiceError):
    pass


class UnknownChallengeTierError(RewardsServiceError):
    pass


class InvalidStateTransitionError(RewardsServiceError):
    pass


class CommissionCascadeError(RewardsServiceError):
    """The invitee debit committed but the inviter commission did not."""

    def __init__(self, message: str, inviter_id: str, referred_id: str, commission: int):
        super().__init__(message)
        self.inviter_id = inviter_id
        self.referred_id = referred_id
        self.commission = commission
