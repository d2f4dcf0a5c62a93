class PointsServiceError(Exception):
    status_code = 400


class ValidationError(PointsServiceError):
    pass


class NotFoundError(PointsServiceError):
    status_code = 404


class NoReferralError(NotFoundError):
    status_code = 400

    def __init__(self, message: str = "No referral found"):
        super().__init__(message)


class AlreadyCompletedError(PointsServiceError):
    status_code = 409


class InvalidStateTransitionError(PointsServiceError):
    pass


class KycRequiredError(PointsServiceError):
    pass


class OtpError(PointsServiceError):
    pass


class RateLimitError(PointsServiceError):
    status_code = 429


class PaymentVerificationError(PointsServiceError):
    pass


class InsufficientBalanceError(PointsServiceError):
    pass


class AuthenticationError(PointsServiceError):
    status_code = 401


class PermissionDeniedError(PointsServiceError):
    status_code = 403
