from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class BaseAPIException(HTTPException):
    """Base exception for API errors"""
    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}

        super().__init__(
            status_code=status_code,
            detail={
                "success": False,
                "error": {
                    "code": error_code,
                    "message": message,
                    "details": self.details
                }
            }
        )

    def __str__(self) -> str:  # Ensure str(e) returns the human message
        return self.message


class AuthenticationError(BaseAPIException):
    """Authentication related errors"""
    def __init__(self, message: str = "Authentication failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="AUTH_001",
            message=message,
            details=details
        )


class AuthorizationError(BaseAPIException):
    """Authorization related errors"""
    def __init__(self, message: str = "Access forbidden", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="AUTH_002",
            message=message,
            details=details
        )


class ValidationError(BaseAPIException):
    """Validation errors"""
    def __init__(self, message: str = "Validation failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_001",
            message=message,
            details=details
        )


class NotFoundError(BaseAPIException):
    """Resource not found errors"""
    def __init__(self, message: str = "Resource not found", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND_001",
            message=message,
            details=details
        )


class InvalidReviewStateError(BaseAPIException):
    """Review requested or retried from a state that does not allow it"""
    def __init__(self, current_status: str, message: Optional[str] = None, details: Optional[Dict] = None):
        self.current_status = current_status
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="REVIEW_STATE_001",
            message=message or f"Review cannot be started while status is '{current_status}'",
            details={"current_status": current_status, **(details or {})}
        )


class CreditExhaustedError(BaseAPIException):
    """No usable credit in the requested bucket"""
    def __init__(
        self,
        message: str = "No credits available",
        error_code: str = "CREDITS_EXHAUSTED",
        suggest_ad: bool = False,
        details: Optional[Dict] = None
    ):
        self.suggest_ad = suggest_ad
        super().__init__(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            error_code=error_code,
            message=message,
            details={"suggest_ad": suggest_ad, **(details or {})}
        )


class RewardedAdLimitError(BaseAPIException):
    """Daily rewarded-ad quota reached"""
    def __init__(self, message: str = "Daily rewarded ad limit reached", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error_code="AD_LIMIT_REACHED",
            message=message,
            details=details
        )


class ReviewQueueFullError(BaseAPIException):
    """Review worker pool is saturated"""
    def __init__(self, message: str = "Review service is busy, please try again shortly", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="REVIEW_QUEUE_FULL",
            message=message,
            details=details
        )


class InternalServerError(BaseAPIException):
    """Internal server errors"""
    def __init__(self, message: str = "Internal server error", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="INTERNAL_001",
            message=message,
            details=details
        )


class ServiceException(Exception):
    """Base exception for service layer errors"""
    pass


class InsufficientCreditError(ServiceException):
    """Conditional decrement matched no row"""
    def __init__(self, account_id: int, bucket: str, amount: int):
        self.account_id = account_id
        self.bucket = bucket
        self.amount = amount
        super().__init__(
            f"Insufficient {bucket} credits for account {account_id} (needed {amount})"
        )


class LedgerStateError(ServiceException):
    """Consume/refund without a matching outstanding authorization"""
    pass
