"""
Auth exceptions.

Services raise these; the handler registered in app.main turns them into
HTTP responses using status_code and code. Nothing here is retried.
"""
from typing import Any, Optional


class AuthError(Exception):
    """Base for every error the account flows report to a client."""

    status_code = 500
    default_message = "Internal error"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, **self.details}


class ValidationError(AuthError):
    status_code = 400
    default_message = "Invalid request"


class InvalidOtpError(ValidationError):
    """Base for OTP verification failures; all surface as 400."""

    default_message = "Invalid OTP"


class OtpNotFoundError(InvalidOtpError):
    default_message = "OTP not found"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, code="OTP_NOT_FOUND")


class OtpExpiredError(InvalidOtpError):
    default_message = "OTP expired"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, code="OTP_EXPIRED")


class OtpMismatchError(InvalidOtpError):
    default_message = "Invalid OTP"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, code="OTP_MISMATCH")


class ConflictError(AuthError):
    status_code = 409
    default_message = "Conflict"


class AlreadyRegisteredError(ConflictError):
    default_message = "Email already registered"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, code="ALREADY_REGISTERED")


class AlreadyVerifiedError(ConflictError):
    default_message = "Email already verified"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, code="ALREADY_VERIFIED")


class NotFoundError(AuthError):
    status_code = 404
    default_message = "Not found"


class UserNotFoundError(NotFoundError):
    default_message = "User not found"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, code="USER_NOT_FOUND")


class UnauthorizedError(AuthError):
    status_code = 401
    default_message = "Not authenticated"


class InvalidCredentialsError(UnauthorizedError):
    default_message = "Invalid credentials"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, code="INVALID_CREDENTIALS")


class InvalidTokenError(UnauthorizedError):
    default_message = "Invalid or expired token"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, code="INVALID_TOKEN")


class ForbiddenError(AuthError):
    status_code = 403
    default_message = "Forbidden"


class EmailNotVerifiedError(ForbiddenError):
    default_message = "Email not verified"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, code="EMAIL_NOT_VERIFIED")


class ThrottledError(AuthError):
    """An unexpired code already exists for the same email and purpose."""

    status_code = 429
    default_message = "OTP already sent. Request a new OTP after 5 minutes."

    def __init__(self, retry_after_seconds: int, message: Optional[str] = None, *, ttl_minutes: Optional[int] = None):
        if message is None and ttl_minutes is not None:
            unit = "minute" if ttl_minutes == 1 else "minutes"
            message = f"OTP already sent. Request a new OTP after {ttl_minutes} {unit}."
        super().__init__(
            message,
            code="OTP_THROTTLED",
            details={"retryAfterSeconds": retry_after_seconds},
        )
        self.retry_after_seconds = retry_after_seconds


class DependencyFailureError(AuthError):
    status_code = 503
    default_message = "A required service is unavailable"


class SendFailedError(DependencyFailureError):
    default_message = "Failed to send OTP"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, code="SEND_FAILED")
