"""
ResumeCustomizer Pro - Authentication Errors

Every expected failure of the auth flows is an AuthError subclass carrying
its HTTP status, a machine-readable code and optional extra fields.
The app registers one handler that renders them as:

    {"success": false, "message": ..., "code": ..., **extra}

Wording is fixed per category so responses never reveal which internal
check failed (unknown user vs. wrong password, reset vs. verification
token stage).
"""

from typing import Any, Dict, Optional


class AuthError(Exception):
    """Base class for structured auth failures."""

    status_code: int = 400
    code: str = "AUTH_ERROR"
    default_message: str = "Authentication error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.default_message
        if code:
            self.code = code
        self.extra = extra or {}
        self.headers = headers or {}
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        body = {"success": False, "message": self.message, "code": self.code}
        body.update(self.extra)
        return body


class InvalidCredentialsError(AuthError):
    status_code = 401
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid credentials"


class AccountLockedError(AuthError):
    status_code = 403
    code = "ACCOUNT_LOCKED"
    default_message = "Account temporarily locked due to too many failed login attempts. Please try again later."


class EmailNotVerifiedError(AuthError):
    status_code = 403
    code = "EMAIL_NOT_VERIFIED"
    default_message = "Please verify your email address before logging in"


class ApprovalRequiredError(AuthError):
    """Raised with code PENDING_APPROVAL, ACCOUNT_REJECTED or PENDING_VERIFICATION."""
    status_code = 403
    code = "PENDING_APPROVAL"
    default_message = "Your account is pending approval"


class TokenRejectedError(AuthError):
    """Expired, unknown or already-used token (2FA, reset, verification, refresh)."""
    status_code = 400
    code = "INVALID_TOKEN"
    default_message = "Invalid or expired token"


class RateLimitedError(AuthError):
    status_code = 429
    code = "RATE_LIMITED"
    default_message = "Too many attempts, please try again later"

    def __init__(self, retry_after: int, message: Optional[str] = None):
        self.retry_after = max(int(retry_after), 1)
        super().__init__(
            message,
            extra={"retryAfter": self.retry_after},
            headers={"Retry-After": str(self.retry_after)},
        )


class NotAuthenticatedError(AuthError):
    status_code = 401
    code = "NOT_AUTHENTICATED"
    default_message = "Not authenticated"


class PermissionDeniedError(AuthError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Insufficient permissions"


class CsrfError(AuthError):
    status_code = 403
    code = "CSRF_INVALID"
    default_message = "Invalid CSRF token"


class NotFoundError(AuthError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Not found"


class ConflictError(AuthError):
    status_code = 409
    code = "CONFLICT"
    default_message = "Registration failed. Please try again with different details."


class ValidationFailedError(AuthError):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"
