"""
Authentication Error Taxonomy

Every failure that leaves the security core is one of a closed set of
kinds. Callers (API layer, UI) switch on ``ErrorCode`` and render the
structured ``details`` payload directly:

- RATE_LIMIT_EXCEEDED  -> retryAfterSeconds, action
- ACCOUNT_LOCKED       -> unlockAt, minutesRemaining, attempts, maxAttempts
- INVALID_CREDENTIALS  -> attemptsLeft, maxAttempts, lockTriggered
- WEAK_PASSWORD        -> password assessment payload
- EMAIL_NOT_VERIFIED   -> (no details)
- INVALID_2FA_CODE     -> (no details)
- UNKNOWN_ERROR        -> opaque fallback

Store/driver exceptions never cross the core boundary; they are wrapped
as ``UnknownAuthError``.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Closed set of error kinds consumed by every caller."""
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    WEAK_PASSWORD = "WEAK_PASSWORD"
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
    INVALID_2FA_CODE = "INVALID_2FA_CODE"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class AuthError(Exception):
    """Base class for every error raised by the security core."""

    code = ErrorCode.UNKNOWN_ERROR
    default_message = "Something went wrong. Please try again or contact support."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def details(self) -> Dict[str, Any]:
        """Structured payload rendered by the caller."""
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code.value,
            'message': self.message,
            'details': self.details,
        }


class RateLimitExceededError(AuthError):
    """Too many requests of one action class inside the window."""

    code = ErrorCode.RATE_LIMIT_EXCEEDED
    default_message = "Too many requests. Please try again later."

    def __init__(self, retry_after_seconds: int, action: str = "default",
                 message: Optional[str] = None):
        self.retry_after_seconds = max(0, int(retry_after_seconds))
        self.action = action
        super().__init__(message)

    @property
    def details(self) -> Dict[str, Any]:
        return {
            'retryAfterSeconds': self.retry_after_seconds,
            'action': self.action,
        }


class AccountLockedError(AuthError):
    """Identity is locked after repeated credential failures."""

    code = ErrorCode.ACCOUNT_LOCKED
    default_message = "Account is temporarily locked."

    def __init__(self, unlock_at: float, minutes_remaining: int,
                 attempts: int, max_attempts: int,
                 message: Optional[str] = None):
        self.unlock_at = unlock_at
        self.minutes_remaining = minutes_remaining
        self.attempts = attempts
        self.max_attempts = max_attempts
        super().__init__(message)

    @property
    def details(self) -> Dict[str, Any]:
        return {
            'unlockAt': _iso(self.unlock_at),
            'minutesRemaining': self.minutes_remaining,
            'attempts': self.attempts,
            'maxAttempts': self.max_attempts,
        }


class InvalidCredentialsError(AuthError):
    """Credential check failed; carries the remaining attempt budget."""

    code = ErrorCode.INVALID_CREDENTIALS
    default_message = "Invalid email or password."

    def __init__(self, attempts_left: Optional[int] = None,
                 max_attempts: Optional[int] = None,
                 lock_triggered: bool = False,
                 message: Optional[str] = None):
        self.attempts_left = attempts_left
        self.max_attempts = max_attempts
        self.lock_triggered = lock_triggered
        super().__init__(message)

    @property
    def details(self) -> Dict[str, Any]:
        return {
            'attemptsLeft': self.attempts_left,
            'maxAttempts': self.max_attempts,
            'lockTriggered': self.lock_triggered,
        }


class WeakPasswordError(AuthError):
    """Candidate password rejected by the policy engine."""

    code = ErrorCode.WEAK_PASSWORD
    default_message = "Your password doesn't meet the security requirements."

    def __init__(self, assessment, message: Optional[str] = None):
        self.assessment = assessment
        super().__init__(message or assessment.message)

    @property
    def details(self) -> Dict[str, Any]:
        return self.assessment.to_dict()


class EmailNotVerifiedError(AuthError):
    code = ErrorCode.EMAIL_NOT_VERIFIED
    default_message = "Please verify your email before logging in."


class InvalidTwoFactorCodeError(AuthError):
    code = ErrorCode.INVALID_2FA_CODE
    default_message = "Invalid verification code."


class UnknownAuthError(AuthError):
    """
    Opaque fallback.

    ``fail_closed`` is True when the failed operation guarded access
    (lock check, rate limit) and the caller must deny the request.
    """

    code = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: Optional[str] = None, fail_closed: bool = True):
        self.fail_closed = fail_closed
        super().__init__(message)


class TwoFactorNotEnabledError(UnknownAuthError):
    """Operation needs an enabled 2FA credential and there is none."""

    default_message = "Two-factor authentication is not enabled."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, fail_closed=True)
