"""
Auth Error Classifier

Maps anything raised inside (or escaping from) the security core onto the
closed ErrorCode taxonomy, with a user-facing message, a recovery
suggestion and the structured details the UI renders (countdowns,
attempts-remaining banners, requirement checklists).

Unrecognized exceptions become UNKNOWN_ERROR with a generic message; their
text, store keys and internal counters are never exposed.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..errors import (
    AccountLockedError,
    AuthError,
    ErrorCode,
    InvalidCredentialsError,
    RateLimitExceededError,
    UnknownAuthError,
    WeakPasswordError,
)


logger = logging.getLogger(__name__)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


_RATE_LIMIT_MESSAGES = {
    'login': "Too many login attempts. Please wait {} and try again.",
    'register': "Too many registration attempts. Please wait {}.",
    'reset-password': "Too many password reset requests. Please wait {}.",
    'email-verification': "Too many verification email requests. Please wait {}.",
    'default': "Too many requests. Please wait {}.",
}

GENERIC_MESSAGE = "Something went wrong. Please try again or contact support."

SUGGESTIONS = {
    ErrorCode.RATE_LIMIT_EXCEEDED: "Please wait {} and try again.",
    ErrorCode.WEAK_PASSWORD: "Try using a mix of uppercase, lowercase, numbers, and special characters.",
    ErrorCode.ACCOUNT_LOCKED: "Contact support if you need immediate access.",
    ErrorCode.INVALID_CREDENTIALS: 'Double-check your email and password, or use "Forgot Password" to reset.',
    ErrorCode.EMAIL_NOT_VERIFIED: "Check your email for the verification link, or request a new one.",
    ErrorCode.INVALID_2FA_CODE: "Enter the current code from your authenticator app, or use a backup code.",
    ErrorCode.UNKNOWN_ERROR: "Please try again later or contact support if the problem persists.",
}

HTTP_STATUS = {
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.ACCOUNT_LOCKED: 423,
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.WEAK_PASSWORD: 400,
    ErrorCode.EMAIL_NOT_VERIFIED: 403,
    ErrorCode.INVALID_2FA_CODE: 401,
    ErrorCode.UNKNOWN_ERROR: 500,
}


def minutes_from_seconds(seconds: int) -> int:
    return max(1, math.ceil(seconds / 60)) if seconds > 0 else 0


@dataclass(frozen=True)
class ClassifiedError:
    """Uniform error shape handed to the API/UI layer."""
    code: ErrorCode
    message: str
    suggestion: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.code]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code.value,
            'message': self.message,
            'suggestion': self.suggestion,
            'details': self.details,
        }


class AuthErrorClassifier:
    """
    Example:
        >>> classified = AuthErrorClassifier().classify(RateLimitExceededError(120, "login"))
        >>> classified.code, classified.message
        (<ErrorCode.RATE_LIMIT_EXCEEDED: 'RATE_LIMIT_EXCEEDED'>, 'Too many login attempts. Please wait 2 minutes and try again.')
    """

    def classify(self, error: BaseException) -> ClassifiedError:
        if not isinstance(error, AuthError):
            logger.error("Unclassified error reached the auth boundary: %s",
                         type(error).__name__)
            return self._unknown()

        if isinstance(error, RateLimitExceededError):
            return self._rate_limit(error)
        if isinstance(error, AccountLockedError):
            return self._locked(error)
        if isinstance(error, InvalidCredentialsError):
            return self._invalid_credentials(error)
        if isinstance(error, WeakPasswordError):
            return ClassifiedError(
                code=ErrorCode.WEAK_PASSWORD,
                message=error.message,
                suggestion=SUGGESTIONS[ErrorCode.WEAK_PASSWORD],
                details=error.details,
            )
        if isinstance(error, UnknownAuthError):
            return self._unknown(error.message)

        return ClassifiedError(
            code=error.code,
            message=error.message,
            suggestion=SUGGESTIONS[error.code],
            details=error.details,
        )

    def _unknown(self, message: Optional[str] = None) -> ClassifiedError:
        return ClassifiedError(
            code=ErrorCode.UNKNOWN_ERROR,
            message=message or GENERIC_MESSAGE,
            suggestion=SUGGESTIONS[ErrorCode.UNKNOWN_ERROR],
        )

    def _rate_limit(self, error: RateLimitExceededError) -> ClassifiedError:
        minutes = minutes_from_seconds(error.retry_after_seconds)
        wait = _plural(minutes, "minute")
        template = _RATE_LIMIT_MESSAGES.get(error.action, _RATE_LIMIT_MESSAGES['default'])
        details = dict(error.details, minutesRemaining=minutes)
        return ClassifiedError(
            code=ErrorCode.RATE_LIMIT_EXCEEDED,
            message=template.format(wait),
            suggestion=SUGGESTIONS[ErrorCode.RATE_LIMIT_EXCEEDED].format(wait),
            details=details,
        )

    def _locked(self, error: AccountLockedError) -> ClassifiedError:
        message = (
            "Your account is temporarily locked due to multiple failed login attempts. "
            f"Please try again in {_plural(error.minutes_remaining, 'minute')}."
        )
        return ClassifiedError(
            code=ErrorCode.ACCOUNT_LOCKED,
            message=message,
            suggestion=SUGGESTIONS[ErrorCode.ACCOUNT_LOCKED],
            details=error.details,
        )

    def _invalid_credentials(self, error: InvalidCredentialsError) -> ClassifiedError:
        if error.lock_triggered:
            message = ("Invalid email or password. Your account has been temporarily "
                       "locked due to multiple failed login attempts.")
        elif error.attempts_left:
            message = (f"Invalid email or password. "
                       f"{_plural(error.attempts_left, 'attempt')} remaining.")
        else:
            message = error.message
        return ClassifiedError(
            code=ErrorCode.INVALID_CREDENTIALS,
            message=message,
            suggestion=SUGGESTIONS[ErrorCode.INVALID_CREDENTIALS],
            details=error.details,
        )


_default_classifier = AuthErrorClassifier()


def classify(error: BaseException) -> ClassifiedError:
    """Convenience wrapper around a module-level classifier."""
    return _default_classifier.classify(error)
