"""
AccountGuard - account-security core for the marketplace platform.

Attempt tracking and lockout, fixed-window rate limiting, TOTP
two-factor authentication with backup codes, password policy and a
closed authentication error taxonomy, all running against an abstract
record store.
"""

from .config import SecurityConfig, RateLimitRule
from .errors import (
    ErrorCode,
    AuthError,
    RateLimitExceededError,
    AccountLockedError,
    InvalidCredentialsError,
    WeakPasswordError,
    EmailNotVerifiedError,
    InvalidTwoFactorCodeError,
    UnknownAuthError,
    TwoFactorNotEnabledError,
)

__version__ = "1.0.0"

__all__ = [
    'SecurityConfig',
    'RateLimitRule',
    'ErrorCode',
    'AuthError',
    'RateLimitExceededError',
    'AccountLockedError',
    'InvalidCredentialsError',
    'WeakPasswordError',
    'EmailNotVerifiedError',
    'InvalidTwoFactorCodeError',
    'UnknownAuthError',
    'TwoFactorNotEnabledError',
]
