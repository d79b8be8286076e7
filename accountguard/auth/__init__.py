# Authentication Module
"""
Account-security components:
- Password policy and Argon2id hashing - password_policy.py, passwords.py
- Attempt ledger and lockout - lockout.py
- Fixed-window rate limiting - rate_limit.py
- TOTP (RFC 6238) and 2FA lifecycle - totp.py, two_factor.py
- Error classification - classifier.py
- End-to-end login flow - login.py
"""

from .password_policy import (
    PasswordPolicyEngine,
    PasswordAssessment,
    assess_password,
    strength_label,
    has_common_pattern,
    has_sequential_characters,
)

from .passwords import SecurePasswordHasher

from .lockout import (
    AttemptLedger,
    AttemptRecord,
    LockoutController,
    LockStatus,
    normalize_identity,
)

from .rate_limit import (
    RateLimiter,
    RateLimitBucket,
    RateLimitDecision,
)

from .totp import (
    TOTPGenerator,
    ProvisioningDisplay,
    totp,
    hotp,
    verify_totp,
    match_totp_step,
    generate_secret,
    secret_to_base32,
    base32_to_secret,
)

from .sealing import SecretSealer, SealingError

from .two_factor import (
    TwoFactorManager,
    TwoFactorCredential,
    SetupChallenge,
)

from .classifier import AuthErrorClassifier, ClassifiedError, classify

from .login import LoginManager, LoginResult

__all__ = [
    # Password policy
    'PasswordPolicyEngine',
    'PasswordAssessment',
    'assess_password',
    'strength_label',
    'has_common_pattern',
    'has_sequential_characters',
    'SecurePasswordHasher',
    # Lockout
    'AttemptLedger',
    'AttemptRecord',
    'LockoutController',
    'LockStatus',
    'normalize_identity',
    # Rate limiting
    'RateLimiter',
    'RateLimitBucket',
    'RateLimitDecision',
    # TOTP / 2FA
    'TOTPGenerator',
    'ProvisioningDisplay',
    'totp',
    'hotp',
    'verify_totp',
    'match_totp_step',
    'generate_secret',
    'secret_to_base32',
    'base32_to_secret',
    'SecretSealer',
    'SealingError',
    'TwoFactorManager',
    'TwoFactorCredential',
    'SetupChallenge',
    # Errors
    'AuthErrorClassifier',
    'ClassifiedError',
    'classify',
    # Login
    'LoginManager',
    'LoginResult',
]
