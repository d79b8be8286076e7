"""
AccountGuard configuration.

Defaults mirror the marketplace's production policy. Every value can be
overridden from the environment (``ACCOUNTGUARD_*``) or by passing
keyword arguments to the individual components.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional


# Lockout policy
MAX_LOGIN_ATTEMPTS = 5
LOCKOUT_DURATION_SECONDS = 30 * 60

# Rate limits: action class -> (max requests, window seconds)
ACTION_LOGIN = "login"
ACTION_REGISTER = "register"
ACTION_RESET_PASSWORD = "reset-password"
ACTION_EMAIL_VERIFICATION = "email-verification"
ACTION_DEFAULT = "default"

DEFAULT_RATE_LIMITS = {
    ACTION_LOGIN: (10, 15 * 60),
    ACTION_REGISTER: (5, 60 * 60),
    ACTION_RESET_PASSWORD: (3, 60 * 60),
    ACTION_EMAIL_VERIFICATION: (5, 60 * 60),
    ACTION_DEFAULT: (100, 15 * 60),
}

# Looser ceilings so developers can exercise the flows by hand
DEVELOPMENT_RATE_LIMITS = {
    ACTION_LOGIN: (50, 15 * 60),
    ACTION_REGISTER: (20, 5 * 60),
}

# Two-factor authentication
TOTP_ISSUER = "AccountGuard"
BACKUP_CODE_COUNT = 10
PENDING_SETUP_TTL_SECONDS = 10 * 60


@dataclass(frozen=True)
class RateLimitRule:
    """Ceiling and window length for one action class."""
    max_requests: int
    window_seconds: int


def _default_rules() -> Dict[str, RateLimitRule]:
    return {action: RateLimitRule(*limits) for action, limits in DEFAULT_RATE_LIMITS.items()}


@dataclass
class SecurityConfig:
    """Configuration shared by all security components."""
    max_attempts: int = MAX_LOGIN_ATTEMPTS
    lockout_duration_seconds: int = LOCKOUT_DURATION_SECONDS
    rate_limits: Dict[str, RateLimitRule] = field(default_factory=_default_rules)
    totp_issuer: str = TOTP_ISSUER
    backup_code_count: int = BACKUP_CODE_COUNT
    pending_setup_ttl_seconds: int = PENDING_SETUP_TTL_SECONDS
    # 32-byte AES key for sealing TOTP secrets; generated per process if None
    secret_key: Optional[bytes] = None
    environment: str = "production"

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.lockout_duration_seconds <= 0:
            raise ValueError("lockout_duration_seconds must be positive")
        if ACTION_DEFAULT not in self.rate_limits:
            raise ValueError("rate_limits must define the 'default' action class")
        if self.secret_key is not None and len(self.secret_key) != 32:
            raise ValueError("secret_key must be 32 bytes (AES-256)")

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    def rule_for(self, action: str) -> RateLimitRule:
        return self.rate_limits.get(action, self.rate_limits[ACTION_DEFAULT])

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> 'SecurityConfig':
        """
        Build a config from environment variables.

        Recognized variables:
            ACCOUNTGUARD_ENV                  production | development
            ACCOUNTGUARD_MAX_ATTEMPTS         failed logins before lockout
            ACCOUNTGUARD_LOCKOUT_MINUTES      lockout duration
            ACCOUNTGUARD_RATE_<ACTION>        "<max>/<window seconds>",
                                              e.g. ACCOUNTGUARD_RATE_LOGIN=10/900
            ACCOUNTGUARD_TOTP_ISSUER          name shown in authenticator apps
            ACCOUNTGUARD_SECRET_KEY           hex-encoded 32-byte sealing key
        """
        env = os.environ if environ is None else environ

        environment = env.get("ACCOUNTGUARD_ENV", "production")
        rules = _default_rules()
        if environment.lower() == "development":
            for action, limits in DEVELOPMENT_RATE_LIMITS.items():
                rules[action] = RateLimitRule(*limits)

        for action in DEFAULT_RATE_LIMITS:
            var = "ACCOUNTGUARD_RATE_" + action.upper().replace("-", "_")
            if var in env:
                rules[action] = _parse_rule(var, env[var])

        secret_hex = env.get("ACCOUNTGUARD_SECRET_KEY")

        return cls(
            max_attempts=int(env.get("ACCOUNTGUARD_MAX_ATTEMPTS", MAX_LOGIN_ATTEMPTS)),
            lockout_duration_seconds=int(
                env.get("ACCOUNTGUARD_LOCKOUT_MINUTES", LOCKOUT_DURATION_SECONDS // 60)
            ) * 60,
            rate_limits=rules,
            totp_issuer=env.get("ACCOUNTGUARD_TOTP_ISSUER", TOTP_ISSUER),
            secret_key=bytes.fromhex(secret_hex) if secret_hex else None,
            environment=environment,
        )


def _parse_rule(name: str, raw: str) -> RateLimitRule:
    try:
        max_requests, window = raw.split("/", 1)
        return RateLimitRule(int(max_requests), int(window))
    except ValueError:
        raise ValueError(f"{name} must look like '<max>/<window seconds>', got {raw!r}")
