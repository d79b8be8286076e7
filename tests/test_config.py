"""
Unit tests for SecurityConfig.
"""

import pytest

from accountguard.config import (
    ACTION_LOGIN,
    ACTION_REGISTER,
    ACTION_RESET_PASSWORD,
    RateLimitRule,
    SecurityConfig,
)


class TestDefaults:
    """Production defaults."""

    def test_lockout_defaults(self):
        """5 attempts and a 30 minute lock."""
        config = SecurityConfig()
        assert config.max_attempts == 5
        assert config.lockout_duration_seconds == 1800

    def test_rate_limit_defaults(self):
        config = SecurityConfig()
        assert config.rule_for(ACTION_LOGIN) == RateLimitRule(10, 900)
        assert config.rule_for(ACTION_REGISTER) == RateLimitRule(5, 3600)
        assert config.rule_for(ACTION_RESET_PASSWORD) == RateLimitRule(3, 3600)

    def test_unknown_action_uses_default(self):
        """Unlisted action classes should fall back to the default rule."""
        assert SecurityConfig().rule_for("checkout") == RateLimitRule(100, 900)


class TestValidation:
    """Invalid values are rejected at construction."""

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValueError):
            SecurityConfig(max_attempts=0)

    def test_missing_default_rule_rejected(self):
        with pytest.raises(ValueError):
            SecurityConfig(rate_limits={ACTION_LOGIN: RateLimitRule(1, 1)})

    def test_short_secret_key_rejected(self):
        with pytest.raises(ValueError):
            SecurityConfig(secret_key=b"too short")


class TestFromEnv:
    """Environment overrides."""

    def test_empty_environment(self):
        """No variables should give the production defaults."""
        config = SecurityConfig.from_env({})
        assert config.environment == "production"
        assert not config.is_development
        assert config.rule_for(ACTION_LOGIN) == RateLimitRule(10, 900)
        assert config.secret_key is None

    def test_development_limits(self):
        """Development mode should loosen login and register ceilings."""
        config = SecurityConfig.from_env({"ACCOUNTGUARD_ENV": "development"})
        assert config.is_development
        assert config.rule_for(ACTION_LOGIN) == RateLimitRule(50, 900)
        assert config.rule_for(ACTION_REGISTER) == RateLimitRule(20, 300)
        assert config.rule_for(ACTION_RESET_PASSWORD) == RateLimitRule(3, 3600)

    def test_explicit_rate_override(self):
        config = SecurityConfig.from_env({
            "ACCOUNTGUARD_RATE_LOGIN": "3/60",
            "ACCOUNTGUARD_RATE_RESET_PASSWORD": "1/120",
        })
        assert config.rule_for(ACTION_LOGIN) == RateLimitRule(3, 60)
        assert config.rule_for(ACTION_RESET_PASSWORD) == RateLimitRule(1, 120)

    def test_malformed_rate_rejected(self):
        with pytest.raises(ValueError):
            SecurityConfig.from_env({"ACCOUNTGUARD_RATE_LOGIN": "lots"})

    def test_lockout_overrides(self):
        config = SecurityConfig.from_env({
            "ACCOUNTGUARD_MAX_ATTEMPTS": "3",
            "ACCOUNTGUARD_LOCKOUT_MINUTES": "10",
            "ACCOUNTGUARD_TOTP_ISSUER": "Marketplace",
        })
        assert config.max_attempts == 3
        assert config.lockout_duration_seconds == 600
        assert config.totp_issuer == "Marketplace"

    def test_secret_key_from_hex(self):
        config = SecurityConfig.from_env({"ACCOUNTGUARD_SECRET_KEY": "ab" * 32})
        assert config.secret_key == bytes([0xab]) * 32
