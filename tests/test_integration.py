"""
Integration tests: the login flow end to end.

Tests:
- Rate limit -> lockout -> credentials -> email -> 2FA ordering
- Lockout scenario (5 failures, locked even with the right password)
- Second factor with TOTP and backup codes
- Fail-closed behaviour when the store is down
"""

from unittest.mock import Mock

import pytest

from accountguard.auth.login import LoginManager
from accountguard.auth.totp import TOTPGenerator, base32_to_secret
from accountguard.config import RateLimitRule, SecurityConfig
from accountguard.errors import ErrorCode
from accountguard.integration.event_logger import EventLogger, EventType


EMAIL = "alice@example.com"
USER_ID = "user-1"
PASSWORD = "Tr0ub4dor&Horse"


class UserDirectory:
    """Stand-in for the account service: email -> (user id, Argon2 hash)."""

    def __init__(self, hasher):
        self._hasher = hasher
        self._users = {}
        self.verified = set()

    def add(self, email, user_id, password, verified=True):
        self._users[email] = (user_id, self._hasher.hash_password(password))
        if verified:
            self.verified.add(user_id)

    def check(self, identity, password):
        entry = self._users.get(identity)
        if entry is None:
            return None
        user_id, stored = entry
        return user_id if self._hasher.verify_password(password, stored) else None

    def hash_for(self, user_id):
        for uid, stored in self._users.values():
            if uid == user_id:
                return stored
        return None

    def is_verified(self, user_id):
        return user_id in self.verified


@pytest.fixture
def users(fast_hasher):
    directory = UserDirectory(fast_hasher)
    directory.add(EMAIL, USER_ID, PASSWORD)
    return directory


@pytest.fixture
def events(clock):
    return EventLogger(clock=clock)


def build_manager(store, clock, users, events, config=None, verifier=None):
    return LoginManager.from_config(
        config or SecurityConfig(secret_key=b"s" * 32),
        store,
        credential_verifier=verifier or users.check,
        email_verified=users.is_verified,
        password_hash_lookup=users.hash_for,
        clock=clock,
        event_logger=events,
    )


@pytest.fixture
def manager(store, clock, users, events):
    return build_manager(store, clock, users, events)


def enable_2fa(manager, clock):
    challenge = manager.two_factor.begin_setup(USER_ID, EMAIL)
    generator = TOTPGenerator(base32_to_secret(challenge.secret))
    codes = manager.two_factor.confirm_setup(USER_ID, challenge.secret, generator.generate(clock.now))
    return generator, codes


class TestPasswordLogin:

    def test_success(self, manager, events):
        result = manager.login(EMAIL, PASSWORD)
        assert result.success
        assert result.user_id == USER_ID
        assert result.method == "password"
        assert result.error is None
        assert events.count(EventType.LOGIN_SUCCESS) == 1

    def test_identity_normalized(self, manager):
        assert manager.login("  Alice@Example.com", PASSWORD).success

    def test_wrong_password(self, manager):
        result = manager.login(EMAIL, "Wr0ng&Horse")
        assert not result.success
        assert result.error.code == ErrorCode.INVALID_CREDENTIALS
        assert result.error.details["attemptsLeft"] == 4
        assert result.error.message == "Invalid email or password. 4 attempts remaining."

    def test_unknown_identity_looks_like_wrong_password(self, manager):
        known = manager.login(EMAIL, "Wr0ng&Horse").error
        unknown = manager.login("mallory@example.com", "Wr0ng&Horse").error
        assert known.code == unknown.code
        assert known.message == unknown.message

    def test_empty_password(self, manager):
        assert manager.login(EMAIL, "").error.code == ErrorCode.INVALID_CREDENTIALS

    def test_blank_identity(self, manager):
        """A blank identity is rejected without touching any counters."""
        result = manager.login("   ", PASSWORD)
        assert result.error.code == ErrorCode.INVALID_CREDENTIALS
        assert result.error.message == "Invalid email or password."

    def test_success_resets_failures(self, manager):
        for _ in range(3):
            manager.login(EMAIL, "Wr0ng&Horse")
        assert manager.login(EMAIL, PASSWORD).success
        assert manager.lockout.check_lock(EMAIL).attempts == 0

    def test_email_not_verified(self, store, clock, users, events):
        users.add("bob@example.com", "user-2", "Zq7!mRw2kL", verified=False)
        manager = build_manager(store, clock, users, events)
        result = manager.login("bob@example.com", "Zq7!mRw2kL")
        assert result.error.code == ErrorCode.EMAIL_NOT_VERIFIED
        assert manager.lockout.check_lock("bob@example.com").attempts == 0

    def test_to_dict(self, manager):
        payload = manager.login(EMAIL, PASSWORD).to_dict()
        assert payload == {"success": True, "userId": USER_ID, "method": "password"}


class TestLockoutFlow:
    """Five failures lock the identity for 30 minutes."""

    def test_fifth_failure_reports_lock(self, manager, events):
        for _ in range(4):
            manager.login(EMAIL, "Wr0ng&Horse")
        result = manager.login(EMAIL, "Wr0ng&Horse")
        assert result.error.code == ErrorCode.INVALID_CREDENTIALS
        assert result.error.details["lockTriggered"] is True
        assert "temporarily locked" in result.error.message
        assert events.count(EventType.ACCOUNT_LOCKED) == 1

    def test_correct_password_refused_while_locked(self, store, clock, users, events):
        """The lock check runs before the credential check."""
        verifier = Mock(side_effect=users.check)
        manager = build_manager(store, clock, users, events, verifier=verifier)
        for _ in range(5):
            manager.login(EMAIL, "Wr0ng&Horse")
        verifier.reset_mock()

        result = manager.login(EMAIL, PASSWORD)
        assert result.error.code == ErrorCode.ACCOUNT_LOCKED
        assert result.error.details["minutesRemaining"] == 30
        verifier.assert_not_called()

    def test_login_after_lock_expires(self, manager, clock):
        for _ in range(5):
            manager.login(EMAIL, "Wr0ng&Horse")
        clock.advance(30 * 60)
        assert manager.login(EMAIL, PASSWORD).success

    def test_admin_unlock(self, manager):
        for _ in range(5):
            manager.login(EMAIL, "Wr0ng&Horse")
        manager.lockout.unlock(EMAIL)
        assert manager.login(EMAIL, PASSWORD).success


class TestRateLimitFlow:

    def test_rate_limit_before_everything(self, store, clock, users, events):
        """Once the ceiling is hit even valid credentials are refused."""
        rules = dict(SecurityConfig().rate_limits)
        rules["login"] = RateLimitRule(3, 900)
        config = SecurityConfig(rate_limits=rules, secret_key=b"s" * 32)
        manager = build_manager(store, clock, users, events, config=config)

        for _ in range(3):
            assert manager.login(EMAIL, PASSWORD).success
        result = manager.login(EMAIL, PASSWORD)
        assert result.error.code == ErrorCode.RATE_LIMIT_EXCEEDED
        assert result.error.details["action"] == "login"
        assert result.error.http_status == 429

    def test_rate_limit_is_separate_from_lockout(self, manager):
        """Successful logins consume quota without touching the attempt record."""
        for _ in range(10):
            manager.login(EMAIL, PASSWORD)
        assert manager.login(EMAIL, PASSWORD).error.code == ErrorCode.RATE_LIMIT_EXCEEDED
        assert manager.lockout.check_lock(EMAIL).attempts == 0


class TestTwoFactorFlow:

    def test_requires_second_factor(self, manager, clock):
        enable_2fa(manager, clock)
        result = manager.login(EMAIL, PASSWORD)
        assert not result.success
        assert result.requires_two_factor
        assert result.error is None
        assert result.to_dict()["requires2FA"] is True

    def test_totp_login(self, manager, clock):
        generator, _ = enable_2fa(manager, clock)
        clock.advance(30)
        result = manager.login(EMAIL, PASSWORD, totp_code=generator.generate(clock.now))
        assert result.success
        assert result.method == "totp"

    def test_replayed_totp_counts_as_failure(self, manager, clock):
        generator, _ = enable_2fa(manager, clock)
        clock.advance(30)
        code = generator.generate(clock.now)
        assert manager.login(EMAIL, PASSWORD, totp_code=code).success
        result = manager.login(EMAIL, PASSWORD, totp_code=code)
        assert result.error.code == ErrorCode.INVALID_2FA_CODE
        assert manager.lockout.check_lock(EMAIL).attempts == 1

    def test_backup_code_login(self, manager, clock):
        _, codes = enable_2fa(manager, clock)
        result = manager.login(EMAIL, PASSWORD, backup_code=codes[0])
        assert result.success
        assert result.method == "backup"
        assert result.remaining_backup_codes == 9
        again = manager.login(EMAIL, PASSWORD, backup_code=codes[0])
        assert again.error.code == ErrorCode.INVALID_2FA_CODE

    def test_failed_code_that_locks_reports_lock(self, manager, clock, events):
        """A bad second factor on the last allowed attempt reports the new lock."""
        generator, _ = enable_2fa(manager, clock)
        used_code = generator.generate(clock.now)
        for _ in range(4):
            manager.login(EMAIL, "Wr0ng&Horse")

        result = manager.login(EMAIL, PASSWORD, totp_code=used_code)
        assert result.error.code == ErrorCode.ACCOUNT_LOCKED
        assert result.error.details["minutesRemaining"] == 30
        assert events.count(EventType.ACCOUNT_LOCKED) == 1
        assert manager.lockout.check_lock(EMAIL).locked

    def test_wrong_password_with_valid_code(self, manager, clock):
        """The second factor is never checked before the password."""
        generator, _ = enable_2fa(manager, clock)
        clock.advance(30)
        result = manager.login(EMAIL, "Wr0ng&Horse", totp_code=generator.generate(clock.now))
        assert result.error.code == ErrorCode.INVALID_CREDENTIALS

    def test_disable_with_password(self, manager, clock):
        enable_2fa(manager, clock)
        manager.two_factor.disable(USER_ID, PASSWORD)
        assert manager.login(EMAIL, PASSWORD).success


class TestFailClosed:

    def test_store_down_denies_login(self, manager, store, events):
        store.available = False
        result = manager.login(EMAIL, PASSWORD)
        assert not result.success
        assert result.error.code == ErrorCode.UNKNOWN_ERROR
        assert events.count(EventType.STORE_FAILURE) == 1

    def test_verifier_crash_is_unknown_error(self, store, clock, users, events):
        manager = build_manager(store, clock, users, events,
                                verifier=Mock(side_effect=RuntimeError("db down")))
        result = manager.login(EMAIL, PASSWORD)
        assert result.error.code == ErrorCode.UNKNOWN_ERROR
        assert "db down" not in result.error.message
