"""
Unit tests for the fixed-window rate limiter.
"""

import pytest

from accountguard.auth.rate_limit import RateLimiter
from accountguard.config import RateLimitRule
from accountguard.errors import InvalidCredentialsError, RateLimitExceededError, UnknownAuthError
from accountguard.integration.event_logger import EventLogger, EventType


IDENTITY = "alice@example.com"


@pytest.fixture
def events(clock):
    return EventLogger(clock=clock)


@pytest.fixture
def limiter(store, clock, events):
    return RateLimiter(store, clock=clock, event_logger=events)


class TestLoginWindow:
    """Default login ceiling: 10 per 15 minutes."""

    def test_first_ten_allowed(self, limiter):
        for i in range(10):
            decision = limiter.allow(IDENTITY, "login")
            assert decision.allowed
            assert decision.remaining == 9 - i

    def test_eleventh_rejected(self, limiter, clock, events):
        """The 11th request inside the window is rejected with a retry hint."""
        for _ in range(10):
            limiter.allow(IDENTITY, "login")
        clock.advance(100)
        decision = limiter.allow(IDENTITY, "login")
        assert not decision.allowed
        assert decision.remaining == 0
        assert decision.retry_after_seconds == 800
        assert events.count(EventType.RATE_LIMITED) == 1

    def test_rejection_does_not_consume(self, limiter, store):
        """Rejected requests leave the bucket at the ceiling."""
        for _ in range(15):
            limiter.allow(IDENTITY, "login")
        assert store.get("ratelimit:login:" + IDENTITY)["count"] == 10

    def test_window_resets(self, limiter, clock):
        for _ in range(10):
            limiter.allow(IDENTITY, "login")
        clock.advance(900)
        decision = limiter.allow(IDENTITY, "login")
        assert decision.allowed
        assert decision.remaining == 9

    def test_retry_after_at_least_one_second(self, limiter, clock):
        for _ in range(10):
            limiter.allow(IDENTITY, "login")
        clock.advance(899.5)
        assert limiter.allow(IDENTITY, "login").retry_after_seconds == 1


class TestActionClasses:
    """Buckets are separate per action and identity."""

    def test_actions_independent(self, limiter):
        for _ in range(10):
            limiter.allow(IDENTITY, "login")
        assert limiter.allow(IDENTITY, "register").allowed

    def test_identities_independent(self, limiter):
        for _ in range(10):
            limiter.allow(IDENTITY, "login")
        assert limiter.allow("bob@example.com", "login").allowed

    def test_reset_password_ceiling(self, limiter):
        results = [limiter.allow(IDENTITY, "reset-password").allowed for _ in range(4)]
        assert results == [True, True, True, False]

    def test_unknown_action_uses_default(self, limiter):
        """Unlisted actions share the default bucket and ceiling."""
        decision = limiter.allow(IDENTITY, "checkout")
        assert decision.action == "default"
        assert decision.limit == 100
        assert limiter.allow(IDENTITY, "wishlist").remaining == 98

    def test_custom_rules(self, store, clock):
        limiter = RateLimiter(store, {"default": RateLimitRule(2, 60)}, clock=clock)
        assert limiter.allow(IDENTITY, "login").allowed
        assert limiter.allow(IDENTITY, "login").allowed
        assert not limiter.allow(IDENTITY, "login").allowed

    def test_rules_require_default(self, store):
        with pytest.raises(ValueError):
            RateLimiter(store, {"login": RateLimitRule(1, 60)})


class TestEnforce:
    """Raising variant used by the login flow."""

    def test_enforce_raises(self, limiter, clock):
        for _ in range(10):
            limiter.enforce(IDENTITY, "login")
        with pytest.raises(RateLimitExceededError) as exc_info:
            limiter.enforce(IDENTITY, "login")
        assert exc_info.value.retry_after_seconds == 900
        assert exc_info.value.action == "login"
        assert exc_info.value.details == {"retryAfterSeconds": 900, "action": "login"}

    def test_blank_identity_rejected(self, limiter):
        """Blank identities surface as AuthError before any quota is touched."""
        with pytest.raises(InvalidCredentialsError):
            limiter.allow("  ", "login")


class TestPeekAndReset:

    def test_peek_does_not_count(self, limiter):
        limiter.allow(IDENTITY, "login")
        assert limiter.peek(IDENTITY, "login").remaining == 9
        assert limiter.peek(IDENTITY, "login").remaining == 9

    def test_peek_reports_rejection(self, limiter):
        for _ in range(10):
            limiter.allow(IDENTITY, "login")
        decision = limiter.peek(IDENTITY, "login")
        assert not decision.allowed
        assert decision.retry_after_seconds == 900

    def test_reset(self, limiter):
        for _ in range(10):
            limiter.allow(IDENTITY, "login")
        limiter.reset(IDENTITY, "login")
        assert limiter.allow(IDENTITY, "login").allowed


class TestStoreFailure:

    def test_fails_closed(self, limiter, store):
        """An unreachable store denies instead of allowing."""
        store.available = False
        with pytest.raises(UnknownAuthError) as exc_info:
            limiter.allow(IDENTITY, "login")
        assert exc_info.value.fail_closed
