"""
Rate Limiter

Fixed-window request counters per (identity, action class).

Rate limiting throttles request volume; it is independent of lockout,
which penalizes failed credentials. Login requests hit the rate limiter
first since it is the cheaper check and shields the lockout and
credential paths from floods.

Default ceilings (see accountguard.config):
    login               10 per 15 minutes
    register             5 per hour
    reset-password       3 per hour
    email-verification   5 per hour
    default            100 per 15 minutes
"""

import logging
import math
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from ..config import ACTION_DEFAULT, RateLimitRule, SecurityConfig
from ..errors import RateLimitExceededError, UnknownAuthError
from ..integration.event_logger import EventLogger, EventType, get_identity_hash_short
from ..store.base import SecurityStore, StoreError, update_atomically
from .lockout import normalize_identity


logger = logging.getLogger(__name__)


KEY_PREFIX = "ratelimit:"


@dataclass
class RateLimitBucket:
    """Request count for one (identity, action) inside the current window."""
    identity: str
    action: str
    window_start: float
    count: int = 0

    def window_end(self, rule: RateLimitRule) -> float:
        return self.window_start + rule.window_seconds

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RateLimitBucket':
        return cls(**data)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one ``allow`` call."""
    allowed: bool
    action: str
    limit: int
    remaining: int
    retry_after_seconds: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'allowed': self.allowed,
            'action': self.action,
            'limit': self.limit,
            'remaining': self.remaining,
            'retryAfterSeconds': self.retry_after_seconds,
        }


class RateLimiter:
    """
    Fixed-window rate limiter backed by a SecurityStore.

    Example:
        >>> limiter = RateLimiter(MemoryStore())
        >>> limiter.allow("alice@example.com", "login").allowed
        True
    """

    def __init__(self, store: SecurityStore,
                 rules: Optional[Mapping[str, RateLimitRule]] = None,
                 clock: Callable[[], float] = time.time,
                 event_logger: Optional[EventLogger] = None):
        """
        Args:
            store: Backing store
            rules: Action class -> rule; must contain 'default'
            clock: Time source
            event_logger: Optional audit trail
        """
        self._store = store
        self._rules = dict(rules) if rules is not None else SecurityConfig().rate_limits
        if ACTION_DEFAULT not in self._rules:
            raise ValueError("rate limit rules must define the 'default' action class")
        self._clock = clock
        self._events = event_logger

    def rule_for(self, action: str) -> RateLimitRule:
        """Rule for ``action``; unknown classes share the default rule."""
        return self._rules.get(action, self._rules[ACTION_DEFAULT])

    def _bucket_action(self, action: str) -> str:
        return action if action in self._rules else ACTION_DEFAULT

    @staticmethod
    def _key(identity: str, action: str) -> str:
        return f"{KEY_PREFIX}{action}:{identity}"

    def _store_failure(self, identity: str, action: str, exc: Exception) -> UnknownAuthError:
        logger.error("Rate limit store failed for identity %s (%s): %s",
                     get_identity_hash_short(identity), action, exc)
        if self._events is not None:
            self._events.log(EventType.STORE_FAILURE, identity, operation="rate_limit", action=action)
        return UnknownAuthError(
            "Unable to process the request right now. Please try again later.",
            fail_closed=True,
        )

    def allow(self, identity: str, action: str = ACTION_DEFAULT) -> RateLimitDecision:
        """
        Count one request and decide whether it may proceed.

        A rejected request does not consume quota, so the bucket count
        never exceeds the ceiling.

        Raises:
            UnknownAuthError: store unavailable (fail closed)
        """
        identity = normalize_identity(identity)
        action = self._bucket_action(action)
        rule = self.rule_for(action)
        now = self._clock()

        def mutate(current):
            bucket = RateLimitBucket.from_dict(current) if current is not None else None
            if bucket is None or now >= bucket.window_end(rule):
                bucket = RateLimitBucket(identity=identity, action=action, window_start=now)

            if bucket.count >= rule.max_requests:
                retry_after = max(1, math.ceil(bucket.window_end(rule) - now))
                decision = RateLimitDecision(
                    allowed=False,
                    action=action,
                    limit=rule.max_requests,
                    remaining=0,
                    retry_after_seconds=retry_after,
                )
                return current, decision

            bucket.count += 1
            decision = RateLimitDecision(
                allowed=True,
                action=action,
                limit=rule.max_requests,
                remaining=rule.max_requests - bucket.count,
            )
            return bucket.to_dict(), decision

        try:
            decision = update_atomically(
                self._store, self._key(identity, action), mutate,
                ttl=lambda data: max(data['window_start'] + rule.window_seconds - now, 1),
            )
        except StoreError as exc:
            raise self._store_failure(identity, action, exc)

        if not decision.allowed:
            logger.warning("Rate limit exceeded for identity %s (%s), retry in %ds",
                           get_identity_hash_short(identity), action, decision.retry_after_seconds)
            if self._events is not None:
                self._events.log(EventType.RATE_LIMITED, identity, action=action,
                                 retry_after=decision.retry_after_seconds)
        return decision

    def enforce(self, identity: str, action: str = ACTION_DEFAULT) -> RateLimitDecision:
        """
        ``allow`` that raises on rejection.

        Raises:
            RateLimitExceededError: ceiling reached for this window
            UnknownAuthError: store unavailable (fail closed)
        """
        decision = self.allow(identity, action)
        if not decision.allowed:
            raise RateLimitExceededError(decision.retry_after_seconds, decision.action)
        return decision

    def peek(self, identity: str, action: str = ACTION_DEFAULT) -> RateLimitDecision:
        """Report the current bucket without counting a request."""
        identity = normalize_identity(identity)
        action = self._bucket_action(action)
        rule = self.rule_for(action)
        now = self._clock()
        try:
            current = self._store.get(self._key(identity, action))
        except StoreError as exc:
            raise self._store_failure(identity, action, exc)

        bucket = RateLimitBucket.from_dict(current) if current is not None else None
        if bucket is None or now >= bucket.window_end(rule):
            return RateLimitDecision(True, action, rule.max_requests, rule.max_requests)
        if bucket.count >= rule.max_requests:
            retry_after = max(1, math.ceil(bucket.window_end(rule) - now))
            return RateLimitDecision(False, action, rule.max_requests, 0, retry_after)
        return RateLimitDecision(True, action, rule.max_requests,
                                 rule.max_requests - bucket.count)

    def reset(self, identity: str, action: str = ACTION_DEFAULT) -> None:
        """Drop the bucket (e.g. after an administrator intervenes)."""
        identity = normalize_identity(identity)
        try:
            self._store.delete(self._key(identity, self._bucket_action(action)))
        except StoreError as exc:
            raise self._store_failure(identity, action, exc)
