"""
Attempt Ledger and Lockout Controller

Tracks failed credential checks per identity and locks the identity
after too many consecutive failures.

State machine per identity:
    Clean    no record
    Warning  1..max_attempts-1 consecutive failures
    Locked   >= max_attempts failures, locked_until set
Locked returns to Clean lazily once locked_until has passed, or on
explicit unlock. A successful login returns Warning to Clean.

Concurrency:
- Every update is a compare-and-swap retry loop on the identity's record,
  so parallel failures for one identity are never lost and the lock is
  re-evaluated against the freshest record on every retry
- Unrelated identities never contend

Failure semantics:
- Store unavailable during a lock check or failure record -> fail closed
  (UnknownAuthError, caller denies the request)
- Store unavailable while clearing after a success -> warning only
"""

import logging
import math
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from ..config import LOCKOUT_DURATION_SECONDS, MAX_LOGIN_ATTEMPTS
from ..errors import AccountLockedError, InvalidCredentialsError, UnknownAuthError
from ..integration.event_logger import EventLogger, EventType, get_identity_hash_short
from ..store.base import SecurityStore, StoreError, update_atomically


logger = logging.getLogger(__name__)


# Failures older than this (with no lock in force) no longer count
ATTEMPT_WINDOW_SECONDS = 15 * 60

KEY_PREFIX = "attempts:"


def normalize_identity(identity: str) -> str:
    """
    Trim and lower-case an identity so 'A@x.com ' and 'a@x.com' share state.

    Raises:
        InvalidCredentialsError: blank or non-string identity
    """
    if not isinstance(identity, str) or not identity.strip():
        raise InvalidCredentialsError()
    return identity.strip().lower()


@dataclass
class AttemptRecord:
    """Failure state for one identity."""
    identity: str
    consecutive_failures: int = 0
    last_failure_at: float = 0.0
    locked_until: Optional[float] = None
    total_failures_window: int = 0
    window_started_at: float = 0.0

    def is_locked(self, now: float) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def lock_expired(self, now: float) -> bool:
        return self.locked_until is not None and self.locked_until <= now

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AttemptRecord':
        return cls(**data)


@dataclass(frozen=True)
class LockStatus:
    """Answer to "may this identity attempt a login right now?"."""
    locked: bool
    attempts: int
    attempts_left: int
    max_attempts: int
    unlock_at: Optional[float] = None
    minutes_remaining: int = 0

    @property
    def seconds_remaining(self) -> int:
        return self.minutes_remaining * 60

    def to_dict(self) -> Dict[str, Any]:
        return {
            'isLocked': self.locked,
            'attempts': self.attempts,
            'attemptsLeft': self.attempts_left,
            'maxAttempts': self.max_attempts,
            'unlockAt': self.unlock_at,
            'minutesRemaining': self.minutes_remaining,
        }


class AttemptLedger:
    """
    Store-backed attempt records.

    The ledger owns the record transitions; LockoutController adds
    policy reporting, errors and audit events on top.
    """

    def __init__(self, store: SecurityStore,
                 max_attempts: int = MAX_LOGIN_ATTEMPTS,
                 lockout_duration: int = LOCKOUT_DURATION_SECONDS,
                 attempt_window: Optional[int] = ATTEMPT_WINDOW_SECONDS):
        """
        Args:
            store: Backing store
            max_attempts: Consecutive failures that trigger a lock
            lockout_duration: Lock length in seconds
            attempt_window: Seconds of inactivity after which an unlocked
                record is forgotten (None keeps it until success)
        """
        self._store = store
        self._max_attempts = max_attempts
        self._lockout_duration = lockout_duration
        self._attempt_window = attempt_window

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @staticmethod
    def _key(identity: str) -> str:
        return KEY_PREFIX + identity

    def _ttl(self, record: AttemptRecord, now: float) -> Optional[float]:
        if record.locked_until is not None:
            # Outlive the lock so check_lock sees and reports its expiry
            grace = self._attempt_window or ATTEMPT_WINDOW_SECONDS
            return max(record.locked_until - now, 1) + grace
        return self._attempt_window

    def _is_stale(self, record: AttemptRecord, now: float) -> bool:
        """Expired lock, or unlocked failures that fell out of the window."""
        if record.lock_expired(now):
            return True
        if record.locked_until is None and self._attempt_window is not None:
            return now - record.last_failure_at >= self._attempt_window
        return False

    def get(self, identity: str) -> Optional[AttemptRecord]:
        data = self._store.get(self._key(identity))
        return AttemptRecord.from_dict(data) if data is not None else None

    def record_failure(self, identity: str, now: float) -> AttemptRecord:
        """
        Atomically add one failure, locking at the threshold.

        The current record is re-read on every retry, so a lock written by
        a concurrent request is always seen before this failure counts.
        """
        def mutate(current):
            record = AttemptRecord.from_dict(current) if current is not None else None

            if record is None or self._is_stale(record, now):
                record = AttemptRecord(identity=identity, window_started_at=now)

            record.consecutive_failures += 1
            record.total_failures_window += 1
            record.last_failure_at = now

            if record.consecutive_failures >= self._max_attempts and record.locked_until is None:
                record.locked_until = now + self._lockout_duration

            return record.to_dict(), record

        return update_atomically(
            self._store, self._key(identity), mutate,
            ttl=lambda data: self._ttl(AttemptRecord.from_dict(data), now),
        )

    def expire_if_stale(self, identity: str, now: float) -> Tuple[Optional[AttemptRecord], bool]:
        """
        Lazy expiry.

        Returns:
            (live record or None, whether a stale record was removed)
        """
        def mutate(current):
            if current is None:
                return None, (None, False)
            record = AttemptRecord.from_dict(current)
            if self._is_stale(record, now):
                return None, (None, record.locked_until is not None)
            return current, (record, False)

        return update_atomically(self._store, self._key(identity), mutate)

    def clear_unless_locked(self, identity: str, now: float) -> Optional[AttemptRecord]:
        """
        Drop the record unless a lock is in force.

        Returns:
            The locked record (left untouched), or None once cleared
        """
        def mutate(current):
            if current is None:
                return None, None
            record = AttemptRecord.from_dict(current)
            if record.is_locked(now):
                return current, record
            return None, None

        return update_atomically(self._store, self._key(identity), mutate)

    def clear(self, identity: str) -> bool:
        return self._store.delete(self._key(identity))


class LockoutController:
    """
    Lock/unlock decisions for login attempts.

    Example:
        >>> controller = LockoutController(MemoryStore())
        >>> for _ in range(5):
        ...     controller.record_failure("u1")
        >>> controller.check_lock("u1").locked
        True
    """

    def __init__(self, store: SecurityStore,
                 max_attempts: int = MAX_LOGIN_ATTEMPTS,
                 lockout_duration: int = LOCKOUT_DURATION_SECONDS,
                 attempt_window: Optional[int] = ATTEMPT_WINDOW_SECONDS,
                 clock: Callable[[], float] = time.time,
                 event_logger: Optional[EventLogger] = None):
        self._ledger = AttemptLedger(store, max_attempts, lockout_duration, attempt_window)
        self._max_attempts = max_attempts
        self._lockout_duration = lockout_duration
        self._clock = clock
        self._events = event_logger

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def ledger(self) -> AttemptLedger:
        return self._ledger

    def _event(self, event_type: EventType, identity: str, **details) -> None:
        if self._events is not None:
            self._events.log(event_type, identity, **details)

    def _store_failure(self, operation: str, identity: str, exc: Exception) -> UnknownAuthError:
        logger.error("Attempt store failed during %s for identity %s: %s",
                     operation, get_identity_hash_short(identity), exc)
        self._event(EventType.STORE_FAILURE, identity, operation=operation)
        return UnknownAuthError(
            "Unable to verify account status. Please try again later.",
            fail_closed=True,
        )

    def _status(self, record: Optional[AttemptRecord], now: float) -> LockStatus:
        if record is None:
            return LockStatus(
                locked=False,
                attempts=0,
                attempts_left=self._max_attempts,
                max_attempts=self._max_attempts,
            )

        if record.is_locked(now):
            return LockStatus(
                locked=True,
                attempts=record.consecutive_failures,
                attempts_left=0,
                max_attempts=self._max_attempts,
                unlock_at=record.locked_until,
                minutes_remaining=max(1, math.ceil((record.locked_until - now) / 60)),
            )

        return LockStatus(
            locked=False,
            attempts=record.consecutive_failures,
            attempts_left=max(0, self._max_attempts - record.consecutive_failures),
            max_attempts=self._max_attempts,
        )

    def check_lock(self, identity: str) -> LockStatus:
        """
        Report whether ``identity`` is locked.

        An expired lock is cleared here and reported as unlocked.

        Raises:
            UnknownAuthError: store unavailable (fail closed)
        """
        identity = normalize_identity(identity)
        now = self._clock()
        try:
            record, expired_lock = self._ledger.expire_if_stale(identity, now)
        except StoreError as exc:
            raise self._store_failure("check_lock", identity, exc)

        if expired_lock:
            logger.info("Lock expired for identity %s", get_identity_hash_short(identity))
            self._event(EventType.ACCOUNT_UNLOCKED, identity, reason="expired")

        return self._status(record, now)

    def ensure_unlocked(self, identity: str) -> LockStatus:
        """
        ``check_lock`` that raises instead of returning a locked status.

        Raises:
            AccountLockedError: identity is locked
            UnknownAuthError: store unavailable (fail closed)
        """
        status = self.check_lock(identity)
        if status.locked:
            raise AccountLockedError(
                unlock_at=status.unlock_at,
                minutes_remaining=status.minutes_remaining,
                attempts=status.attempts,
                max_attempts=status.max_attempts,
            )
        return status

    def record_failure(self, identity: str) -> AttemptRecord:
        """
        Count a failed credential check.

        Returns:
            The updated record (``locked_until`` set once the threshold is hit)

        Raises:
            UnknownAuthError: store unavailable (fail closed)
        """
        identity = normalize_identity(identity)
        now = self._clock()
        try:
            record = self._ledger.record_failure(identity, now)
        except StoreError as exc:
            raise self._store_failure("record_failure", identity, exc)

        self._event(EventType.LOGIN_FAILED, identity,
                    attempt=record.consecutive_failures,
                    max_attempts=self._max_attempts)

        if self.caused_lock(record):
            logger.warning("Identity %s locked after %d failed attempts",
                           get_identity_hash_short(identity), record.consecutive_failures)
            self._event(EventType.ACCOUNT_LOCKED, identity,
                        attempts=record.consecutive_failures,
                        locked_minutes=self._lockout_duration // 60)
        return record

    def caused_lock(self, record: AttemptRecord) -> bool:
        """True when ``record`` is the failure that crossed the threshold."""
        return record.locked_until is not None and record.consecutive_failures == self._max_attempts

    def _locked_error(self, record: AttemptRecord, now: float) -> AccountLockedError:
        return AccountLockedError(
            unlock_at=record.locked_until,
            minutes_remaining=max(1, math.ceil((record.locked_until - now) / 60)),
            attempts=record.consecutive_failures,
            max_attempts=self._max_attempts,
        )

    def lock_error(self, record: AttemptRecord) -> Optional[AccountLockedError]:
        """``AccountLockedError`` for ``record`` if its lock is in force, else None."""
        now = self._clock()
        if record.is_locked(now):
            return self._locked_error(record, now)
        return None

    def failure_error(self, record: AttemptRecord) -> Exception:
        """
        Error to return to the caller for a recorded failure.

        A failure that triggers the lock still reports invalid credentials
        (with ``lock_triggered``); failures landing on an already-locked
        identity report the lock.
        """
        if not self.caused_lock(record):
            locked = self.lock_error(record)
            if locked is not None:
                return locked
        return InvalidCredentialsError(
            attempts_left=max(0, self._max_attempts - record.consecutive_failures),
            max_attempts=self._max_attempts,
            lock_triggered=self.caused_lock(record),
        )

    def record_success(self, identity: str) -> None:
        """
        Clear the failure record after a successful login.

        The lock test and the clear are one atomic update, so a failure
        that locks the identity concurrently is never wiped out. Store
        failures are logged and swallowed so that a bookkeeping write never
        blocks a legitimate login.

        Raises:
            AccountLockedError: identity is currently locked
        """
        identity = normalize_identity(identity)
        now = self._clock()
        try:
            locked = self._ledger.clear_unless_locked(identity, now)
        except StoreError as exc:
            logger.warning("Could not clear attempt record for identity %s: %s",
                           get_identity_hash_short(identity), exc)
            self._event(EventType.STORE_FAILURE, identity, operation="record_success")
            return

        if locked is not None:
            raise self._locked_error(locked, now)

        self._event(EventType.LOGIN_SUCCESS, identity)

    def unlock(self, identity: str) -> bool:
        """
        Administrative reset: drop the record regardless of state.

        Returns:
            True if a record existed

        Raises:
            UnknownAuthError: store unavailable
        """
        identity = normalize_identity(identity)
        try:
            removed = self._ledger.clear(identity)
        except StoreError as exc:
            raise self._store_failure("unlock", identity, exc)

        if removed:
            logger.info("Identity %s manually unlocked", get_identity_hash_short(identity))
            self._event(EventType.ACCOUNT_UNLOCKED, identity, reason="manual")
        return removed
