"""
Security Event Logger

Audit trail for the account-security core.

Features:
- Login success / failure events
- Lockout and unlock events
- Rate-limit rejections
- Two-factor lifecycle (setup, verification, backup codes, disable)
- Privacy-preserving identity hashes (SHA-256)

Events are emitted through the ``accountguard.audit`` logger and kept in
a bounded in-memory trail that callers can query or forward.
"""

import hashlib
import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional


audit_logger = logging.getLogger("accountguard.audit")
logger = logging.getLogger(__name__)


EVENT_VERSION = "1.0"
DEFAULT_TRAIL_SIZE = 1000


# ============================================================================
# Privacy Functions
# ============================================================================

def get_identity_hash(identity: str) -> str:
    """
    Privacy-preserving hash of an identity.

    Identities (emails, user ids) are never written to the audit trail in
    plaintext; the hash still lets events for the same identity be
    correlated.
    """
    return hashlib.sha256(identity.encode('utf-8')).hexdigest()


def get_identity_hash_short(identity: str) -> str:
    """First 16 hex characters of the identity hash, for log lines."""
    return get_identity_hash(identity)[:16]


# ============================================================================
# Event Types
# ============================================================================

class EventType(Enum):
    """Types of security events that can be logged."""

    # Authentication
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    RATE_LIMITED = "rate_limited"

    # Two-factor
    TWO_FACTOR_SETUP_STARTED = "2fa_setup_started"
    TWO_FACTOR_ENABLED = "2fa_enabled"
    TWO_FACTOR_DISABLED = "2fa_disabled"
    TOTP_VERIFIED = "totp_verified"
    TOTP_FAILED = "totp_failed"
    TOTP_REPLAY_REJECTED = "totp_replay_rejected"
    BACKUP_CODE_USED = "backup_code_used"
    BACKUP_CODE_FAILED = "backup_code_failed"
    BACKUP_CODES_REGENERATED = "backup_codes_regenerated"

    # Infrastructure
    STORE_FAILURE = "store_failure"


# Logged at WARNING instead of INFO
_WARNING_EVENTS = {
    EventType.ACCOUNT_LOCKED,
    EventType.RATE_LIMITED,
    EventType.TOTP_REPLAY_REJECTED,
    EventType.STORE_FAILURE,
}


# ============================================================================
# Event Structure
# ============================================================================

@dataclass
class SecurityEvent:
    """
    A security event. All identifying information is hashed.
    """
    event_type: EventType
    identity_hash: str
    timestamp: float
    details: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps({
            'version': EVENT_VERSION,
            'type': self.event_type.value,
            'identity': self.identity_hash[:16],
            'time': int(self.timestamp),
            'iso_time': datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
            'details': self.details,
        }, separators=(',', ':'), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> 'SecurityEvent':
        data = json.loads(raw)
        return cls(
            event_type=EventType(data['type']),
            identity_hash=data['identity'],
            timestamp=data['time'],
            details=data.get('details', {}),
        )

    def __str__(self) -> str:
        dt = datetime.fromtimestamp(self.timestamp, tz=timezone.utc)
        return (
            f"[{dt.strftime('%Y-%m-%d %H:%M:%S')}] "
            f"{self.event_type.value} | "
            f"identity:{self.identity_hash[:8]}..."
        )


# ============================================================================
# Event Logger
# ============================================================================

class EventLogger:
    """
    Records security events for the audit trail.

    Thread-safe; the in-memory trail keeps the most recent
    ``trail_size`` events.
    """

    def __init__(self, trail_size: int = DEFAULT_TRAIL_SIZE,
                 clock: Callable[[], float] = time.time):
        self._events: Deque[SecurityEvent] = deque(maxlen=trail_size)
        self._lock = threading.Lock()
        self._clock = clock
        self._callbacks: List[Callable[[SecurityEvent], None]] = []

    def add_callback(self, callback: Callable[[SecurityEvent], None]) -> None:
        """Notify ``callback`` of every new event (e.g. to forward it)."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[SecurityEvent], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def log(self, event_type: EventType, identity: str,
            **details: Any) -> SecurityEvent:
        """
        Record an event.

        Args:
            event_type: Kind of event
            identity: Plaintext identity (hashed before storage)
            **details: Non-sensitive structured context

        Returns:
            The recorded event
        """
        event = SecurityEvent(
            event_type=event_type,
            identity_hash=get_identity_hash(identity),
            timestamp=self._clock(),
            details=details,
        )

        with self._lock:
            self._events.append(event)

        level = logging.WARNING if event_type in _WARNING_EVENTS else logging.INFO
        audit_logger.log(level, "%s", event.to_json())

        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception:
                logger.exception("Security event callback failed")

        return event

    # ========================================================================
    # Queries
    # ========================================================================

    def events(self, event_type: Optional[EventType] = None,
               identity: Optional[str] = None) -> List[SecurityEvent]:
        """Recorded events, optionally filtered by type and/or identity."""
        identity_hash = get_identity_hash(identity) if identity is not None else None
        with self._lock:
            snapshot = list(self._events)
        return [
            e for e in snapshot
            if (event_type is None or e.event_type == event_type)
            and (identity_hash is None or e.identity_hash == identity_hash)
        ]

    def count(self, event_type: Optional[EventType] = None) -> int:
        return len(self.events(event_type))

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        return len(self._events)


class NullEventLogger(EventLogger):
    """Event logger that only emits log lines and keeps no trail."""

    def __init__(self):
        super().__init__(trail_size=0)
