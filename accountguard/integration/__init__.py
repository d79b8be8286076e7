# Integration Module
"""
Audit logging for security events.

All events are logged with privacy-preserving identity hashes.
"""

from .event_logger import (
    EventType,
    SecurityEvent,
    EventLogger,
    NullEventLogger,
    get_identity_hash,
    get_identity_hash_short,
)

__all__ = [
    'EventType',
    'SecurityEvent',
    'EventLogger',
    'NullEventLogger',
    'get_identity_hash',
    'get_identity_hash_short',
]
