# Store Module
"""
Abstract record store used by the security core, plus an in-process
implementation.
"""

from .base import (
    SecurityStore,
    StoreError,
    StoreUnavailableError,
    StoreContentionError,
    update_atomically,
    CAS_MAX_RETRIES,
)
from .memory import MemoryStore

__all__ = [
    'SecurityStore',
    'StoreError',
    'StoreUnavailableError',
    'StoreContentionError',
    'update_atomically',
    'CAS_MAX_RETRIES',
    'MemoryStore',
]
