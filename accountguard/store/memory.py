"""
In-process SecurityStore.

Suitable for a single process (tests, demos, single-worker deployments).
Atomicity is per key through lock striping: keys hash onto a fixed pool
of locks, so requests for unrelated identities rarely contend and never
share one global lock.

Expired entries are dropped when their key is read, and by a sweep that
runs every ``sweep_interval`` writes, so identities that never come back
do not accumulate.
"""

import copy
import threading
import time
import zlib
from typing import Any, Callable, Dict, List, Optional, Tuple

from .base import SecurityStore, StoreUnavailableError


DEFAULT_LOCK_STRIPES = 64
DEFAULT_SWEEP_INTERVAL = 256


class MemoryStore(SecurityStore):
    """
    Thread-safe dict-backed store with TTL support.

    Example:
        >>> store = MemoryStore()
        >>> store.set("k", {"count": 1}, ttl=60)
        >>> store.compare_and_swap("k", {"count": 1}, {"count": 2})
        True
    """

    def __init__(self, clock: Callable[[], float] = time.time,
                 stripes: int = DEFAULT_LOCK_STRIPES,
                 sweep_interval: Optional[int] = DEFAULT_SWEEP_INTERVAL):
        """
        Args:
            clock: Time source used for TTL expiry
            stripes: Number of locks keys are hashed onto
            sweep_interval: Writes between sweeps of expired entries
                (None disables the sweep)
        """
        self._clock = clock
        self._data: Dict[str, Tuple[Dict[str, Any], Optional[float]]] = {}
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(stripes)]
        self._sweep_interval = sweep_interval
        self._writes_since_sweep = 0
        self._sweep_lock = threading.Lock()
        # Flip to False to simulate an unreachable backend
        self.available = True

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[zlib.crc32(key.encode('utf-8')) % len(self._locks)]

    def _check_available(self) -> None:
        if not self.available:
            raise StoreUnavailableError("memory store marked unavailable")

    def _expires_at(self, ttl: Optional[float]) -> Optional[float]:
        return None if ttl is None else self._clock() + ttl

    def _read(self, key: str) -> Optional[Dict[str, Any]]:
        """Current value under the caller's stripe lock (expired -> None)."""
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    def _after_write(self) -> None:
        # Called outside any stripe lock; the sweep takes them one by one
        if not self._sweep_interval:
            return
        with self._sweep_lock:
            self._writes_since_sweep += 1
            if self._writes_since_sweep < self._sweep_interval:
                return
            self._writes_since_sweep = 0
        self.purge_expired()

    def purge_expired(self) -> int:
        """
        Drop every expired entry.

        Returns:
            Number of entries removed
        """
        removed = 0
        for key in list(self._data):
            with self._lock_for(key):
                if key in self._data and self._read(key) is None:
                    removed += 1
        return removed

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        self._check_available()
        with self._lock_for(key):
            value = self._read(key)
            return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: Dict[str, Any],
            ttl: Optional[float] = None) -> None:
        self._check_available()
        with self._lock_for(key):
            self._data[key] = (copy.deepcopy(value), self._expires_at(ttl))
        self._after_write()

    def delete(self, key: str) -> bool:
        self._check_available()
        with self._lock_for(key):
            existed = self._read(key) is not None
            self._data.pop(key, None)
            return existed

    def compare_and_swap(self, key: str,
                         expected: Optional[Dict[str, Any]],
                         new: Optional[Dict[str, Any]],
                         ttl: Optional[float] = None) -> bool:
        self._check_available()
        with self._lock_for(key):
            if self._read(key) != expected:
                return False
            if new is None:
                self._data.pop(key, None)
            else:
                self._data[key] = (copy.deepcopy(new), self._expires_at(ttl))
        self._after_write()
        return True

    def increment(self, key: str, amount: int = 1,
                  ttl: Optional[float] = None) -> int:
        self._check_available()
        with self._lock_for(key):
            current = self._read(key)
            if current is None:
                value = amount
                expires_at = self._expires_at(ttl)
            else:
                value = int(current.get('value', 0)) + amount
                # Existing counters keep their original expiry
                expires_at = self._data[key][1]
            self._data[key] = ({'value': value}, expires_at)
        self._after_write()
        return value

    def keys(self) -> List[str]:
        """Live keys (expired entries are skipped)."""
        now = self._clock()
        return [
            key for key, (_, expires_at) in list(self._data.items())
            if expires_at is None or expires_at > now
        ]

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self.keys())
