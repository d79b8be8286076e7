"""
Security Store Interface

Abstract key/record store the security core runs against. Attempt
records, rate-limit buckets and 2FA credentials all live behind this
interface so that several processes can share state through a real
backend (Redis, a SQL table with a version column, ...).

Values are JSON-compatible dicts. Every per-identity mutation in the core
is written as an optimistic compare-and-swap retry loop over ``get`` and
``compare_and_swap``, so a backend only has to make that one primitive
atomic per key.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple, Union


# Upper bound on optimistic retries before an update is treated as failed
CAS_MAX_RETRIES = 64


class StoreError(Exception):
    """Base class for store failures (never leaves the core)."""


class StoreUnavailableError(StoreError):
    """Backend cannot be reached or refused the operation."""


class StoreContentionError(StoreError):
    """Compare-and-swap kept losing the race for one key."""


class SecurityStore(ABC):
    """
    Key/record store consumed by the security core.

    Implementations must make ``compare_and_swap`` and ``increment``
    atomic per key. Serializing across unrelated keys is not required
    and should be avoided.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the stored record, or None if absent/expired."""

    @abstractmethod
    def set(self, key: str, value: Dict[str, Any],
            ttl: Optional[float] = None) -> None:
        """Unconditionally store ``value``, expiring after ``ttl`` seconds."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if something was removed."""

    @abstractmethod
    def compare_and_swap(self, key: str,
                         expected: Optional[Dict[str, Any]],
                         new: Optional[Dict[str, Any]],
                         ttl: Optional[float] = None) -> bool:
        """
        Atomically replace ``expected`` with ``new``.

        Args:
            key: Record key
            expected: Value previously read (None means "key absent")
            new: Replacement value (None deletes the key)
            ttl: Expiry for the new value in seconds

        Returns:
            True if the swap happened, False if the current value differs
        """

    @abstractmethod
    def increment(self, key: str, amount: int = 1,
                  ttl: Optional[float] = None) -> int:
        """Atomically add ``amount`` to an integer counter and return it."""


def update_atomically(store: SecurityStore, key: str,
                      mutate: Callable[[Optional[Dict[str, Any]]],
                                       Tuple[Optional[Dict[str, Any]], Any]],
                      ttl: Union[float, Callable[[Dict[str, Any]], Optional[float]], None] = None,
                      max_retries: int = CAS_MAX_RETRIES) -> Any:
    """
    Run a read-modify-write on one key with optimistic retry.

    ``mutate`` receives the current value (or None) and returns
    ``(new_value, result)``. It may be called several times and must not
    have side effects. Returning the current value unchanged skips the
    write. ``ttl`` may be a callable computing the expiry from the new
    value.

    Returns:
        The ``result`` of the winning call

    Raises:
        StoreContentionError: if every attempt lost the race
        StoreUnavailableError: propagated from the backend
    """
    for _ in range(max_retries):
        current = store.get(key)
        new, result = mutate(current)
        if new == current:
            return result
        if callable(ttl):
            expiry = ttl(new) if new is not None else None
        else:
            expiry = ttl
        if store.compare_and_swap(key, current, new, expiry):
            return result
    raise StoreContentionError(f"compare-and-swap retries exhausted after {max_retries} attempts")
