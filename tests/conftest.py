"""
Shared fixtures: a controllable clock, a store that follows it, and a
cheap Argon2 hasher so password tests stay fast.
"""

import pytest

from accountguard.auth.passwords import SecurePasswordHasher
from accountguard.store.memory import MemoryStore


START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def fast_hasher():
    return SecurePasswordHasher(time_cost=1, memory_cost=8192, parallelism=1)
