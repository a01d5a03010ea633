"""Pytest configuration and fixtures."""

import fakeredis.aioredis
import pytest

from windowgate.combined import CombinedLimiter
from windowgate.limiter import SlidingWindowLimiter
from windowgate.models import RateLimitPolicy
from windowgate.store import MemoryCounterStore, RedisCounterStore

START_MS = 1_700_000_000_000


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start_ms: int = START_MS) -> None:
        self.now = start_ms

    def now_ms(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    """Manual clock starting at a fixed instant."""
    return ManualClock()


@pytest.fixture
def memory_store(clock):
    """In-process counter store driven by the manual clock."""
    return MemoryCounterStore(clock=clock)


@pytest.fixture
def fake_redis():
    """Create a fake Redis client for testing."""
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def redis_store(fake_redis):
    """Redis-backed counter store over fake Redis."""
    return RedisCounterStore(client=fake_redis)


@pytest.fixture
def limiter(memory_store, clock):
    """Sliding window limiter over the in-process store."""
    return SlidingWindowLimiter(memory_store, clock=clock)


@pytest.fixture
def combined(limiter):
    """Combined limiter over the in-process store."""
    return CombinedLimiter(limiter)


@pytest.fixture
def sample_policy():
    """A small policy that is easy to exhaust."""
    return RateLimitPolicy(limit=3, windowMs=60_000, keyNamespace="test")


@pytest.fixture
def burst_policy():
    """A policy with burst capacity on the IP dimension."""
    return RateLimitPolicy(limit=2, windowMs=60_000, keyNamespace="ratelimit:write:test", burst=4)
