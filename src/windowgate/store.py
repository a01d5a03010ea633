"""Counter stores backing the rate limiter.

Two implementations share one contract: an in-process dictionary for
single-instance deployments and tests, and an adapter over Redis for
deployments where several server processes must share counters. Neither
offers an atomic increment; callers read, modify and write back.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Self

import redis.asyncio as redis
import structlog

from windowgate.clock import Clock, PeriodicTask, Sleeper, system_clock
from windowgate.config import Settings, get_settings
from windowgate.metrics import metrics

logger = structlog.get_logger()


class StoreUnavailableError(RuntimeError):
    """The counter store cannot serve requests right now."""


class CounterStore(ABC):
    """Key/value store with per-key expiry."""

    backend = "abstract"

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored under ``key`` or None."""

    @abstractmethod
    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``; a missing key is not an error."""

    async def connect(self) -> None:
        """Acquire resources."""

    async def disconnect(self) -> None:
        """Release resources."""

    async def health_check(self) -> bool:
        return True

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()


class MemoryCounterStore(CounterStore):
    """
    In-process store.

    Expired entries read as absent and are dropped on access. A background
    eviction task, started by ``connect()``/``start()``, purges entries that
    are never read again. Not shared between processes.
    """

    backend = "memory"

    def __init__(
        self,
        clock: Clock | None = None,
        eviction_interval_seconds: float = 300.0,
        sleep: Sleeper | None = None,
    ) -> None:
        self._clock = clock or system_clock
        self._entries: dict[str, tuple[str, int]] = {}
        self._eviction = PeriodicTask(
            "memory-store-eviction", eviction_interval_seconds, self.evict_expired, sleep
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock.now_ms() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, self._clock.now_ms() + ttl_seconds * 1000)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def evict_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock.now_ms()
        expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    @property
    def eviction_running(self) -> bool:
        return self._eviction.running

    def start(self) -> None:
        self._eviction.start()

    async def stop(self) -> None:
        await self._eviction.stop()

    async def connect(self) -> None:
        self.start()

    async def disconnect(self) -> None:
        await self.stop()


class RedisCounterStore(CounterStore):
    """Adapter over a shared Redis instance using GET, SETEX and DEL."""

    backend = "redis"

    def __init__(self, client: redis.Redis | None = None) -> None:
        self._client = client

    async def connect(self) -> None:
        """Connect to Redis."""
        settings = get_settings()
        self._client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            password=settings.redis_password or None,
            db=settings.redis_db,
            decode_responses=True,
            max_connections=settings.redis_pool_size,
            socket_timeout=settings.redis_socket_timeout,
            socket_connect_timeout=settings.redis_socket_timeout,
        )
        # Test connection
        await self._client.ping()
        logger.info("redis_connected", host=settings.redis_host, port=settings.redis_port)

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("redis_disconnected")

    async def health_check(self) -> bool:
        """Check if Redis is healthy."""
        try:
            if self._client:
                await self._client.ping()
                return True
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
        return False

    def _require_client(self) -> redis.Redis:
        if self._client is None:
            raise StoreUnavailableError("Redis not connected")
        return self._client

    @asynccontextmanager
    async def _track(self, operation: str) -> AsyncIterator[None]:
        start = time.perf_counter()
        status = "error"
        try:
            yield
            status = "ok"
        finally:
            metrics.store_operations_total.labels(
                backend=self.backend, operation=operation, status=status
            ).inc()
            metrics.store_latency.labels(backend=self.backend, operation=operation).observe(
                time.perf_counter() - start
            )

    async def get(self, key: str) -> str | None:
        client = self._require_client()
        async with self._track("get"):
            value = await client.get(key)
        if isinstance(value, bytes):
            return value.decode()
        return value

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        client = self._require_client()
        async with self._track("setex"):
            # SETEX rejects a non-positive expiry
            await client.setex(key, max(1, ttl_seconds), value)

    async def delete(self, key: str) -> None:
        client = self._require_client()
        async with self._track("delete"):
            await client.delete(key)


def create_store(settings: Settings | None = None) -> CounterStore:
    """Build the counter store selected by configuration."""
    settings = settings or get_settings()
    if settings.store_backend == "redis":
        return RedisCounterStore()
    return MemoryCounterStore(eviction_interval_seconds=settings.memory_eviction_interval_seconds)


# Singleton instance
_store: CounterStore | None = None


def get_store() -> CounterStore:
    """Get the store singleton."""
    global _store
    if _store is None:
        _store = create_store()
        logger.info("counter_store_selected", backend=_store.backend)
    return _store
