"""Unit tests for the counter stores."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from windowgate.config import Settings
from windowgate.store import (
    MemoryCounterStore,
    RedisCounterStore,
    StoreUnavailableError,
    create_store,
)


class TestMemoryCounterStore:
    """Tests for MemoryCounterStore."""

    @pytest.mark.asyncio
    async def test_get_missing(self, memory_store):
        assert await memory_store.get("missing") is None

    @pytest.mark.asyncio
    async def test_set_and_get(self, memory_store):
        await memory_store.set_with_ttl("k", "v", 60)

        assert await memory_store.get("k") == "v"

    @pytest.mark.asyncio
    async def test_entry_expires(self, memory_store, clock):
        """Entries read as absent once their TTL has elapsed."""
        await memory_store.set_with_ttl("k", "v", 60)

        clock.advance(59_999)
        assert await memory_store.get("k") == "v"

        clock.advance(1)
        assert await memory_store.get("k") is None
        assert "k" not in memory_store

    @pytest.mark.asyncio
    async def test_overwrite_replaces_ttl(self, memory_store, clock):
        await memory_store.set_with_ttl("k", "v1", 10)
        clock.advance(5_000)
        await memory_store.set_with_ttl("k", "v2", 10)
        clock.advance(9_000)

        assert await memory_store.get("k") == "v2"

    @pytest.mark.asyncio
    async def test_delete(self, memory_store):
        await memory_store.set_with_ttl("k", "v", 60)

        await memory_store.delete("k")

        assert await memory_store.get("k") is None

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, memory_store):
        await memory_store.delete("missing")

        assert len(memory_store) == 0

    @pytest.mark.asyncio
    async def test_evict_expired(self, memory_store, clock):
        """Eviction drops only expired entries."""
        await memory_store.set_with_ttl("short", "v", 1)
        await memory_store.set_with_ttl("long", "v", 600)
        clock.advance(2_000)

        removed = memory_store.evict_expired()

        assert removed == 1
        assert "short" not in memory_store
        assert "long" in memory_store

    @pytest.mark.asyncio
    async def test_health_check(self, memory_store):
        assert await memory_store.health_check() is True

    @pytest.mark.asyncio
    async def test_eviction_task_runs_on_each_tick(self, clock):
        """The owned eviction task purges on every scheduler tick."""
        ticks: asyncio.Queue[None] = asyncio.Queue()

        async def sleep(_: float) -> None:
            await ticks.get()

        store = MemoryCounterStore(clock=clock, eviction_interval_seconds=300, sleep=sleep)
        await store.set_with_ttl("k", "v", 1)

        store.start()
        assert store.eviction_running

        clock.advance(2_000)
        ticks.put_nowait(None)
        for _ in range(3):
            await asyncio.sleep(0)

        assert "k" not in store

        await store.stop()
        assert not store.eviction_running

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, clock):
        async def sleep(_: float) -> None:
            await asyncio.Event().wait()

        store = MemoryCounterStore(clock=clock, sleep=sleep)

        store.start()
        store.start()
        assert store.eviction_running

        await store.stop()
        await store.stop()
        assert not store.eviction_running

    @pytest.mark.asyncio
    async def test_context_manager_owns_eviction(self, clock):
        """connect()/disconnect() start and stop the eviction task."""
        store = MemoryCounterStore(clock=clock)

        async with store:
            assert store.eviction_running

        assert not store.eviction_running


class TestRedisCounterStore:
    """Tests for RedisCounterStore."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, redis_store):
        await redis_store.set_with_ttl("k", '{"count":1,"resetAt":1}', 60)

        assert await redis_store.get("k") == '{"count":1,"resetAt":1}'

    @pytest.mark.asyncio
    async def test_get_missing(self, redis_store):
        assert await redis_store.get("missing") is None

    @pytest.mark.asyncio
    async def test_ttl_applied(self, redis_store, fake_redis):
        """Values are written with SETEX and the requested expiry."""
        await redis_store.set_with_ttl("k", "v", 42)

        ttl = await fake_redis.ttl("k")
        assert 0 < ttl <= 42

    @pytest.mark.asyncio
    async def test_non_positive_ttl_clamped(self, redis_store, fake_redis):
        await redis_store.set_with_ttl("k", "v", 0)

        assert await fake_redis.ttl("k") == 1

    @pytest.mark.asyncio
    async def test_delete(self, redis_store, fake_redis):
        await redis_store.set_with_ttl("k", "v", 60)

        await redis_store.delete("k")

        assert await fake_redis.get("k") is None

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, redis_store):
        await redis_store.delete("missing")

    @pytest.mark.asyncio
    async def test_health_check_connected(self, redis_store):
        assert await redis_store.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_disconnected(self):
        """Test health check when disconnected."""
        assert await RedisCounterStore().health_check() is False

    @pytest.mark.asyncio
    async def test_health_check_error(self):
        """Test health check on error."""
        client = AsyncMock()
        client.ping.side_effect = ConnectionError("Connection refused")

        assert await RedisCounterStore(client=client).health_check() is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["get", "set_with_ttl", "delete"])
    async def test_not_connected(self, operation):
        """Every operation raises StoreUnavailableError before connect()."""
        store = RedisCounterStore()
        args = {"get": ("k",), "set_with_ttl": ("k", "v", 1), "delete": ("k",)}[operation]

        with pytest.raises(StoreUnavailableError, match="Redis not connected"):
            await getattr(store, operation)(*args)

    @pytest.mark.asyncio
    async def test_client_errors_propagate(self):
        """The store raises; failing open is the limiter's job."""
        client = AsyncMock()
        client.get.side_effect = TimeoutError("timed out")

        with pytest.raises(TimeoutError):
            await RedisCounterStore(client=client).get("k")

    @pytest.mark.asyncio
    async def test_connect(self):
        """connect() builds a client from settings and pings it."""
        client = MagicMock()
        client.ping = AsyncMock()

        with patch("windowgate.store.redis.Redis", return_value=client) as redis_cls:
            store = RedisCounterStore()
            await store.connect()

        client.ping.assert_awaited_once()
        kwargs = redis_cls.call_args.kwargs
        assert kwargs["decode_responses"] is True
        assert "socket_timeout" in kwargs

    @pytest.mark.asyncio
    async def test_disconnect(self):
        """Test disconnect."""
        client = AsyncMock()
        store = RedisCounterStore(client=client)

        await store.disconnect()

        client.aclose.assert_awaited_once()
        with pytest.raises(StoreUnavailableError):
            await store.get("k")


class TestCreateStore:
    """Tests for backend selection."""

    def test_memory_backend(self):
        store = create_store(Settings(store_backend="memory"))

        assert isinstance(store, MemoryCounterStore)

    def test_redis_backend(self):
        store = create_store(Settings(store_backend="redis"))

        assert isinstance(store, RedisCounterStore)
