"""Sliding window rate limiter.

The window is fixed with a rolling reset: each identifier's window starts at
its first request and lasts ``window_ms``. Counters are read, modified and
written back without compare-and-swap, so two instances racing on the same
key can both admit a request the limit would have refused. That drift is
accepted in exchange for a single GET/SETEX round trip per check.
"""

import asyncio
import math
from collections.abc import Awaitable, Sequence
from typing import TypeVar

import structlog

from windowgate.clock import Clock, system_clock
from windowgate.config import get_settings
from windowgate.metrics import metrics
from windowgate.models import RateLimitDecision, RateLimitPolicy, RateWindow
from windowgate.store import CounterStore, get_store

logger = structlog.get_logger()

T = TypeVar("T")


def _ceil_seconds(ms: int) -> int:
    return math.ceil(ms / 1000)


class SlidingWindowLimiter:
    """Admit or deny requests for an identifier under a policy."""

    def __init__(
        self,
        store: CounterStore | None,
        clock: Clock | None = None,
        mirrors: Sequence[CounterStore] = (),
        timeout: float | None = None,
    ) -> None:
        """
        Args:
            store: counter store used for checks; None means it could not be
                built, and every check fails open
            clock: time source, defaults to the system clock
            mirrors: additional stores that ``reset`` also clears
            timeout: seconds a single store call may take before the check
                fails open
        """
        self._store = store
        self._clock = clock or system_clock
        self._mirrors = tuple(mirrors)
        self._timeout = timeout

    @property
    def store(self) -> CounterStore | None:
        return self._store

    async def _call(self, awaitable: Awaitable[T]) -> T:
        if self._timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, self._timeout)

    async def check(self, identifier: str, policy: RateLimitPolicy) -> RateLimitDecision:
        """Count one request for ``identifier`` and decide whether to admit it."""
        now = self._clock.now_ms()
        key = policy.get_key(identifier)

        try:
            decision = await self._evaluate(key, now, policy)
        except Exception as e:
            logger.warning(
                "rate_limit_store_error",
                key=key,
                backend=self._store.backend if self._store else None,
                error=repr(e),
            )
            metrics.checks_total.labels(namespace=policy.key_namespace, result="fail_open").inc()
            # Fail open without consuming quota
            return RateLimitDecision(
                success=True,
                limit=policy.limit,
                remaining=policy.limit,
                reset=(now + policy.window_ms) // 1000,
            )

        result = "allowed" if decision.success else "blocked"
        metrics.checks_total.labels(namespace=policy.key_namespace, result=result).inc()
        logger.debug(
            "rate_limit_evaluated",
            key=key,
            allow=decision.success,
            remaining=decision.remaining,
        )
        return decision

    async def _evaluate(self, key: str, now: int, policy: RateLimitPolicy) -> RateLimitDecision:
        if self._store is None:
            raise RuntimeError("counter store unavailable")

        window = RateWindow.loads(await self._call(self._store.get(key)))

        if window is None or window.is_expired(now):
            window = RateWindow(count=1, resetAt=now + policy.window_ms)
            await self._call(
                self._store.set_with_ttl(key, window.dumps(), _ceil_seconds(policy.window_ms))
            )
            return RateLimitDecision(
                success=True,
                limit=policy.limit,
                remaining=policy.limit - 1,
                reset=window.reset_at // 1000,
            )

        if window.count >= policy.limit:
            return RateLimitDecision(
                success=False,
                limit=policy.limit,
                remaining=0,
                reset=window.reset_at // 1000,
                retryAfter=_ceil_seconds(window.reset_at - now),
            )

        window = RateWindow(count=window.count + 1, resetAt=window.reset_at)
        # Keep the original expiry; only the remainder of the window is left
        await self._call(
            self._store.set_with_ttl(key, window.dumps(), _ceil_seconds(window.reset_at - now))
        )
        return RateLimitDecision(
            success=True,
            limit=policy.limit,
            remaining=max(0, policy.limit - window.count),
            reset=window.reset_at // 1000,
        )

    async def reset(self, identifier: str, key_namespace: str) -> None:
        """Forget the counter for ``identifier`` in every store this limiter knows."""
        key = f"{key_namespace}:{identifier}"
        stores = [s for s in (self._store, *self._mirrors) if s is not None]
        for store in stores:
            try:
                await self._call(store.delete(key))
            except Exception as e:
                logger.warning("rate_limit_reset_failed", key=key, backend=store.backend, error=repr(e))
        logger.info("rate_limit_reset", key=key, stores=len(stores))


# Singleton instance
_limiter: SlidingWindowLimiter | None = None


def get_limiter() -> SlidingWindowLimiter:
    """Get the limiter singleton bound to the configured store."""
    global _limiter
    if _limiter is None:
        try:
            store: CounterStore | None = get_store()
        except Exception as e:
            logger.error("counter_store_construction_failed", error=str(e))
            store = None
        _limiter = SlidingWindowLimiter(store, timeout=get_settings().store_timeout_seconds)
    return _limiter
