"""Per-IP request and write counters for demo sessions.

Keeps a list of recent request and write timestamps per IP with separate
ceilings. Lists are pruned on every check; an owned background task drops
entries for IPs that stopped sending traffic.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from windowgate.clock import Clock, PeriodicTask, Sleeper, system_clock
from windowgate.config import get_settings

logger = structlog.get_logger()


@dataclass
class DemoEntry:
    requests: list[int] = field(default_factory=list)
    writes: list[int] = field(default_factory=list)

    def prune(self, cutoff: int) -> None:
        self.requests = [t for t in self.requests if t > cutoff]
        self.writes = [t for t in self.writes if t > cutoff]

    @property
    def empty(self) -> bool:
        return not self.requests and not self.writes


@dataclass(frozen=True)
class DemoCheckResult:
    allowed: bool
    remaining_requests: int
    remaining_writes: int
    reset_time_ms: int


class DemoRateLimiter:
    """In-process limiter with separate request and write ceilings per IP."""

    def __init__(
        self,
        requests_per_minute: int = 60,
        writes_per_minute: int = 10,
        window_ms: int = 60 * 1000,
        clock: Clock | None = None,
        cleanup_interval_seconds: float = 300.0,
        sleep: Sleeper | None = None,
    ) -> None:
        self.requests_per_minute = requests_per_minute
        self.writes_per_minute = writes_per_minute
        self.window_ms = window_ms
        self._clock = clock or system_clock
        self._store: dict[str, DemoEntry] = {}
        self._cleanup = PeriodicTask("demo-limiter-cleanup", cleanup_interval_seconds, self.cleanup, sleep)

    def __len__(self) -> int:
        return len(self._store)

    def start(self) -> None:
        self._cleanup.start()

    async def stop(self) -> None:
        await self._cleanup.stop()

    @property
    def cleanup_running(self) -> bool:
        return self._cleanup.running

    def cleanup(self) -> int:
        """Prune every entry and drop the empty ones; returns how many were dropped."""
        cutoff = self._clock.now_ms() - self.window_ms
        dropped = 0
        for ip in list(self._store):
            entry = self._store[ip]
            entry.prune(cutoff)
            if entry.empty:
                del self._store[ip]
                dropped += 1
        return dropped

    def check(self, ip: str, is_write: bool = False) -> DemoCheckResult:
        """Record one request (and a write, if ``is_write``) for ``ip``."""
        now = self._clock.now_ms()
        entry = self._store.setdefault(ip, DemoEntry())
        entry.prune(now - self.window_ms)
        reset_time = now + self.window_ms

        if is_write:
            entry.writes.append(now)
            if len(entry.writes) > self.writes_per_minute:
                return DemoCheckResult(
                    allowed=False,
                    remaining_requests=max(0, self.requests_per_minute - len(entry.requests)),
                    remaining_writes=0,
                    reset_time_ms=reset_time,
                )

        entry.requests.append(now)
        if len(entry.requests) > self.requests_per_minute:
            return DemoCheckResult(
                allowed=False,
                remaining_requests=0,
                remaining_writes=max(0, self.writes_per_minute - len(entry.writes)),
                reset_time_ms=reset_time,
            )

        return DemoCheckResult(
            allowed=True,
            remaining_requests=max(0, self.requests_per_minute - len(entry.requests)),
            remaining_writes=max(0, self.writes_per_minute - len(entry.writes)),
            reset_time_ms=reset_time,
        )

    def retry_after(self, result: DemoCheckResult) -> int:
        return -(-(result.reset_time_ms - self._clock.now_ms()) // 1000)


def demo_client_ip(request: Request) -> str:
    """Client address as the demo limiter keys it (raw header, no chain parsing)."""
    return request.headers.get("x-forwarded-for") or request.headers.get("x-real-ip") or "127.0.0.1"


def check_demo_rate_limit(
    request: Request, is_write: bool = False, limiter: DemoRateLimiter | None = None
) -> JSONResponse | None:
    """Return a 429 response when the demo limits are exceeded, None otherwise."""
    limiter = limiter if limiter is not None else get_demo_limiter()
    ip = demo_client_ip(request)
    result = limiter.check(ip, is_write)

    if result.allowed:
        return None

    retry_after = limiter.retry_after(result)
    message = (
        "Too many write operations. Please try again later."
        if is_write
        else "Too many requests. Please try again later."
    )
    logger.info("demo_rate_limit_exceeded", ip=ip, is_write=is_write, retry_after=retry_after)

    reset_iso = datetime.fromtimestamp(result.reset_time_ms / 1000, tz=timezone.utc).isoformat()
    return JSONResponse(
        status_code=429,
        content={"error": "Rate limit exceeded", "message": message, "retryAfter": retry_after},
        headers={
            "Retry-After": str(retry_after),
            "X-RateLimit-Remaining-Requests": str(result.remaining_requests),
            "X-RateLimit-Remaining-Writes": str(result.remaining_writes),
            "X-RateLimit-Reset": reset_iso,
        },
    )


# Singleton instance
_demo_limiter: DemoRateLimiter | None = None


def get_demo_limiter() -> DemoRateLimiter:
    """Get the demo limiter singleton."""
    global _demo_limiter
    if _demo_limiter is None:
        settings = get_settings()
        _demo_limiter = DemoRateLimiter(
            requests_per_minute=settings.demo_requests_per_minute,
            writes_per_minute=settings.demo_writes_per_minute,
            window_ms=settings.demo_window_seconds * 1000,
            cleanup_interval_seconds=settings.memory_eviction_interval_seconds,
        )
    return _demo_limiter
