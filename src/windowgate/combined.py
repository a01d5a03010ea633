"""Combined IP + tenant rate limiting."""

import structlog

from windowgate.limiter import SlidingWindowLimiter, get_limiter
from windowgate.models import RateLimitDecision, RateLimitPolicy, Scope

logger = structlog.get_logger()


class CombinedLimiter:
    """
    Check a client IP and, when known, its tenant against the same policy.

    Burst capacity replaces the limit on the IP dimension only; a tenant's
    aggregate traffic stays bounded by the nominal limit however its clients
    burst.
    """

    def __init__(self, limiter: SlidingWindowLimiter | None = None) -> None:
        self._limiter = limiter if limiter is not None else get_limiter()

    @property
    def limiter(self) -> SlidingWindowLimiter:
        return self._limiter

    async def check_combined(
        self, client_ip: str, tenant_id: str | None, policy: RateLimitPolicy
    ) -> RateLimitDecision:
        """
        Evaluate both dimensions and return the more restrictive outcome.

        Returns: a decision whose ``limit`` is always the nominal policy limit
        """
        ip_policy = policy.with_namespace(f"{policy.key_namespace}:{Scope.IP}").with_limit(
            policy.ip_limit
        )
        ip_result = await self._limiter.check(client_ip, ip_policy)

        if not tenant_id:
            return RateLimitDecision(
                success=ip_result.success,
                limit=policy.limit,
                remaining=min(ip_result.remaining, policy.limit),
                reset=ip_result.reset,
                retryAfter=ip_result.retry_after,
            )

        org_policy = policy.with_namespace(f"{policy.key_namespace}:{Scope.ORG}")
        org_result = await self._limiter.check(tenant_id, org_policy)

        remaining = min(ip_result.remaining, org_result.remaining, policy.limit)
        reset = max(ip_result.reset, org_result.reset)

        if not ip_result.success or not org_result.success:
            logger.info(
                "combined_rate_limit_exceeded",
                client_ip=client_ip,
                tenant_id=tenant_id,
                namespace=policy.key_namespace,
                ip_blocked=not ip_result.success,
                org_blocked=not org_result.success,
            )
            return RateLimitDecision(
                success=False,
                limit=policy.limit,
                remaining=0,
                reset=reset,
                retryAfter=max(ip_result.retry_after or 0, org_result.retry_after or 0),
            )

        return RateLimitDecision(
            success=True,
            limit=policy.limit,
            remaining=remaining,
            reset=reset,
        )


# Singleton instance
_combined: CombinedLimiter | None = None


def get_combined_limiter() -> CombinedLimiter:
    """Get the combined limiter singleton."""
    global _combined
    if _combined is None:
        _combined = CombinedLimiter()
    return _combined
