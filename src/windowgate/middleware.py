"""Admission middleware for Starlette/FastAPI request handlers."""

import functools
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog
from fastapi import HTTPException, Request, Response
from fastapi.responses import JSONResponse

from windowgate.clock import system_clock
from windowgate.combined import CombinedLimiter, get_combined_limiter
from windowgate.metrics import metrics
from windowgate.models import HeaderScope, RateLimitDecision, RateLimitPolicy

logger = structlog.get_logger()

TenantResolver = Callable[[Request], Awaitable[str | None]]
Handler = Callable[..., Awaitable[Response]]

# Checked after x-forwarded-for, first non-empty wins
FALLBACK_IP_HEADERS = ("cf-connecting-ip", "x-real-ip", "x-vercel-forwarded-for")

THROTTLE_MESSAGE = "Too many requests. Please slow down and try again."


def get_client_ip(source: Request | Mapping[str, str]) -> str:
    """
    Extract the client IP from proxy headers.

    Accepts a request or a header mapping (plain dicts must use lowercase
    names). x-forwarded-for may hold a chain of addresses; the first one is
    the client and is returned trimmed, even when blank.
    """
    headers = source.headers if isinstance(source, Request) else source

    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    for name in FALLBACK_IP_HEADERS:
        value = headers.get(name)
        if value:
            return value.strip()

    return "unknown"


def header_scope(tenant_id: str | None) -> HeaderScope:
    return HeaderScope.IP_ORG if tenant_id else HeaderScope.IP


async def resolve_tenant(request: Request, resolver: TenantResolver | None) -> str | None:
    """Run the tenant resolver; any failure narrows the check to IP only."""
    if resolver is None:
        return None
    try:
        tenant_id = await resolver(request)
    except Exception as e:
        logger.warning("tenant_resolution_failed", path=request.url.path, error=repr(e))
        return None
    return tenant_id or None


def _retry_after(decision: RateLimitDecision) -> int:
    if decision.retry_after is not None:
        return decision.retry_after
    return max(1, decision.reset - system_clock.now_ms() // 1000)


def throttle_response(decision: RateLimitDecision, scope: HeaderScope | str) -> JSONResponse:
    """Build the standard 429 response for a denied decision."""
    retry_after = _retry_after(decision)
    headers = {
        "Retry-After": str(retry_after),
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": str(decision.reset),
        "X-RateLimit-Scope": str(scope),
    }
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "code": "RATE_LIMIT_EXCEEDED",
            "message": THROTTLE_MESSAGE,
            "retryAfter": retry_after,
            "limit": decision.limit,
            "reset": decision.reset,
        },
        headers=headers,
    )


def with_rate_limit(
    handler: Handler,
    policy: RateLimitPolicy,
    tenant_resolver: TenantResolver | None = None,
    *,
    limiter: CombinedLimiter | None = None,
) -> Handler:
    """
    Wrap ``handler`` so every call is admitted by the combined limiter first.

    The handler receives the original request (its first argument must be
    named ``request``). Starlette caches the body, so the tenant resolver and
    the handler can both read it. Denied requests never reach the handler.
    """

    @functools.wraps(handler)
    async def wrapper(request: Request, *args: Any, **kwargs: Any) -> Response:
        combined = limiter if limiter is not None else get_combined_limiter()
        tenant_id = await resolve_tenant(request, tenant_resolver)
        client_ip = get_client_ip(request)
        scope = header_scope(tenant_id)

        decision = await combined.check_combined(client_ip, tenant_id, policy)

        if not decision.success:
            metrics.throttled_responses_total.labels(scope=str(scope)).inc()
            logger.info(
                "request_throttled",
                path=request.url.path,
                client_ip=client_ip,
                tenant_id=tenant_id,
                namespace=policy.key_namespace,
                retry_after=decision.retry_after,
            )
            return throttle_response(decision, scope)

        response = await handler(request, *args, **kwargs)
        response.headers.update(decision.to_headers(scope))
        return response

    return wrapper


def rate_limited(
    policy: RateLimitPolicy,
    tenant_resolver: TenantResolver | None = None,
    *,
    limiter: CombinedLimiter | None = None,
) -> Callable[[Handler], Handler]:
    """Decorator form of :func:`with_rate_limit`."""

    def decorator(handler: Handler) -> Handler:
        return with_rate_limit(handler, policy, tenant_resolver, limiter=limiter)

    return decorator


class RateLimitExceeded(HTTPException):
    """Raised by :func:`enforce_rate_limit` when a request is denied."""

    def __init__(self, decision: RateLimitDecision, scope: HeaderScope | str) -> None:
        retry_after = _retry_after(decision)
        super().__init__(
            status_code=429,
            detail=f"Rate limit exceeded. Please wait {retry_after} seconds before trying again.",
            headers={**decision.to_headers(scope), "Retry-After": str(retry_after)},
        )
        self.decision = decision


async def enforce_rate_limit(
    request: Request,
    policy: RateLimitPolicy,
    tenant_id: str | None = None,
    *,
    limiter: CombinedLimiter | None = None,
) -> RateLimitDecision:
    """Check the request and raise :class:`RateLimitExceeded` when denied."""
    combined = limiter if limiter is not None else get_combined_limiter()
    decision = await combined.check_combined(get_client_ip(request), tenant_id, policy)
    if not decision.success:
        scope = header_scope(tenant_id)
        metrics.throttled_responses_total.labels(scope=str(scope)).inc()
        raise RateLimitExceeded(decision, scope)
    return decision


def rate_limit_dependency(
    policy: RateLimitPolicy,
    tenant_resolver: TenantResolver | None = None,
    *,
    limiter: CombinedLimiter | None = None,
) -> Callable[[Request, Response], Awaitable[RateLimitDecision]]:
    """
    FastAPI dependency enforcing ``policy``.

    Usage:
        @app.post("/contacts", dependencies=[Depends(rate_limit_dependency(WRITE_CONTACTS))])
    """

    async def dependency(request: Request, response: Response) -> RateLimitDecision:
        tenant_id = await resolve_tenant(request, tenant_resolver)
        decision = await enforce_rate_limit(request, policy, tenant_id, limiter=limiter)
        response.headers.update(decision.to_headers(header_scope(tenant_id)))
        return decision

    return dependency
