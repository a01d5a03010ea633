"""FastAPI application for WindowGate."""

import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from windowgate import __version__
from windowgate.combined import get_combined_limiter
from windowgate.config import get_settings
from windowgate.demo import get_demo_limiter
from windowgate.limiter import get_limiter
from windowgate.logging import setup_logging
from windowgate.metrics import metrics
from windowgate.middleware import header_scope
from windowgate.models import EvaluateRequest, NamedPolicy, ResetRequest
from windowgate.policies import UnknownPolicyError, get_policy, list_policies
from windowgate.store import get_store

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    # Startup
    setup_logging()
    logger.info("windowgate_starting", version=__version__)

    store = get_store()
    try:
        await store.connect()
    except Exception as e:
        # Checks fail open until the store comes back
        logger.error("counter_store_connection_failed", backend=store.backend, error=str(e))

    demo_limiter = get_demo_limiter()
    demo_limiter.start()

    yield

    # Shutdown
    await demo_limiter.stop()
    await store.disconnect()
    logger.info("windowgate_stopped")


app = FastAPI(
    title="WindowGate Admission Control API",
    version=__version__,
    description="Per-IP and per-tenant rate limiting for multi-tenant applications",
    lifespan=lifespan,
)


# === Middleware ===


@app.middleware("http")
async def metrics_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Record HTTP metrics for each request."""
    if not get_settings().metrics_enabled:
        return await call_next(request)

    start_time = time.perf_counter()

    response: Response = await call_next(request)

    duration = time.perf_counter() - start_time
    endpoint = request.url.path
    method = request.method

    metrics.http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration.labels(
        method=method,
        endpoint=endpoint,
    ).observe(duration)

    return response


# === Health endpoints ===


@app.get("/health", tags=["Health"])
async def health() -> dict[str, Any]:
    """Health check endpoint."""
    store = get_store()
    store_healthy = await store.health_check()

    return {
        "status": "healthy" if store_healthy else "degraded",
        "version": __version__,
        "backend": store.backend,
        "checks": {
            "store": "ok" if store_healthy else "error",
        },
    }


@app.get("/ready", tags=["Health"])
async def ready() -> dict[str, str]:
    """Readiness check endpoint."""
    if not await get_store().health_check():
        raise HTTPException(status_code=503, detail="Counter store not available")
    return {"status": "ready"}


# === Metrics endpoint ===


@app.get("/metrics", tags=["Observability"])
async def prometheus_metrics() -> Response:
    """Prometheus metrics endpoint."""
    if not get_settings().metrics_enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# === Policy endpoints ===


@app.get("/policies", response_model=list[NamedPolicy], tags=["Policies"])
async def get_policies() -> list[NamedPolicy]:
    """List the registered presets."""
    return list_policies()


@app.get("/policies/{name}", response_model=NamedPolicy, tags=["Policies"])
async def get_policy_by_name(name: str) -> NamedPolicy:
    """Get one preset by name."""
    try:
        policy = get_policy(name)
    except UnknownPolicyError:
        raise HTTPException(status_code=404, detail="Policy not found") from None
    return NamedPolicy(
        name=name,
        limit=policy.limit,
        windowMs=policy.window_ms,
        keyNamespace=policy.key_namespace,
        burst=policy.burst,
    )


# === Evaluate endpoint ===


@app.post("/evaluate", tags=["Rate Limiting"])
async def evaluate(request: EvaluateRequest) -> JSONResponse:
    """Evaluate a named policy for a client IP and optional tenant."""
    try:
        policy = get_policy(request.policy)
    except UnknownPolicyError:
        raise HTTPException(status_code=404, detail="Policy not found") from None

    tenant_id = request.tenant_id or None
    decision = await get_combined_limiter().check_combined(request.client_ip, tenant_id, policy)

    headers = decision.to_headers(header_scope(tenant_id))
    if decision.retry_after is not None:
        headers["Retry-After"] = str(decision.retry_after)

    return JSONResponse(
        status_code=200 if decision.success else 429,
        content=decision.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


# === Admin endpoints ===


@app.post("/admin/reset", status_code=204, tags=["Admin"])
async def reset_counter(request: ResetRequest) -> Response:
    """Clear the counter for an identifier in a namespace."""
    await get_limiter().reset(request.identifier, request.key_namespace)
    return Response(status_code=204)


# === Error handlers ===


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("unhandled_exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


def create_app() -> FastAPI:
    """Factory function to create the app."""
    return app
