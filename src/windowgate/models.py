"""Domain models for WindowGate."""

import json
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, ValidationError

DEFAULT_NAMESPACE = "ratelimit"


class Scope(StrEnum):
    """Dimension a counter is kept for under the combined check."""

    IP = "ip"
    ORG = "org"


class HeaderScope(StrEnum):
    """Value of the X-RateLimit-Scope header."""

    IP = "ip"
    IP_ORG = "ip+org"


class RateLimitPolicy(BaseModel):
    """Immutable rate limiting policy."""

    limit: int = Field(..., ge=1)
    window_ms: int = Field(..., alias="windowMs", ge=1)
    key_namespace: str = Field(DEFAULT_NAMESPACE, alias="keyNamespace", min_length=1)
    burst: int | None = Field(None, ge=1)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def ip_limit(self) -> int:
        """Ceiling applied to the client IP dimension."""
        return self.burst if self.burst is not None else self.limit

    @property
    def window_seconds(self) -> int:
        return -(-self.window_ms // 1000)

    def with_namespace(self, key_namespace: str) -> "RateLimitPolicy":
        return self.model_copy(update={"key_namespace": key_namespace})

    def with_limit(self, limit: int) -> "RateLimitPolicy":
        return self.model_copy(update={"limit": limit})

    def get_key(self, identifier: str) -> str:
        """Generate the counter store key for an identifier."""
        return f"{self.key_namespace}:{identifier}"


class RateWindow(BaseModel):
    """Counter state for one (policy, identifier) pair."""

    count: int = Field(..., ge=1)
    reset_at: int = Field(..., alias="resetAt")

    model_config = ConfigDict(populate_by_name=True, strict=True)

    def dumps(self) -> str:
        """Serialize to the compact record stored in the counter store."""
        return json.dumps({"count": self.count, "resetAt": self.reset_at}, separators=(",", ":"))

    @classmethod
    def loads(cls, raw: str | bytes | None) -> "RateWindow | None":
        """Parse a stored record; anything unreadable is treated as absent."""
        if raw is None:
            return None
        try:
            return cls.model_validate(json.loads(raw))
        except (ValueError, TypeError, ValidationError):
            return None

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.reset_at


class RateLimitDecision(BaseModel):
    """Result of a rate limit check."""

    success: bool
    limit: int
    remaining: int = Field(..., ge=0)
    reset: int
    retry_after: int | None = Field(None, alias="retryAfter")

    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)

    def to_headers(self, scope: HeaderScope | str | None = None) -> dict[str, str]:
        """Rate limit headers describing this decision."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }
        if scope is not None:
            headers["X-RateLimit-Scope"] = str(scope)
        return headers


class EvaluateRequest(BaseModel):
    """Request to evaluate a named policy for a client."""

    client_ip: str = Field(..., alias="clientIp", min_length=1)
    tenant_id: str | None = Field(None, alias="tenantId")
    policy: str = Field(..., min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class ResetRequest(BaseModel):
    """Request to clear one counter."""

    identifier: str = Field(..., min_length=1)
    key_namespace: str = Field(..., alias="keyNamespace", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class NamedPolicy(BaseModel):
    """A registry preset as exposed over HTTP."""

    name: str
    limit: int
    window_ms: int = Field(..., alias="windowMs")
    key_namespace: str = Field(..., alias="keyNamespace")
    burst: int | None = None

    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)
