"""Named rate limit presets."""

from types import MappingProxyType

from windowgate.models import DEFAULT_NAMESPACE, NamedPolicy, RateLimitPolicy

MINUTE_MS = 60 * 1000


class UnknownPolicyError(KeyError):
    """No preset is registered under the requested name."""


def _preset(name: str, limit: int, window_ms: int, burst: int | None = None) -> RateLimitPolicy:
    return RateLimitPolicy(
        limit=limit,
        windowMs=window_ms,
        keyNamespace=f"{DEFAULT_NAMESPACE}:{name}",
        burst=burst,
    )


# Demo sessions: per-IP, no burst
DEMO_AUTH = _preset("demo:auth", 10, MINUTE_MS)
DEMO_API = _preset("demo:api", 30, MINUTE_MS)
DEMO_EXPORT = _preset("demo:export", 3, 5 * MINUTE_MS)

# Write endpoints: nominal limit per tenant, burst ceiling per client IP
WRITE_CONTACTS = _preset("write:contacts", 100, MINUTE_MS, burst=120)
WRITE_DEALS = _preset("write:deals", 50, MINUTE_MS, burst=120)
WRITE_IMPORT = _preset("write:import", 5, MINUTE_MS, burst=120)
WRITE_EMAIL = _preset("write:email", 200, MINUTE_MS, burst=120)
WRITE_COMPANIES = _preset("write:companies", 60, MINUTE_MS, burst=120)
WRITE_PIPELINES = _preset("write:pipelines", 60, MINUTE_MS, burst=120)

POLICIES: MappingProxyType[str, RateLimitPolicy] = MappingProxyType(
    {
        "demo:auth": DEMO_AUTH,
        "demo:api": DEMO_API,
        "demo:export": DEMO_EXPORT,
        "write:contacts": WRITE_CONTACTS,
        "write:deals": WRITE_DEALS,
        "write:import": WRITE_IMPORT,
        "write:email": WRITE_EMAIL,
        "write:companies": WRITE_COMPANIES,
        "write:pipelines": WRITE_PIPELINES,
    }
)


def get_policy(name: str) -> RateLimitPolicy:
    """Look up a preset by name."""
    try:
        return POLICIES[name]
    except KeyError:
        raise UnknownPolicyError(name) from None


def list_policies() -> list[NamedPolicy]:
    """All presets, in registration order."""
    return [
        NamedPolicy(
            name=name,
            limit=policy.limit,
            windowMs=policy.window_ms,
            keyNamespace=policy.key_namespace,
            burst=policy.burst,
        )
        for name, policy in POLICIES.items()
    ]
