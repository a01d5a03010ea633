#!/usr/bin/env python3
"""
Latency benchmark for the WindowGate /evaluate endpoint.

Sends admission checks for a named preset, spreading them over a pool of
synthetic client IPs, and reports p50/p95/p99 latency and throughput.
Both 200 (admitted) and 429 (throttled) count as successful calls.

Usage:
    python benchmark_latency.py --url http://localhost:8080 --requests 1000
    python benchmark_latency.py --policy write:contacts --tenant org-bench --concurrent 50 --requests 5000
"""

import argparse
import asyncio
import itertools
import json
import statistics
import time
from dataclasses import dataclass, field

import httpx


@dataclass
class BenchmarkResult:
    """Aggregated outcome of one benchmark run."""

    total_requests: int = 0
    admitted: int = 0
    throttled: int = 0
    errors: int = 0
    duration_seconds: float = 0.0
    latencies_ms: list[float] = field(default_factory=list)

    def record(self, latency_ms: float, status: int | None) -> None:
        self.total_requests += 1
        self.latencies_ms.append(latency_ms)
        if status == 200:
            self.admitted += 1
        elif status == 429:
            self.throttled += 1
        else:
            self.errors += 1

    @property
    def throughput(self) -> float:
        return self.total_requests / self.duration_seconds if self.duration_seconds else 0.0

    def percentile(self, p: int) -> float:
        if not self.latencies_ms:
            return 0.0
        ordered = sorted(self.latencies_ms)
        return ordered[min(int(len(ordered) * p / 100), len(ordered) - 1)]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON export."""
        latencies = self.latencies_ms or [0.0]
        return {
            "total_requests": self.total_requests,
            "admitted": self.admitted,
            "throttled": self.throttled,
            "errors": self.errors,
            "duration_seconds": round(self.duration_seconds, 3),
            "throughput_rps": round(self.throughput, 2),
            "latency_ms": {
                "mean": round(statistics.mean(latencies), 2),
                "stdev": round(statistics.stdev(latencies), 2) if len(latencies) > 1 else 0,
                "p50": round(self.percentile(50), 2),
                "p95": round(self.percentile(95), 2),
                "p99": round(self.percentile(99), 2),
                "min": round(min(latencies), 2),
                "max": round(max(latencies), 2),
            },
        }


async def evaluate_once(
    client: httpx.AsyncClient, base_url: str, payload: dict[str, str]
) -> tuple[float, int | None]:
    """Returns: (latency_ms, status code or None on transport error)"""
    start = time.perf_counter()
    try:
        response = await client.post(f"{base_url}/evaluate", json=payload)
        status: int | None = response.status_code
    except httpx.HTTPError:
        status = None
    return (time.perf_counter() - start) * 1000, status


def build_payloads(policy: str, tenant: str | None, ip_pool: int):
    """Cycle through ``ip_pool`` documentation-range addresses."""
    for i in itertools.count():
        payload = {"clientIp": f"198.51.100.{i % ip_pool + 1}", "policy": policy}
        if tenant:
            payload["tenantId"] = tenant
        yield payload


async def run_benchmark(
    base_url: str,
    policy: str,
    tenant: str | None,
    ip_pool: int,
    num_requests: int,
    concurrency: int,
) -> BenchmarkResult:
    """Run ``num_requests`` checks with ``concurrency`` workers (1 = sequential)."""
    result = BenchmarkResult()
    payloads = build_payloads(policy, tenant, ip_pool)
    pending = itertools.islice(payloads, num_requests)

    async def worker(client: httpx.AsyncClient) -> None:
        for payload in pending:
            latency_ms, status = await evaluate_once(client, base_url, payload)
            result.record(latency_ms, status)

    limits = httpx.Limits(max_connections=max(concurrency, 1))
    async with httpx.AsyncClient(timeout=30.0, limits=limits) as client:
        start = time.perf_counter()
        await asyncio.gather(*(worker(client) for _ in range(max(concurrency, 1))))
        result.duration_seconds = time.perf_counter() - start

    return result


def print_results(result: BenchmarkResult, title: str) -> None:
    """Print benchmark results in a formatted table."""
    data = result.to_dict()
    latency = data["latency_ms"]
    print(f"\n{'=' * 60}")
    print(f"  {title}")
    print(f"{'=' * 60}")
    print(f"  Total requests:      {result.total_requests:,}")
    print(f"  Admitted (200):      {result.admitted:,}")
    print(f"  Throttled (429):     {result.throttled:,}")
    print(f"  Errors:              {result.errors:,}")
    print(f"  Duration:            {result.duration_seconds:.2f}s")
    print(f"  Throughput:          {result.throughput:,.2f} req/s")
    print()
    print("  Latency (ms):")
    for name in ("mean", "stdev", "p50", "p95", "p99", "min", "max"):
        print(f"    {name.upper():<19}{latency[name]:.2f}")
    print(f"{'=' * 60}")


async def main() -> None:
    parser = argparse.ArgumentParser(description="WindowGate latency benchmark")
    parser.add_argument("--url", default="http://localhost:8080", help="WindowGate URL")
    parser.add_argument("--policy", default="demo:api", help="Preset name to evaluate")
    parser.add_argument("--tenant", default=None, help="Tenant ID (omit for IP-only checks)")
    parser.add_argument("--ip-pool", type=int, default=250, help="Number of distinct client IPs")
    parser.add_argument("--requests", type=int, default=1000, help="Number of requests")
    parser.add_argument("--concurrent", type=int, default=1, help="Concurrent workers")
    parser.add_argument("--output", help="Output JSON file")

    args = parser.parse_args()

    print("🚀 WindowGate Benchmark")
    print(f"   URL: {args.url}")
    print(f"   Policy: {args.policy}")
    print(f"   Requests: {args.requests}")

    result = await run_benchmark(
        args.url, args.policy, args.tenant, args.ip_pool, args.requests, args.concurrent
    )
    title = "Sequential" if args.concurrent <= 1 else f"Concurrent ({args.concurrent} workers)"
    print_results(result, title)

    if args.output:
        with open(args.output, "w") as f:
            json.dump({"policy": args.policy, "result": result.to_dict()}, f, indent=2)
        print(f"\n📄 Results saved to {args.output}")


if __name__ == "__main__":
    asyncio.run(main())
