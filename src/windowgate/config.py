"""Configuration settings for WindowGate."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="WINDOWGATE_", env_file=".env")

    # Server
    host: str = "127.0.0.1"  # Use WINDOWGATE_HOST=0.0.0.0 for Docker
    port: int = 8080
    debug: bool = False
    workers: int = 1  # Ignored when debug enables reload

    # Counter store: "memory" is single-process only
    store_backend: Literal["memory", "redis"] = "memory"

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0
    redis_pool_size: int = 50
    redis_socket_timeout: float = 0.5

    # Upper bound on a single store call before a check fails open
    store_timeout_seconds: float = 1.0

    # In-process store
    memory_eviction_interval_seconds: float = 300.0

    # Legacy demo limiter
    demo_requests_per_minute: int = 60
    demo_writes_per_minute: int = 10
    demo_window_seconds: int = 60

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Metrics
    metrics_enabled: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
