"""
Configuration schema for archive processing runs.

Keep this lean: only the knobs the runners, the resolver backends and the
logging setup actually read. Every model is frozen so one instance can be
shared across worker threads. `from_env()` builds a model from WARCFLOW_*
environment variables, falling back to the field defaults.
"""

from __future__ import annotations

import os
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


def _default_workers() -> int:
    return os.cpu_count() or 1


def _env(name: str) -> Optional[str]:
    value = os.getenv(f"WARCFLOW_{name}")
    return value if value not in (None, "") else None


class RunnerConfig(BaseModel):
    """Knobs for the sequential and parallel runners."""

    model_config = ConfigDict(frozen=True)

    # === Parallelism ===
    worker_count: int = Field(
        default_factory=_default_workers,
        ge=1,
        description="Default number of worker threads for run(); defaults to available CPUs.",
    )
    segments_per_worker: int = Field(
        default=1,
        ge=1,
        description="The container is split into worker_count * segments_per_worker segments.",
    )

    # === Sink admission / backpressure ===
    queue_capacity_factor: int = Field(
        default=2,
        ge=1,
        description="Reordering queue holds queue_capacity_factor * worker_count finished segments.",
    )
    spool_max_bytes: int = Field(
        default=8 * 1024 * 1024,
        ge=0,
        description="Worker-local output is kept in memory up to this size, then spilled to disk.",
    )

    # === Progress ===
    progress_every: int = Field(
        default=100_000,
        ge=1,
        description="Log a progress line every this many records.",
    )

    @classmethod
    def from_env(cls) -> "RunnerConfig":
        values = {}
        for field_name, env_name in (
            ("worker_count", "WORKERS"),
            ("segments_per_worker", "SEGMENTS_PER_WORKER"),
            ("queue_capacity_factor", "QUEUE_CAPACITY_FACTOR"),
            ("spool_max_bytes", "SPOOL_MAX_BYTES"),
            ("progress_every", "PROGRESS_EVERY"),
        ):
            raw = _env(env_name)
            if raw is not None:
                values[field_name] = int(raw)
        return cls(**values)


class ResolverConfig(BaseModel):
    """Construction-time selection and tuning of the name resolution backend."""

    model_config = ConfigDict(frozen=True)

    backend: Literal["system", "protocol", "synthetic"] = Field(
        default="system",
        description="Which resolver implementation build_resolver() returns.",
    )

    # === Protocol backend ===
    nameservers: Tuple[str, ...] = Field(
        default=(),
        description="Nameserver addresses; empty means read /etc/resolv.conf.",
    )
    port: int = Field(default=53, ge=1, le=65535)
    timeout_seconds: float = Field(
        default=2.0,
        gt=0.0,
        description="Per-attempt timeout; the only bound on a stalled lookup.",
    )
    retries: int = Field(default=2, ge=0, description="Extra attempts per nameserver.")
    cache_ttl_seconds: int = Field(
        default=3600,
        ge=0,
        description="Upper bound on how long answers are cached (0 disables the cache).",
    )
    ipv6: bool = Field(default=False, description="Also query AAAA records.")

    # === Synthetic backend ===
    synthetic_width: Literal[4, 16] = Field(
        default=4,
        description="Byte width of synthetic addresses (4 for IPv4-shaped, 16 for IPv6-shaped).",
    )

    @classmethod
    def from_env(cls) -> "ResolverConfig":
        values: dict = {}
        if _env("RESOLVER") is not None:
            values["backend"] = _env("RESOLVER")
        if _env("NAMESERVERS") is not None:
            values["nameservers"] = tuple(s.strip() for s in _env("NAMESERVERS").split(",") if s.strip())
        if _env("DNS_TIMEOUT") is not None:
            values["timeout_seconds"] = float(_env("DNS_TIMEOUT"))
        if _env("DNS_RETRIES") is not None:
            values["retries"] = int(_env("DNS_RETRIES"))
        if _env("DNS_CACHE_TTL") is not None:
            values["cache_ttl_seconds"] = int(_env("DNS_CACHE_TTL"))
        if _env("DNS_IPV6") is not None:
            values["ipv6"] = _env("DNS_IPV6").lower() in ("1", "true", "yes", "on")
        if _env("SYNTHETIC_WIDTH") is not None:
            values["synthetic_width"] = int(_env("SYNTHETIC_WIDTH"))
        return cls(**values)


class LoggingConfig(BaseModel):
    """Console logging plus an optional rotating log file."""

    model_config = ConfigDict(frozen=True)

    level: str = Field(default="INFO", description="DEBUG / INFO / WARNING / ERROR.")
    log_file: Optional[str] = Field(default=None, description="Rotating log file; None logs to console only.")
    max_bytes: int = Field(default=1_000_000, ge=1024)
    backup_count: int = Field(default=5, ge=0)

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        values: dict = {}
        if _env("LOG_LEVEL") is not None:
            values["level"] = _env("LOG_LEVEL")
        if _env("LOG_FILE") is not None:
            values["log_file"] = _env("LOG_FILE")
        return cls(**values)
