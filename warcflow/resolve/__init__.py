"""
Name resolution backends.

All three expose `resolve(name) -> List[Address]` and are selected once, at
construction time, by `build_resolver`.
"""

from __future__ import annotations

from typing import Optional

from ..config import ResolverConfig
from ..ports import ResolverPort
from .protocol import ProtocolResolver, Transport
from .synthetic import SyntheticResolver
from .system import SystemResolver


def build_resolver(cfg: Optional[ResolverConfig] = None, *, transport: Optional[Transport] = None) -> ResolverPort:
    """Return the backend named by `cfg.backend`."""
    cfg = cfg or ResolverConfig()
    if cfg.backend == "system":
        return SystemResolver()
    if cfg.backend == "protocol":
        return ProtocolResolver.from_config(cfg, transport=transport)
    if cfg.backend == "synthetic":
        return SyntheticResolver(width=cfg.synthetic_width)
    raise ValueError(f"unknown resolver backend: {cfg.backend!r}")


__all__ = [
    "build_resolver",
    "ProtocolResolver",
    "SyntheticResolver",
    "SystemResolver",
]
