"""
Resolver that speaks the DNS protocol directly.

Queries are built and replies parsed with dpkt.dns and sent over UDP to the
configured nameservers. Unlike the system backend this exposes the knobs a
long archive run cares about: per-attempt timeout, retries, and an answer
cache bounded by the records' TTL.

Failure mapping
---------------
- NXDOMAIN, or NOERROR without usable addresses  -> permanent
- SERVFAIL / REFUSED / other rcodes, timeouts,
  socket errors, malformed replies               -> temporary
"""

from __future__ import annotations

import logging
import random
import socket
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import dpkt  # type: ignore

from ..config import ResolverConfig
from ..dto import Address
from ..errors import NameResolutionError, PermanentNameResolutionError, TemporaryNameResolutionError
from .common import literal_addresses

logger = logging.getLogger(__name__)

# (query bytes, (server, port), timeout) -> reply bytes; raises socket.timeout / OSError
Transport = Callable[[bytes, Tuple[str, int], float], bytes]

_RESOLV_CONF = "/etc/resolv.conf"
_MAX_UDP = 4096
_MAX_CNAME_HOPS = 8


def udp_transport(query: bytes, server: Tuple[str, int], timeout: float) -> bytes:
    """Send one datagram and wait for one reply."""
    family = socket.AF_INET6 if ":" in server[0] else socket.AF_INET
    with socket.socket(family, socket.SOCK_DGRAM) as sock:
        sock.settimeout(timeout)
        sock.sendto(query, server)
        data, _ = sock.recvfrom(_MAX_UDP)
        return data


def system_nameservers(path: str = _RESOLV_CONF) -> List[str]:
    """Nameservers listed in resolv.conf, or the loopback resolver."""
    servers: List[str] = []
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                parts = line.split()
                if len(parts) >= 2 and parts[0] == "nameserver":
                    servers.append(parts[1])
    except OSError:
        pass
    return servers or ["127.0.0.1"]


class ProtocolResolver:
    """
    DNS-protocol resolver with timeout, retries and a TTL cache.

    Parameters
    ----------
    nameservers : Sequence[str]
        Servers tried in order; empty means read /etc/resolv.conf.
    port : int
        Nameserver port.
    timeout : float
        Seconds to wait for each reply.
    retries : int
        Extra attempts per nameserver on timeout or socket error.
    cache_ttl : int
        Upper bound on how long an answer is cached; 0 disables caching.
    ipv6 : bool
        Also query AAAA records (v4 addresses are listed first).
    transport : Transport | None
        Replaces the UDP exchange (tests).
    """

    def __init__(
        self,
        nameservers: Sequence[str] = (),
        *,
        port: int = 53,
        timeout: float = 2.0,
        retries: int = 2,
        cache_ttl: int = 3600,
        ipv6: bool = False,
        transport: Optional[Transport] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._servers = list(nameservers) or system_nameservers()
        self._port = int(port)
        self._timeout = float(timeout)
        self._retries = int(retries)
        self._cache_ttl = int(cache_ttl)
        self._qtypes = (dpkt.dns.DNS_A, dpkt.dns.DNS_AAAA) if ipv6 else (dpkt.dns.DNS_A,)
        self._transport = transport or udp_transport
        self._clock = clock
        self._cache: Dict[str, Tuple[float, List[Address]]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg: ResolverConfig, transport: Optional[Transport] = None) -> "ProtocolResolver":
        return cls(
            cfg.nameservers,
            port=cfg.port,
            timeout=cfg.timeout_seconds,
            retries=cfg.retries,
            cache_ttl=cfg.cache_ttl_seconds,
            ipv6=cfg.ipv6,
            transport=transport,
        )

    # --- public ---

    def resolve(self, name: str) -> List[Address]:
        fixed = literal_addresses(name)
        if fixed is not None:
            return fixed

        qname = name.rstrip(".").lower()
        cached = self._cache_get(qname)
        if cached is not None:
            return cached

        addresses: List[Address] = []
        min_ttl: Optional[int] = None
        permanent: Optional[NameResolutionError] = None
        for qtype in self._qtypes:
            try:
                found, ttl = self._query(qname, qtype)
            except PermanentNameResolutionError as exc:
                # With AAAA enabled a name may legitimately lack one family.
                permanent = exc
                continue
            addresses.extend(found)
            min_ttl = ttl if min_ttl is None else min(min_ttl, ttl)

        if not addresses:
            raise permanent or PermanentNameResolutionError(name, "no addresses")
        self._cache_put(qname, addresses, min_ttl or 0)
        return list(addresses)

    # --- protocol ---

    def _query(self, qname: str, qtype: int) -> Tuple[List[Address], int]:
        query = dpkt.dns.DNS(
            id=random.randint(0, 0xFFFF),
            op=dpkt.dns.DNS_RD,
            qd=[dpkt.dns.DNS.Q(name=qname, type=qtype, cls=dpkt.dns.DNS_IN)],
        )
        wire = bytes(query)

        last_error: Optional[BaseException] = None
        for server in self._servers:
            for attempt in range(self._retries + 1):
                try:
                    raw = self._transport(wire, (server, self._port), self._timeout)
                except (socket.timeout, OSError) as exc:
                    last_error = exc
                    logger.debug("dns %s attempt %d to %s failed: %s", qname, attempt + 1, server, exc)
                    continue
                try:
                    reply = dpkt.dns.DNS(raw)
                except (dpkt.UnpackError, dpkt.NeedData) as exc:
                    last_error = exc
                    continue
                if reply.id != query.id or reply.qr != dpkt.dns.DNS_R:
                    last_error = ValueError("reply does not match query")
                    continue
                return self._interpret(qname, qtype, reply)

        raise TemporaryNameResolutionError(qname, f"no usable reply: {last_error}")

    def _interpret(self, qname: str, qtype: int, reply) -> Tuple[List[Address], int]:
        if reply.rcode == dpkt.dns.DNS_RCODE_NXDOMAIN:
            raise PermanentNameResolutionError(qname, "NXDOMAIN")
        if reply.rcode != dpkt.dns.DNS_RCODE_NOERR:
            raise TemporaryNameResolutionError(qname, f"rcode {reply.rcode}")

        # Follow CNAME chains inside the answer section.
        wanted = {qname}
        for _ in range(_MAX_CNAME_HOPS):
            grown = False
            for rr in reply.an:
                if rr.type == dpkt.dns.DNS_CNAME and rr.name.rstrip(".").lower() in wanted:
                    target = rr.cname.rstrip(".").lower()
                    if target not in wanted:
                        wanted.add(target)
                        grown = True
            if not grown:
                break

        addresses: List[Address] = []
        ttl: Optional[int] = None
        for rr in reply.an:
            if rr.type != qtype or rr.name.rstrip(".").lower() not in wanted:
                continue
            packed = rr.ip if qtype == dpkt.dns.DNS_A else rr.ip6
            addresses.append(Address(bytes(packed)))
            ttl = rr.ttl if ttl is None else min(ttl, rr.ttl)

        if not addresses:
            raise PermanentNameResolutionError(qname, "no data")
        return addresses, ttl or 0

    # --- cache ---

    def _cache_get(self, qname: str) -> Optional[List[Address]]:
        if self._cache_ttl <= 0:
            return None
        with self._lock:
            hit = self._cache.get(qname)
            if hit is None:
                return None
            expires, addresses = hit
            if self._clock() >= expires:
                del self._cache[qname]
                return None
            return list(addresses)

    def _cache_put(self, qname: str, addresses: List[Address], ttl: int) -> None:
        if self._cache_ttl <= 0 or ttl <= 0:
            return
        with self._lock:
            self._cache[qname] = (self._clock() + min(ttl, self._cache_ttl), list(addresses))
