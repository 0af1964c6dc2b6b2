"""
Bundled processors: record -> value (or None to drop the record for a stage).

All are stateless, so a chain copy shares them between workers.
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from ..dto import Address, Record
from ..ports import ProcessorPort, ResolverPort


class IdentityProcessor:
    """Pass the record through unchanged."""

    name = "identity"

    def process(self, record: Record) -> Record:
        return record


class TargetUriExtractor:
    """WARC-Target-URI of the record; records without one are dropped."""

    name = "target-uri"

    def process(self, record: Record) -> Optional[str]:
        return record.target_uri or None


class ResponseContentExtractor:
    """
    Decoded HTTP entity of a response record.

    The entity is decoded with the charset declared in Content-Type when the
    codec is known, else as UTF-8; undecodable bytes are replaced.
    Non-response records and unparsable HTTP messages are dropped.
    """

    name = "response-content"

    def __init__(self, default_charset: str = "utf-8") -> None:
        self.default_charset = default_charset

    def process(self, record: Record) -> Optional[str]:
        response = record.http_response()
        if response is None:
            return None
        charset = response.charset or self.default_charset
        try:
            codecs.lookup(charset)
        except LookupError:
            charset = self.default_charset
        return response.entity.decode(charset, errors="replace")


@dataclass(frozen=True)
class HostAddresses:
    """A host and the addresses it resolved to; str() is "host<TAB>a1,a2"."""

    host: str
    addresses: Tuple[Address, ...]

    def __str__(self) -> str:
        return f"{self.host}\t{','.join(str(a) for a in self.addresses)}"


class HostAddressExtractor:
    """
    Resolve the host of the record's target URI.

    Resolution errors are not caught here: the stage fails for that record
    and the run continues.
    """

    name = "host-address"

    def __init__(self, resolver: ResolverPort) -> None:
        self.resolver = resolver

    def process(self, record: Record) -> Optional[HostAddresses]:
        host = record.host
        if not host:
            return None
        addresses: List[Address] = self.resolver.resolve(host)
        return HostAddresses(host=host, addresses=tuple(addresses))


# === Registry ===

ProcessorFactory = Callable[[Optional[ResolverPort]], ProcessorPort]


def _needs_resolver(resolver: Optional[ResolverPort]) -> ProcessorPort:
    if resolver is None:
        raise ValueError("host-address needs a resolver")
    return HostAddressExtractor(resolver)


PROCESSORS: Dict[str, ProcessorFactory] = {
    "identity": lambda resolver: IdentityProcessor(),
    "target-uri": lambda resolver: TargetUriExtractor(),
    "response-content": lambda resolver: ResponseContentExtractor(),
    "host-address": _needs_resolver,
}


def build_processor(name: str, resolver: Optional[ResolverPort] = None) -> ProcessorPort:
    factory = PROCESSORS.get(name.strip().lower())
    if factory is None:
        raise ValueError(f"unknown processor {name!r}; known: {', '.join(sorted(PROCESSORS))}")
    return factory(resolver)
