"""
Resolver backed by the host's native resolution (getaddrinfo).

Returns the addresses in the order the host environment reports them, with
duplicates (one per socket type) removed. Timeouts and caching are whatever
the host is configured with; use the protocol backend for control over them.
"""

from __future__ import annotations

import socket
from typing import List

from ..dto import Address
from ..errors import PermanentNameResolutionError, TemporaryNameResolutionError
from .common import absolute_name, literal_addresses

_PERMANENT_EAI = {
    getattr(socket, "EAI_NONAME", None),
    getattr(socket, "EAI_NODATA", None),
    getattr(socket, "EAI_FAIL", None),
} - {None}


class SystemResolver:
    """`resolve(name)` through socket.getaddrinfo()."""

    def resolve(self, name: str) -> List[Address]:
        fixed = literal_addresses(name)
        if fixed is not None:
            return fixed

        try:
            infos = socket.getaddrinfo(absolute_name(name), None)
        except socket.gaierror as exc:
            if exc.errno in _PERMANENT_EAI:
                raise PermanentNameResolutionError(name, str(exc)) from exc
            raise TemporaryNameResolutionError(name, str(exc)) from exc
        except (OSError, UnicodeError) as exc:
            raise TemporaryNameResolutionError(name, str(exc)) from exc

        seen = set()
        addresses: List[Address] = []
        for family, _type, _proto, _canon, sockaddr in infos:
            if family == socket.AF_INET:
                packed = socket.inet_pton(socket.AF_INET, sockaddr[0])
            elif family == socket.AF_INET6:
                packed = socket.inet_pton(socket.AF_INET6, sockaddr[0].split("%", 1)[0])
            else:
                continue
            if packed not in seen:
                seen.add(packed)
                addresses.append(Address(packed))

        if not addresses:
            raise PermanentNameResolutionError(name, "no addresses")
        return addresses
