"""
Shared name handling for every resolver backend.

- "localhost" always resolves to the loopback address;
- IPv4 / IPv6 literals resolve to themselves, without any lookup;
- other names get a trailing dot, which avoids expensive trials with
  search-domain suffixes.
"""

from __future__ import annotations

import ipaddress
import re
from typing import List, Optional

from ..dto import Address

LOOPBACK: List[Address] = [Address(bytes([127, 0, 0, 1]))]
LOOPBACK6: List[Address] = [Address(bytes(15) + b"\x01")]

# Dotted notation, including forms with extra leading zeroes (127.0.0.01).
DOTTED_ADDRESS = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")


def literal_addresses(name: str) -> Optional[List[Address]]:
    """Return the fixed answer for localhost and address literals, else None."""
    if name == "localhost":
        return list(LOOPBACK)
    if DOTTED_ADDRESS.match(name):
        octets = [int(p) for p in name.split(".")]
        if all(0 <= o <= 255 for o in octets):
            return [Address(bytes(octets))]
        return None
    candidate = name[1:-1] if name.startswith("[") and name.endswith("]") else name
    if ":" in candidate:
        try:
            return [Address(ipaddress.IPv6Address(candidate).packed)]
        except ValueError:
            return None
    return None


def absolute_name(name: str) -> str:
    return name if name.endswith(".") else name + "."
