"""IPv4 network and broadcast address calculation."""

from __future__ import annotations

import ipaddress
from typing import Optional, Union

_Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
_ALL_ONES = 0xFFFFFFFF


def _parse(text: str) -> Optional[_Address]:
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        return None


def _as_ipv4(address: _Address) -> Optional[ipaddress.IPv4Address]:
    if isinstance(address, ipaddress.IPv4Address):
        return address
    return address.ipv4_mapped


def _prefix_length(mask: int) -> int:
    host_bits = ~mask & _ALL_ONES
    if host_bits & (host_bits + 1):
        # Not a contiguous run of leading ones.
        return 0
    return 32 - host_bits.bit_length()


def calculate_network_and_broadcast(ip_address: str, netmask: str) -> tuple[str, str, int]:
    """Return (network, broadcast, prefix length) for an IPv4 address and netmask.

    Raises ValueError for an unparsable address or netmask. For anything that
    is not IPv4 the result is ("", "", 0).
    """
    ip = _parse(ip_address)
    if ip is None:
        raise ValueError(f"Invalid IP '{ip_address}'")

    mask = _parse(netmask)
    if mask is None:
        raise ValueError(f"Invalid netmask '{netmask}'")

    ip4 = _as_ipv4(ip)
    mask4 = _as_ipv4(mask)
    if ip4 is None or mask4 is None:
        return "", "", 0

    ip_int = int(ip4)
    mask_int = int(mask4)
    network = ipaddress.IPv4Address(ip_int & mask_int)
    broadcast = ipaddress.IPv4Address(ip_int | (~mask_int & _ALL_ONES))
    return str(network), str(broadcast), _prefix_length(mask_int)