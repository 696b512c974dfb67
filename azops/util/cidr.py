"""
IP network arithmetic shared by the connectivity and route tools.
"""

import ipaddress
from collections.abc import Iterable, Sequence
from typing import NamedTuple

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network
IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


class PrefixCheck(NamedTuple):
    """Result of checking an address prefix string."""

    valid: bool
    network: IPNetwork | None
    error: str | None


def check_prefix(prefix: str) -> PrefixCheck:
    """
    Validate that ``prefix`` is a network address in CIDR notation.

    ``10.0.0.5/24`` is rejected with a hint pointing at ``10.0.0.0/24``.
    A bare address is treated as a host route (/32 or /128).
    """
    try:
        network = ipaddress.ip_network(prefix.strip(), strict=True)
    except ValueError as e:
        try:
            normalized = ipaddress.ip_network(prefix.strip(), strict=False)
        except ValueError:
            return PrefixCheck(False, None, f"'{prefix}' is not a valid CIDR prefix ({e})")
        return PrefixCheck(
            False,
            None,
            f"'{prefix}' has host bits set; did you mean {normalized.with_prefixlen}?",
        )
    return PrefixCheck(True, network, None)


def parse_networks(prefixes: Iterable[str]) -> list[IPNetwork]:
    """Parse CIDR strings leniently (host bits are masked off)."""
    return [ipaddress.ip_network(p.strip(), strict=False) for p in prefixes if p.strip()]


def ip_in_any(address: str, networks: Sequence[IPNetwork]) -> bool:
    """Return True if ``address`` falls inside any of ``networks``."""
    ip = ipaddress.ip_address(address)
    return any(ip.version == net.version and ip in net for net in networks)


def longest_prefix_match(address: str, prefixes: Iterable[str]) -> str | None:
    """
    Return the most specific prefix containing ``address``.

    Non-CIDR entries (service tags such as ``AzureCloud``) are ignored.
    Ties on prefix length keep the first prefix seen.
    """
    ip = ipaddress.ip_address(address)
    best: IPNetwork | None = None
    best_prefix: str | None = None

    for prefix in prefixes:
        try:
            network = ipaddress.ip_network(prefix, strict=False)
        except ValueError:
            continue
        if network.version != ip.version or ip not in network:
            continue
        if best is None or network.prefixlen > best.prefixlen:
            best = network
            best_prefix = prefix

    return best_prefix


def find_overlaps(prefixes: Sequence[str]) -> list[tuple[str, str]]:
    """
    Return pairs of prefixes that overlap (including exact duplicates).

    Invalid prefixes are skipped; validate them separately with :func:`check_prefix`.
    """
    parsed: list[tuple[str, IPNetwork]] = []
    for prefix in prefixes:
        try:
            parsed.append((prefix, ipaddress.ip_network(prefix, strict=False)))
        except ValueError:
            continue

    overlaps = []
    for i, (left, left_net) in enumerate(parsed):
        for right, right_net in parsed[i + 1 :]:
            if left_net.version == right_net.version and left_net.overlaps(right_net):
                overlaps.append((left, right))
    return overlaps


def range_to_cidrs(first: str, last: str) -> list[str]:
    """
    Summarize an inclusive address range into the minimal list of CIDR blocks.

    Example:
        >>> range_to_cidrs("10.0.0.0", "10.0.0.5")
        ['10.0.0.0/30', '10.0.0.4/31']
    """
    first_ip = ipaddress.ip_address(first)
    last_ip = ipaddress.ip_address(last)
    if first_ip.version != last_ip.version:
        raise ValueError(f"Address family mismatch: {first} and {last}")
    if first_ip > last_ip:
        raise ValueError(f"Range start {first} is after range end {last}")
    return [net.with_prefixlen for net in ipaddress.summarize_address_range(first_ip, last_ip)]
