"""
Client Address Resolution

Extracts the client's network address from a request and normalizes it
to a canonical textual form.

Sources, in order of precedence:
1. The address resolved through a trusted proxy chain
2. X-Forwarded-For (first public hop when private filtering is enabled)
3. CF-Connecting-IP
4. X-Real-IP
5. The socket peer address

Security Considerations:
- Forwarded headers are client-controlled unless a trusted proxy sets them
- Nothing here raises: unparsable input is passed through unchanged
"""

import ipaddress
from typing import Iterable, List, Mapping, Optional, Union

from ip_tracker.core.setting import TrustProxyPolicy

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

# Address classes that never identify a client on the public internet
NON_PUBLIC_CLASSES = frozenset({
    "private",
    "loopback",
    "link-local",
    "unique-local",
    "reserved",
    "carrier-grade-nat",
})

# Proxies trusted under the loopback-only policy
LOCAL_PROXY_CLASSES = frozenset({"loopback", "link-local", "unique-local"})

_PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(net)
    for net in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16")
)
_UNIQUE_LOCAL_NETWORK = ipaddress.ip_network("fc00::/7")
_CARRIER_GRADE_NAT_NETWORK = ipaddress.ip_network("100.64.0.0/10")
_THIS_NETWORK = ipaddress.ip_network("0.0.0.0/8")


def parse_ip(ip: Optional[str]) -> Optional[IPAddress]:
    """
    Parse an address, unwrapping IPv4-mapped IPv6 to plain IPv4.

    Returns None if the value is not an IP address.
    """
    if not ip:
        return None
    try:
        addr = ipaddress.ip_address(ip.strip())
    except ValueError:
        return None
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def normalize_ip(ip: Optional[str]) -> Optional[str]:
    """
    Normalize an IP address to its canonical form.

    - IPv4: dotted decimal
    - IPv6: compressed form (::1 rather than 0:0:0:0:0:0:0:1)
    - IPv4-mapped IPv6 (::ffff:192.0.2.1) becomes IPv4 (192.0.2.1)

    Args:
        ip: Address as received, may be None or empty

    Returns:
        Canonical address, the original string if it cannot be parsed,
        or None when there is nothing to normalize
    """
    if not ip:
        return None
    addr = parse_ip(ip)
    if addr is None:
        return ip
    return str(addr)


def address_class(ip: Optional[str]) -> Optional[str]:
    """
    Classify an address into one of the named ranges.

    Returns "unicast" for public addresses and None if unparsable.
    """
    addr = parse_ip(ip)
    if addr is None:
        return None
    if addr.is_loopback:
        return "loopback"
    if addr.is_link_local:
        return "link-local"
    if addr in _UNIQUE_LOCAL_NETWORK:
        return "unique-local"
    if any(addr in net for net in _PRIVATE_NETWORKS):
        return "private"
    if addr in _CARRIER_GRADE_NAT_NETWORK:
        return "carrier-grade-nat"
    if addr.is_unspecified or addr.is_reserved or addr in _THIS_NETWORK:
        return "reserved"
    return "unicast"


def is_private_ip(ip: Optional[str]) -> bool:
    """
    Check whether an address is not routable on the public internet.

    Unparsable values count as private: they are not safe to attribute to.
    """
    klass = address_class(ip)
    return klass is None or klass in NON_PUBLIC_CLASSES


def split_forwarded_for(value: Optional[str]) -> List[str]:
    """Split an X-Forwarded-For value into trimmed, non-empty entries."""
    if not value:
        return []
    return [entry.strip() for entry in value.split(",") if entry.strip()]


def first_public_ip(candidates: Iterable[str]) -> Optional[str]:
    for candidate in candidates:
        if not is_private_ip(candidate):
            return candidate
    return None


def _trusts(policy: TrustProxyPolicy, hop: str) -> bool:
    if policy is TrustProxyPolicy.all:
        return True
    if policy is TrustProxyPolicy.loopback_only:
        return address_class(hop) in LOCAL_PROXY_CLASSES
    return False


def resolve_trusted_ip(
    peer_ip: Optional[str],
    forwarded_for: Optional[str],
    policy: TrustProxyPolicy,
) -> Optional[str]:
    """
    Resolve the client address through trusted proxies.

    Walks the hop chain from the socket peer outwards (peer, then
    X-Forwarded-For right to left) and stops at the first hop that is not
    a trusted proxy. If every hop is trusted, the outermost one wins.

    Args:
        peer_ip: Socket peer address
        forwarded_for: Raw X-Forwarded-For header value
        policy: Which proxies are trusted

    Returns:
        The resolved address, or None when the policy trusts nobody or
        there is no peer to start from
    """
    if policy is TrustProxyPolicy.none or not peer_ip:
        return None

    hops = [peer_ip] + list(reversed(split_forwarded_for(forwarded_for)))
    for hop in hops[:-1]:
        if not _trusts(policy, hop):
            return hop
    return hops[-1]


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    if value is None:
        return None
    value = value.strip()
    return value or None


def extract_client_ip(
    peer_ip: Optional[str],
    headers: Mapping[str, str],
    trusted_ip: Optional[str] = None,
    filter_private: bool = True,
) -> Optional[str]:
    """
    Extract the client IP from request metadata.

    Args:
        peer_ip: Socket peer address
        headers: Request headers (case-insensitive mapping or lowercase keys)
        trusted_ip: Address already resolved through a trusted proxy
        filter_private: Skip non-public hops in X-Forwarded-For

    Returns:
        Canonical client address, or None if no source yields one
    """
    if trusted_ip:
        return normalize_ip(trusted_ip)

    forwarded = split_forwarded_for(_header(headers, "X-Forwarded-For"))
    if forwarded:
        chosen = first_public_ip(forwarded) if filter_private else None
        return normalize_ip(chosen or forwarded[0])

    cf_ip = _header(headers, "CF-Connecting-IP")
    if cf_ip:
        return normalize_ip(cf_ip)

    real_ip = _header(headers, "X-Real-IP")
    if real_ip:
        return normalize_ip(real_ip)

    return normalize_ip(peer_ip)


class AddressResolver:
    """
    Resolves request addresses under a fixed trust policy.

    Stateless apart from its configuration; safe to share between
    concurrent requests.
    """

    def __init__(
        self,
        trust_policy: TrustProxyPolicy = TrustProxyPolicy.none,
        filter_private: bool = True,
    ):
        self.trust_policy = trust_policy
        self.filter_private = filter_private

    def resolve(self, peer_ip: Optional[str], headers: Mapping[str, str]) -> Optional[str]:
        trusted_ip = resolve_trusted_ip(
            peer_ip,
            _header(headers, "X-Forwarded-For"),
            self.trust_policy,
        )
        return extract_client_ip(
            peer_ip,
            headers,
            trusted_ip=trusted_ip,
            filter_private=self.filter_private,
        )
