"""
Client Address Hashing

Salted one-way digest of a canonical client address, used to count
unique visitors without storing the address itself.
"""

import hashlib
from typing import Optional


def hash_ip(ip: Optional[str], secret: str) -> Optional[str]:
    """
    Hash a canonical IP address with the process-wide secret.

    Args:
        ip: Canonical address (see normalize_ip), or None
        secret: Hashing secret

    Returns:
        SHA-256 hex digest of ip + secret, or None for a missing address
    """
    if not ip:
        return None
    return hashlib.sha256(f"{ip}{secret}".encode("utf-8")).hexdigest()
