"""
Input Validators and Sanitizers

This module provides validation and sanitization functions for user inputs
that end up as stored resource identifiers.

Security Considerations:
- Resource types and actions are matched on exactly by the stats queries,
  so they are restricted to a small character set
- Length limits match the storage columns
"""

import re
from typing import Optional

RESOURCE_NAME_MAX_LENGTH = 50
RESOURCE_ID_MAX_LENGTH = 100

_RESOURCE_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def sanitize_resource_name(name: str, max_length: int = RESOURCE_NAME_MAX_LENGTH) -> Optional[str]:
    """
    Sanitize a resource type or action name.

    Args:
        name: The value to sanitize, e.g. "product" or "order"
        max_length: Maximum allowed length

    Returns:
        Lowercased name if valid, None otherwise
    """
    if not name or not isinstance(name, str):
        return None

    name = name.strip()
    if len(name) > max_length:
        return None

    if not _RESOURCE_NAME_RE.match(name):
        return None

    return name.lower()


def validate_resource_id(resource_id: str, max_length: int = RESOURCE_ID_MAX_LENGTH) -> bool:
    """
    Validate a resource identifier.

    Any printable value is accepted as long as it fits the storage column.
    """
    return bool(resource_id) and resource_id.strip() == resource_id and len(resource_id) <= max_length
