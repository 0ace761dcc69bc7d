"""
Rate Limiting Configuration

This module provides rate limiting functionality for API endpoints.

Design Decisions:
- Uses slowapi for rate limiting (lightweight, FastAPI-compatible)
- Different limits for reporting queries and event ingestion
- Keyed on the socket peer address, not the attributed client address
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)

# Format: "count/period" (e.g., "10/minute" means 10 requests per minute)
RATE_LIMITS = {
    "query": "60/minute",  # Reporting queries: 60 per minute per peer
    "record": "120/minute",  # Explicit resource events: 120 per minute per peer
}
