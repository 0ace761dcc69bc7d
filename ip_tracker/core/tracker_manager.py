"""
Tracking Context Manager

This module manages the application's tracking context.
The context is initialized once per application instance and shared across requests.

Design:
- One context per application instance, built from settings on startup
- Shared across all requests in the same instance
- Shutdown writes out queued events before the writer stops
- Each instance keeps its own partition cache (single-process semantics)
"""

import logging
from typing import Optional

from ip_tracker.core.exceptions import ServiceUnavailableError
from ip_tracker.core.setting import settings
from ip_tracker.db.session import async_session_maker, db_adapter, engine
from ip_tracker.services.tracking_context import TrackingContext

logger = logging.getLogger(__name__)

# Global context instance (initialized on startup)
_context: Optional[TrackingContext] = None


def get_active_context() -> Optional[TrackingContext]:
    """
    Get the tracking context if one is installed.

    Returns:
        TrackingContext instance if initialized, None otherwise
    """
    return _context


async def get_tracking_context() -> TrackingContext:
    """
    FastAPI dependency returning the tracking context.

    Raises:
        ServiceUnavailableError: If tracking has not been initialized
    """
    if _context is None:
        raise ServiceUnavailableError("ip-tracking")
    return _context


def set_tracking_context(context: Optional[TrackingContext]) -> None:
    """Install (or clear) the tracking context, e.g. one built for tests."""
    global _context
    _context = context


async def initialize_tracker() -> None:
    """Build the tracking context from settings and start the event writer."""
    global _context

    if _context is not None:
        logger.warning("Tracking context already initialized")
        return

    if settings.uses_default_secret:
        logger.warning(
            "IP_HASH_SECRET is the built-in default; set a private value before going to production"
        )

    context = TrackingContext.from_settings(
        settings,
        engine,
        adapter=db_adapter,
        session_maker=async_session_maker,
    )
    await context.start()
    _context = context

    logger.info(
        f"Tracking initialized: "
        f"trust_proxy={settings.trust_proxy_policy.value}, "
        f"filter_private_ips={settings.FILTER_PRIVATE_IPS}, "
        f"store_raw_ip={settings.STORE_RAW_IP}"
    )


async def shutdown_tracker() -> None:
    """Drain pending events and release the tracking context."""
    global _context

    if _context is None:
        return

    logger.info(f"Shutting down tracking, {_context.writer.pending} events pending")
    try:
        await _context.shutdown()
    except Exception as e:
        logger.warning(f"Failed to shut down tracking cleanly: {e}")
    finally:
        _context = None
