"""
IP Logging Middleware

This middleware records an attribution event for every request and logs
the request/response line for observability.

It captures:
- Client address (resolved through the trust policy, canonicalized, hashed)
- Request method and path (including the query string)
- User agent
- Response status code and processing time (access log only)

Design Decisions:
- Uses Starlette's BaseHTTPMiddleware for compatibility
- Recording happens before the handler runs and only enqueues, so the
  response never waits on storage
- Recording failures are logged and swallowed; the request always proceeds
"""

import logging
import time
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ip_tracker.core.tracker_manager import get_active_context
from ip_tracker.services.ip_logger import IpLoggerService
from ip_tracker.services.tracking_context import TrackingContext

logger = logging.getLogger("ip_tracker")


def request_path(request: Request) -> str:
    """Path as the client sent it, query string included."""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def resolve_client_ip(request: Request, context: TrackingContext) -> Optional[str]:
    """
    Resolve the canonical client address of a request.

    Args:
        request: The incoming HTTP request
        context: Tracking context holding the address resolver

    Returns:
        Canonical address, or None if no source yields one
    """
    peer_ip = request.client.host if request.client else None
    return context.resolver.resolve(peer_ip, request.headers)


class IpLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware recording client addresses per request.

    Requests pass through untouched when tracking is not initialized or
    path logging is disabled.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_ip = self._record(request)

        response = await call_next(request)

        process_time = time.time() - start_time

        # Format: METHOD PATH STATUS_CODE PROCESS_TIME_MS CLIENT_IP
        logger.info(
            f"{request.method} {request.url.path} "
            f"{response.status_code} {process_time*1000:.2f}ms "
            f"IP:{client_ip or 'unknown'}"
        )

        response.headers["X-Process-Time"] = str(process_time)

        return response

    def _record(self, request: Request) -> Optional[str]:
        context = get_active_context()
        if context is None:
            return None

        try:
            client_ip = resolve_client_ip(request, context)
            if context.path_logging_enabled:
                IpLoggerService(context).record_request(
                    ip=client_ip,
                    user_agent=request.headers.get("User-Agent"),
                    method=request.method,
                    path=request_path(request),
                )
            return client_ip
        except Exception as e:
            logger.warning(f"Failed to record request attribution: {e}", exc_info=True)
            return None


def add_ip_logging_middleware(app):
    """
    Add IP logging middleware to FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_middleware(IpLoggingMiddleware)
