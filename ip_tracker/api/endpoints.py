"""
FastAPI Endpoints for IP Tracking Reports

This module defines the REST API for querying attribution events and for
recording explicit resource events.
Endpoints only handle:
- Request validation (Pydantic models, query parameters)
- Rate limiting
- Error handling and HTTP responses
- Delegating to the service layer

Design Principles:
- Thin endpoints: all querying happens in StatsService
- Recording goes through IpLoggerService and never waits on storage
- Error handling: missing parameters are 400, storage failures 500,
  tracking not initialized 503
"""

from typing import AsyncGenerator, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ip_tracker.api.schemas import (
    ActionTotals,
    EventEntry,
    PartitionStatsResponse,
    PathEventsResponse,
    PathUniqueIpsResponse,
    ProductViewersResponse,
    RecordedResponse,
    ResourceEventRequest,
    ResourceEventsResponse,
    ResourceStatsResponse,
)
from ip_tracker.core.exceptions import DatabaseError, InvalidQueryParameterError, ServiceUnavailableError
from ip_tracker.core.rate_limit import RATE_LIMITS, limiter
from ip_tracker.core.tracker_manager import get_tracking_context
from ip_tracker.core.validators import sanitize_resource_name, validate_resource_id
from ip_tracker.middleware.ip_logging import resolve_client_ip
from ip_tracker.services.ip_logger import IpLoggerService
from ip_tracker.services.partition_router import PRODUCT_RESOURCE_TYPE
from ip_tracker.services.stats_service import StatsService
from ip_tracker.services.tracking_context import TrackingContext

RECENT_VIEWS_LIMIT = 10

router = APIRouter(prefix="/ip-logs")


async def require_tracking_context() -> TrackingContext:
    try:
        return await get_tracking_context()
    except ServiceUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e)
        )


async def get_stats_service(
    context: TrackingContext = Depends(require_tracking_context)
) -> AsyncGenerator[StatsService, None]:
    """
    Dependency providing a StatsService with its own session.

    The session is closed when the request finishes.
    """
    async with context.session_maker() as session:
        yield StatsService(session, context.router)


def _bad_request(e: InvalidQueryParameterError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _server_error(e: DatabaseError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


def _resource_name(field: str, value: str) -> str:
    # Stored types and actions are lowercased, so lookups must be too
    sanitized = sanitize_resource_name(value)
    if not sanitized:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"'{field}' may contain only letters, digits, '-' and '_'"
        )
    return sanitized


@router.get(
    "/by-path",
    response_model=PathEventsResponse,
    summary="Events by path",
    description="Returns every attribution event recorded for an exact request path, newest first"
)
@limiter.limit(RATE_LIMITS["query"])
async def get_events_by_path(
    request: Request,  # Required for rate limiting (slowapi expects parameter named 'request')
    path: Optional[str] = Query(None, description="Request path, e.g. /products/123"),
    offset: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    stats: StatsService = Depends(get_stats_service)
) -> PathEventsResponse:
    """
    Get all events recorded for a path.

    Example: GET /ip-logs/by-path?path=/products/123

    Raises:
        HTTPException 400: If path is missing
    """
    try:
        events = await stats.list_events_by_path(path, offset=offset, limit=limit)
        total = await stats.count_events_by_path(path)
    except InvalidQueryParameterError as e:
        raise _bad_request(e)
    except DatabaseError as e:
        raise _server_error(e)

    return PathEventsResponse(
        path=path,
        total_requests=total,
        entries=[EventEntry.from_event(event) for event in events],
    )


@router.get(
    "/unique-ips",
    response_model=PathUniqueIpsResponse,
    summary="Unique visitors by path",
    description="Returns the distinct hashed addresses that requested an exact path"
)
@limiter.limit(RATE_LIMITS["query"])
async def get_unique_ips_by_path(
    request: Request,
    path: Optional[str] = Query(None, description="Request path, e.g. /products/123"),
    stats: StatsService = Depends(get_stats_service)
) -> PathUniqueIpsResponse:
    """
    Example: GET /ip-logs/unique-ips?path=/products/123

    Raises:
        HTTPException 400: If path is missing
    """
    try:
        hashed_ips = await stats.list_unique_hashes_by_path(path)
    except InvalidQueryParameterError as e:
        raise _bad_request(e)
    except DatabaseError as e:
        raise _server_error(e)

    return PathUniqueIpsResponse(
        path=path,
        unique_ip_count=len(hashed_ips),
        hashed_ips=hashed_ips,
    )


@router.get(
    "/products/{product_id}",
    response_model=ProductViewersResponse,
    summary="Product viewers",
    description="Returns view totals, unique visitors and the most recent events for a product"
)
@limiter.limit(RATE_LIMITS["query"])
async def get_product_viewers(
    product_id: str,
    request: Request,
    stats: StatsService = Depends(get_stats_service)
) -> ProductViewersResponse:
    """Example: GET /ip-logs/products/123"""
    try:
        events = await stats.list_events_by_resource(PRODUCT_RESOURCE_TYPE, product_id)
        hashed_ips = await stats.list_unique_hashes_by_resource(PRODUCT_RESOURCE_TYPE, product_id)
    except InvalidQueryParameterError as e:
        raise _bad_request(e)
    except DatabaseError as e:
        raise _server_error(e)

    return ProductViewersResponse(
        product_id=product_id,
        total_views=len(events),
        unique_visitors=len(hashed_ips),
        hashed_ips=hashed_ips,
        recent_views=[EventEntry.from_event(event) for event in events[:RECENT_VIEWS_LIMIT]],
    )


@router.get(
    "/resources/{resource_type}/{resource_id}/stats",
    response_model=ResourceStatsResponse,
    summary="Resource statistics",
    description="Returns view and order totals and the conversion rate for a resource"
)
@limiter.limit(RATE_LIMITS["query"])
async def get_resource_stats(
    resource_type: str,
    resource_id: str,
    request: Request,
    stats: StatsService = Depends(get_stats_service)
) -> ResourceStatsResponse:
    """Example: GET /ip-logs/resources/product/123/stats"""
    resource_type = _resource_name("resource_type", resource_type)
    try:
        resource_stats = await stats.resource_stats(resource_type, resource_id)
    except InvalidQueryParameterError as e:
        raise _bad_request(e)
    except DatabaseError as e:
        raise _server_error(e)

    return ResourceStatsResponse(
        resource_type=resource_type,
        resource_id=resource_id,
        views=ActionTotals(**resource_stats["views"]),
        orders=ActionTotals(**resource_stats["orders"]),
        conversion_rate=resource_stats["conversion_rate"],
    )


@router.get(
    "/resources/{resource_type}/{resource_id}/events",
    response_model=ResourceEventsResponse,
    summary="Resource events",
    description="Lists events for a resource, optionally narrowed to one action"
)
@limiter.limit(RATE_LIMITS["query"])
async def get_resource_events(
    resource_type: str,
    resource_id: str,
    request: Request,
    action: Optional[str] = Query(None, description="Only events with this action, e.g. order"),
    offset: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    stats: StatsService = Depends(get_stats_service)
) -> ResourceEventsResponse:
    """Example: GET /ip-logs/resources/product/123/events?action=order&limit=20"""
    resource_type = _resource_name("resource_type", resource_type)
    if action:
        action = _resource_name("action", action)
    try:
        if action:
            events = await stats.list_events_by_resource_action(
                resource_type, resource_id, action, offset=offset, limit=limit
            )
        else:
            events = await stats.list_events_by_resource(
                resource_type, resource_id, offset=offset, limit=limit
            )
    except InvalidQueryParameterError as e:
        raise _bad_request(e)
    except DatabaseError as e:
        raise _server_error(e)

    return ResourceEventsResponse(
        resource_type=resource_type,
        resource_id=resource_id,
        action=action,
        offset=offset,
        limit=limit,
        entries=[EventEntry.from_event(event) for event in events],
    )


@router.get(
    "/partitions/{partition_key}",
    response_model=PartitionStatsResponse,
    summary="Partition totals",
    description="Returns total and unique counts for a partition key (root, catch-all, resource:<type>:<id>)"
)
@limiter.limit(RATE_LIMITS["query"])
async def get_partition_stats(
    partition_key: str,
    request: Request,
    stats: StatsService = Depends(get_stats_service)
) -> PartitionStatsResponse:
    """Example: GET /ip-logs/partitions/resource:product:123"""
    try:
        total = await stats.count(partition_key)
        unique = await stats.unique_count(partition_key)
    except InvalidQueryParameterError as e:
        raise _bad_request(e)
    except DatabaseError as e:
        raise _server_error(e)

    return PartitionStatsResponse(partition=partition_key, total=total, unique=unique)


@router.post(
    "/resources/{resource_type}/{resource_id}/events",
    response_model=RecordedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Record a resource event",
    description="Records an action on a resource for the calling client; written in the background"
)
@limiter.limit(RATE_LIMITS["record"])
async def record_resource_event(
    resource_type: str,
    resource_id: str,
    request: Request,
    body: ResourceEventRequest,
    context: TrackingContext = Depends(require_tracking_context)
) -> RecordedResponse:
    """
    Record an explicit resource event, e.g. a product order.

    Example: POST /ip-logs/resources/product/123/events {"action": "order"}

    Raises:
        HTTPException 400: If the resource type, id or action is malformed
    """
    sanitized_type = sanitize_resource_name(resource_type)
    sanitized_action = sanitize_resource_name(body.action)
    if not sanitized_type or not sanitized_action or not validate_resource_id(resource_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Resource types and actions may contain only letters, digits, '-' and '_'; "
                   "resource ids must be non-empty and at most 100 characters."
        )

    IpLoggerService(context).record_explicit_resource_event(
        resolve_client_ip(request, context),
        resource_type=sanitized_type,
        resource_id=resource_id,
        action=sanitized_action,
        user_agent=request.headers.get("User-Agent"),
        method="POST",
        metadata=body.metadata,
    )
    return RecordedResponse()
