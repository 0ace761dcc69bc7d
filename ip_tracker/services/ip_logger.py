"""
IP Logging Service

Entry point for recording attribution events. Route handlers and the
request middleware call into this service; reporting goes through
StatsService.

Design Decisions:
- Every record_* call is synchronous and returns immediately: it builds the
  event and hands it to the event writer's queue
- Nothing raises to the caller; failures are logged and the event dropped
- store_raw=None falls back to the context's STORE_RAW_IP default
"""

import logging
from typing import Any, Mapping, Optional

from ip_tracker.services.events import AttributionEvent
from ip_tracker.services.partition_router import (
    CATCH_ALL,
    PRODUCT_RESOURCE_TYPE,
    RESOURCE,
    ROOT,
    UNKNOWN_TOKEN,
    PartitionKey,
    classify,
    resource_token,
)
from ip_tracker.services.tracking_context import TrackingContext

logger = logging.getLogger(__name__)


class IpLoggerService:
    """
    Service for recording client addresses against paths and resources.

    Cheap to construct; holds nothing but the tracking context.
    """

    def __init__(self, context: TrackingContext):
        self.context = context

    def _store_raw(self, store_raw: Optional[bool]) -> bool:
        return self.context.store_raw_ip if store_raw is None else store_raw

    def _record(self, key: PartitionKey, ip: Optional[str], store_raw: Optional[bool], **fields: Any) -> None:
        try:
            event = AttributionEvent.from_request(
                ip,
                secret=self.context.hash_secret,
                store_raw=self._store_raw(store_raw),
                **fields,
            )
            self.context.writer.submit(event, key)
        except Exception as e:
            logger.warning(
                f"Failed to record attribution event for partition '{key}': {str(e)}",
                exc_info=True
            )

    def record_root_event(
        self,
        ip: Optional[str],
        store_raw: Optional[bool] = None,
        user_agent: Optional[str] = None,
        method: str = "GET",
        path: str = "/",
    ) -> None:
        """Record a request for the site root."""
        self._record(
            PartitionKey.root(), ip, store_raw,
            user_agent=user_agent, method=method, path=path,
        )

    def record_resource_typed_event(
        self,
        product_id: Optional[str],
        ip: Optional[str],
        store_raw: Optional[bool] = None,
        user_agent: Optional[str] = None,
        method: str = "GET",
        path: Optional[str] = None,
    ) -> None:
        """
        Record a request against one product's own partition.

        The partition is created on the first event for a product id. The id
        is stored as given; only the table name is normalized.
        """
        product_id = product_id or UNKNOWN_TOKEN
        self._record(
            PartitionKey.resource(PRODUCT_RESOURCE_TYPE, product_id), ip, store_raw,
            user_agent=user_agent,
            method=method,
            path=path or f"/products/{product_id}",
            resource_type=PRODUCT_RESOURCE_TYPE,
            resource_id=product_id,
        )

    def record_other_event(
        self,
        ip: Optional[str],
        store_raw: Optional[bool] = None,
        user_agent: Optional[str] = None,
        method: str = "GET",
        path: str = "/",
    ) -> None:
        """Record a request that belongs to no specific partition."""
        self._record(
            PartitionKey.catch_all(), ip, store_raw,
            user_agent=user_agent, method=method, path=path,
        )

    def record_explicit_resource_event(
        self,
        ip: Optional[str],
        store_raw: Optional[bool] = None,
        *,
        resource_type: str,
        resource_id: str,
        action: str,
        user_agent: Optional[str] = None,
        method: str = "POST",
        path: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """
        Record an action on a business entity (e.g. a product order).

        Goes to the shared resource-event store regardless of path.
        """
        self._record(
            PartitionKey.resource_store(), ip, store_raw,
            user_agent=user_agent,
            method=method,
            path=path or f"/{resource_type}/{resource_id}/{action}",
            resource_type=resource_type,
            resource_id=resource_id,
            action=action,
            metadata=metadata,
        )

    def record_request(
        self,
        ip: Optional[str],
        store_raw: Optional[bool] = None,
        user_agent: Optional[str] = None,
        method: str = "GET",
        path: str = "/",
    ) -> None:
        """Classify a request by method and path and record it accordingly."""
        key = classify(method, path)
        if key.kind == ROOT:
            self.record_root_event(ip, store_raw, user_agent, method, path)
        elif key.kind == RESOURCE:
            self.record_resource_typed_event(resource_token(path), ip, store_raw, user_agent, method, path)
        elif key.kind == CATCH_ALL:
            self.record_other_event(ip, store_raw, user_agent, method, path)
