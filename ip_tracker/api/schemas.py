"""
API Request and Response Schemas

This module defines all Pydantic models for API requests and responses.
Separated from endpoints to keep concerns separated and enable reuse.

Event entries carry the literal address only when it was stored;
"ip" is null otherwise.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ip_tracker.services.events import AttributionEvent


class EventEntry(BaseModel):
    """One recorded attribution event."""
    hashed_ip: Optional[str] = None
    ip: Optional[str] = Field(None, description="Literal address, present only with raw retention")
    user_agent: Optional[str] = None
    method: str
    path: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    action: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @classmethod
    def from_event(cls, event: AttributionEvent) -> "EventEntry":
        return cls(
            hashed_ip=event.hashed_ip,
            ip=event.raw_ip,
            user_agent=event.user_agent,
            method=event.method,
            path=event.path,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
            action=event.action,
            metadata=event.metadata,
            created_at=event.created_at,
        )


class PathEventsResponse(BaseModel):
    """Response model for the by-path endpoint."""
    path: str
    total_requests: int
    entries: list[EventEntry]


class PathUniqueIpsResponse(BaseModel):
    """Response model for the unique-ips endpoint."""
    path: str
    unique_ip_count: int
    hashed_ips: list[str]


class ProductViewersResponse(BaseModel):
    """Response model for the product viewers endpoint."""
    product_id: str
    total_views: int
    unique_visitors: int
    hashed_ips: list[str]
    recent_views: list[EventEntry]


class ActionTotals(BaseModel):
    total: int
    unique: int


class ResourceStatsResponse(BaseModel):
    """Response model for the resource statistics endpoint."""
    resource_type: str
    resource_id: str
    views: ActionTotals
    orders: ActionTotals
    conversion_rate: str = Field(..., description="Orders per view, e.g. '12.50%'")


class ResourceEventsResponse(BaseModel):
    resource_type: str
    resource_id: str
    action: Optional[str] = None
    offset: int
    limit: Optional[int] = None
    entries: list[EventEntry]


class PartitionStatsResponse(BaseModel):
    partition: str
    total: int
    unique: int


class ResourceEventRequest(BaseModel):
    """Request model for recording an explicit resource event."""
    action: str = Field(..., min_length=1, max_length=50, description="What happened, e.g. view or order")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Free-form event data")


class RecordedResponse(BaseModel):
    accepted: bool = True
