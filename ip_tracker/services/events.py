"""
Attribution Event Model

The immutable record written for every tracked request or resource action.
Built once at ingestion, stamped with created_at by the event writer, and
never changed afterwards.
"""

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from ip_tracker.core.address import normalize_ip
from ip_tracker.core.hashing import hash_ip


class AttributionEvent(BaseModel):
    """Event record for request attribution."""

    model_config = ConfigDict(frozen=True)

    hashed_ip: Optional[str] = Field(None, description="Salted digest of the canonical client address")
    raw_ip: Optional[str] = Field(None, description="Literal client address, only with raw retention enabled")
    user_agent: Optional[str] = Field(None, description="User agent string")
    method: str = Field(..., description="HTTP method of the request")
    path: str = Field(..., description="Request path including the query string")
    resource_type: Optional[str] = Field(None, description="Business entity type, e.g. product")
    resource_id: Optional[str] = Field(None, description="Business entity identifier")
    action: Optional[str] = Field(None, description="What happened to the resource, e.g. view or order")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Free-form caller data")
    created_at: Optional[datetime] = Field(None, description="Set by the event writer")

    @classmethod
    def from_request(
        cls,
        ip: Optional[str],
        *,
        secret: str,
        store_raw: bool,
        method: str,
        path: str,
        user_agent: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        action: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> "AttributionEvent":
        """
        Build an event from request data.

        The address is canonicalized before hashing so equivalent forms of
        one address (IPv4 and IPv4-mapped IPv6) count as one visitor.
        """
        canonical_ip = normalize_ip(ip)
        return cls(
            hashed_ip=hash_ip(canonical_ip, secret),
            raw_ip=canonical_ip if store_raw else None,
            user_agent=user_agent,
            method=method.upper(),
            path=path,
            resource_type=resource_type,
            resource_id=resource_id,
            action=action,
            metadata=dict(metadata or {}),
        )

    def stamped(self, now: Optional[datetime] = None) -> "AttributionEvent":
        """Return this event with created_at set, unless it already is."""
        if self.created_at is not None:
            return self
        return self.model_copy(update={"created_at": now or datetime.now(timezone.utc)})

    def to_row(self) -> dict[str, Any]:
        """Column values for inserting into a partition or the resource store."""
        return {
            "hashed_ip": self.hashed_ip,
            "raw_ip": self.raw_ip,
            "user_agent": self.user_agent,
            "method": self.method,
            "path": self.path,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "action": self.action,
            "metadata": self.metadata or None,
            "created_at": self.created_at,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AttributionEvent":
        created_at = row["created_at"]
        # SQLite hands back naive datetimes; everything is written in UTC
        if created_at is not None and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(
            hashed_ip=row["hashed_ip"],
            raw_ip=row["raw_ip"],
            user_agent=row["user_agent"],
            method=row["method"],
            path=row["path"],
            resource_type=row["resource_type"],
            resource_id=row["resource_id"],
            action=row["action"],
            metadata=row["metadata"] or {},
            created_at=created_at,
        )
