"""
API response models for the read-only patrol API.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from patrol.models import ChangeEvent, FingerprintRecord


class RecordResponse(BaseModel):
    """Stored fingerprint record of one target."""
    target_id: str = Field(..., description="Target identifier")
    url: str = Field(..., description="Page URL")
    fingerprint: str = Field(..., description="SHA-256 fingerprint of the last observed content")
    last_checked_at: datetime = Field(..., description="Last successful observation")
    last_changed_at: Optional[datetime] = Field(None, description="Last detected change, if any")

    @classmethod
    def from_record(cls, record: FingerprintRecord) -> "RecordResponse":
        return cls(**record.model_dump())


class RecordListResponse(BaseModel):
    """All stored fingerprint records."""
    records: List[RecordResponse] = Field(..., description="Records ordered by target id")
    total: int = Field(..., description="Number of records")


class TargetStatus(BaseModel):
    """Scheduling state of one target."""
    target_id: str
    url: str
    interval_seconds: float
    next_due: str = Field(..., description="Next due time (ISO 8601, UTC)")
    in_flight: bool = Field(..., description="Whether a cycle is running right now")
    cycle_state: Optional[str] = Field(None, description="State of the current or most recent cycle")
    last_state: Optional[str] = Field(None, description="State of the last finished cycle")
    last_verdict: Optional[str] = Field(None, description="Verdict of the last successful cycle")


class StatusResponse(BaseModel):
    """Patrol service status."""
    running: bool
    max_concurrency: int
    targets: List[TargetStatus]
    cycles_succeeded: int
    cycles_failed: int
    changes_detected: int


class ChangeMessage(BaseModel):
    """Message pushed to WebSocket clients when a page changes."""
    id: str = Field(..., description="Target identifier")
    url: str = Field(..., description="Page URL")
    timestamp: str = Field(..., description="Detection time (ISO 8601, UTC)")

    @classmethod
    def from_event(cls, event: ChangeEvent) -> "ChangeMessage":
        return cls(id=event.target_id, url=event.url, timestamp=event.detected_at.isoformat())


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")
    status_code: int = Field(..., description="HTTP status code")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    store_status: str = Field(..., description="Fingerprint store status")
