"""
Models for page patrolling and change detection.

This module defines Pydantic models for:
- Monitored targets and their render/wait policy
- Observations and content fingerprints
- Persisted fingerprint records
- Change events and observation failures
- Per-cycle results
"""

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, HttpUrl

# SHA-256 hex digest
FINGERPRINT_PATTERN = r"^[0-9a-f]{64}$"

# longest supported patrol interval (one year)
MAX_INTERVAL_SECONDS = 366 * 24 * 3600


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class RenderMode(str, Enum):
    """How a target's page is rendered."""
    FULL = "full"
    SIMPLE = "simple"


class ChangeVerdict(str, Enum):
    """Outcome of comparing a new fingerprint with the stored one."""
    BASELINE = "baseline"
    UNCHANGED = "unchanged"
    CHANGED = "changed"


class CycleState(str, Enum):
    """States of a single target cycle."""
    PENDING = "pending"
    FETCHING = "fetching"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Classification of a failed observation."""
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    NAVIGATION = "navigation"
    UNKNOWN = "unknown"
    EMPTY_CONTENT = "empty_content"
    STORE = "store"


class WaitPolicy(BaseModel):
    """What the renderer waits for before reading page content."""
    selector: str = Field(default="body", min_length=1, description="CSS selector whose text is observed")
    wait_seconds: Optional[float] = Field(default=None, ge=0, description="Fixed settle delay after page load")

    model_config = {"frozen": True}


class Target(BaseModel):
    """A monitored page. Immutable for the lifetime of the process."""
    target_id: str = Field(..., min_length=1, description="Stable target identifier")
    url: HttpUrl = Field(..., description="Page URL")
    mode: RenderMode = Field(default=RenderMode.FULL)
    wait: WaitPolicy = Field(default_factory=WaitPolicy)
    interval_seconds: float = Field(
        ..., gt=0, le=MAX_INTERVAL_SECONDS, allow_inf_nan=False, description="Patrol interval in seconds"
    )

    model_config = {"frozen": True}

    @property
    def interval(self) -> timedelta:
        return timedelta(seconds=self.interval_seconds)

    @property
    def url_str(self) -> str:
        return str(self.url)


class Observation(BaseModel):
    """Rendered content of a target at a point in time. Never persisted."""
    target_id: str
    content: str
    observed_at: datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}


class FingerprintRecord(BaseModel):
    """Last known fingerprint of a target."""
    target_id: str = Field(..., min_length=1)
    url: str = Field(..., description="URL observed when the record was written")
    fingerprint: str = Field(..., pattern=FINGERPRINT_PATTERN, description="SHA-256 of normalized content")
    last_checked_at: datetime = Field(..., description="Last successful observation")
    last_changed_at: Optional[datetime] = Field(default=None, description="Last observation that changed the fingerprint")

    model_config = {"frozen": True}


class ChangeEvent(BaseModel):
    """Emitted when a target's fingerprint differs from its stored baseline."""
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    target_id: str
    url: str
    previous_fingerprint: str = Field(..., pattern=FINGERPRINT_PATTERN)
    new_fingerprint: str = Field(..., pattern=FINGERPRINT_PATTERN)
    detected_at: datetime


class ObservationFailure(BaseModel):
    """Emitted when a cycle could not produce or persist an observation."""
    target_id: str
    url: str
    kind: FailureKind
    message: str
    attempts: int = Field(default=1, ge=1)
    occurred_at: datetime = Field(default_factory=utc_now)


class CycleResult(BaseModel):
    """Result of one patrol cycle for one target."""
    target_id: str
    state: CycleState
    verdict: Optional[ChangeVerdict] = None
    record: Optional[FingerprintRecord] = None
    event: Optional[ChangeEvent] = None
    failure: Optional[ObservationFailure] = None
    started_at: datetime
    finished_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def succeeded(self) -> bool:
        return self.state == CycleState.SUCCEEDED
