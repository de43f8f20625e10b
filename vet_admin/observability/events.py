"""Structured telemetry events for appointment status transitions."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of transition events."""

    TRANSITION_REQUESTED = "transition_requested"
    TRANSITION_IGNORED = "transition_ignored"
    TRANSITION_COMMITTED = "transition_committed"
    TRANSITION_FAILED = "transition_failed"
    MEDICAL_HISTORY_WRITTEN = "medical_history_written"
    FOLLOW_UP_SCHEDULED = "follow_up_scheduled"


class TransitionEvent(BaseModel):
    """One step in the life of a status change."""

    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: Optional[str] = None
    duration_ms: Optional[float] = None

    appointment_id: Optional[str] = None
    workflow: Optional[str] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None

    # Medical-history side effect
    history_id: Optional[str] = None
    operation: Optional[str] = None  # create, update, delete
    follow_up_at: Optional[datetime] = None

    # Why a request was dropped
    reason: Optional[str] = None

    # Error fields (populated on failure)
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    metadata: dict[str, Any] = Field(default_factory=dict)
