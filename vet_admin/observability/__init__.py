"""Telemetry for appointment status transitions."""

from vet_admin.observability.events import EventType, TransitionEvent
from vet_admin.observability.logger import TransitionTelemetry, get_transition_telemetry

__all__ = [
    "EventType",
    "TransitionEvent",
    "TransitionTelemetry",
    "get_transition_telemetry",
]
