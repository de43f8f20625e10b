"""Telemetry logger for status transitions."""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Optional

from vet_admin.observability.events import EventType, TransitionEvent

logger = logging.getLogger(__name__)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


class TransitionTelemetry:
    """Writes transition events to a JSON Lines file.

    Supports real-time callbacks alongside the file sink. Write failures
    are logged and never interrupt a transition.
    """

    _instance: Optional["TransitionTelemetry"] = None

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        enabled: bool = True,
    ):
        """Initialize telemetry logger.

        Args:
            log_dir: Directory for log files (default: data/logs)
            enabled: Whether events are written at all
        """
        self.enabled = enabled

        if log_dir is None:
            log_dir = Path("data/logs")
        self.log_dir = log_dir
        if self.enabled:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self.log_file = self.log_dir / "transitions.jsonl"
        self._callbacks: list[Callable[[TransitionEvent], None]] = []

    @classmethod
    def get_instance(cls) -> "TransitionTelemetry":
        """Get or create singleton instance from settings."""
        if cls._instance is None:
            from vet_admin.config import get_settings

            settings = get_settings()
            cls._instance = cls(
                log_dir=settings.telemetry_log_dir,
                enabled=settings.telemetry_enabled,
            )
        return cls._instance

    def generate_request_id(self) -> str:
        """Generate a unique request ID."""
        return str(uuid.uuid4())[:8]

    def add_callback(self, callback: Callable[[TransitionEvent], None]) -> None:
        """Add callback for real-time event monitoring."""
        self._callbacks.append(callback)

    def _write_event(self, event: TransitionEvent) -> None:
        if not self.enabled:
            return

        try:
            with open(self.log_file, "a") as f:
                f.write(event.model_dump_json() + "\n")

            for callback in self._callbacks:
                try:
                    callback(event)
                except Exception as e:
                    logger.warning(f"Telemetry callback failed: {e}")

        except Exception as e:
            logger.warning(f"Failed to write telemetry event: {e}")

    # Transition logging

    @contextmanager
    def transition(
        self,
        appointment_id: Any,
        workflow: Any,
        from_status: Any,
        to_status: Any,
        request_id: Optional[str] = None,
    ):
        """Context manager timing a transition commit.

        Usage:
            with telemetry.transition(appt_id, workflow, old, new) as event:
                await store.set_status(appt_id, new)
                event.history_id = record.history_id
        """
        start_time = time.time()

        event = TransitionEvent(
            event_type=EventType.TRANSITION_COMMITTED,
            appointment_id=_text(appointment_id),
            workflow=_text(workflow),
            from_status=_text(from_status),
            to_status=_text(to_status),
            request_id=request_id or self.generate_request_id(),
        )

        try:
            yield event

        except Exception as e:
            event.event_type = EventType.TRANSITION_FAILED
            event.error_type = type(e).__name__
            event.error_message = str(e)[:200]
            raise

        finally:
            event.duration_ms = (time.time() - start_time) * 1000
            self._write_event(event)

    def log_requested(
        self,
        appointment_id: Any,
        workflow: Any,
        from_status: Any,
        to_status: Any,
    ) -> None:
        self._write_event(
            TransitionEvent(
                event_type=EventType.TRANSITION_REQUESTED,
                appointment_id=_text(appointment_id),
                workflow=_text(workflow),
                from_status=_text(from_status),
                to_status=_text(to_status),
            )
        )

    def log_ignored(self, appointment_id: Any, to_status: Any, reason: str) -> None:
        """Log a request dropped by the guard or by session state."""
        self._write_event(
            TransitionEvent(
                event_type=EventType.TRANSITION_IGNORED,
                appointment_id=_text(appointment_id),
                to_status=_text(to_status),
                reason=reason,
            )
        )

    def log_medical_history(
        self,
        appointment_id: Any,
        history_id: Any,
        operation: str,
        follow_up_at: Any = None,
    ) -> None:
        self._write_event(
            TransitionEvent(
                event_type=EventType.MEDICAL_HISTORY_WRITTEN,
                appointment_id=_text(appointment_id),
                history_id=_text(history_id),
                operation=operation,
                follow_up_at=follow_up_at,
            )
        )

    def log_follow_up(self, appointment_id: Any, history_id: Any, follow_up_at: Any) -> None:
        """Log a follow-up visit that the customer reminder check should pick up."""
        self._write_event(
            TransitionEvent(
                event_type=EventType.FOLLOW_UP_SCHEDULED,
                appointment_id=_text(appointment_id),
                history_id=_text(history_id),
                follow_up_at=follow_up_at,
            )
        )

    # Utility methods

    def get_recent_events(self, limit: int = 100) -> list[dict[str, Any]]:
        """Read recent events from the log file."""
        if not self.log_file.exists():
            return []

        events = []
        with open(self.log_file) as f:
            for line in f:
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue

        return events[-limit:]

    def get_stats(self) -> dict[str, Any]:
        """Get basic statistics over recent events."""
        events = self.get_recent_events(limit=1000)
        if not events:
            return {"total": 0}

        total = len(events)
        committed = sum(1 for e in events if e.get("event_type") == EventType.TRANSITION_COMMITTED.value)
        failed = sum(1 for e in events if e.get("event_type") == EventType.TRANSITION_FAILED.value)
        ignored = sum(1 for e in events if e.get("event_type") == EventType.TRANSITION_IGNORED.value)
        timed = [e["duration_ms"] for e in events if e.get("duration_ms") is not None]

        return {
            "total": total,
            "committed": committed,
            "failed": failed,
            "ignored": ignored,
            "failure_rate": failed / (committed + failed) if committed + failed else 0,
            "avg_duration_ms": sum(timed) / len(timed) if timed else 0,
        }


def get_transition_telemetry() -> TransitionTelemetry:
    """Get the global telemetry instance."""
    return TransitionTelemetry.get_instance()
