"""Per-appointment guard against duplicate or overlapping status updates."""

import logging
import time
from typing import Callable, Optional

from vet_admin.transitions.models import Identifier, StatusValue

logger = logging.getLogger(__name__)


class TransitionGuard:
    """Tracks in-flight transitions and recently committed ones.

    A request is dropped while another one for the same appointment is in
    flight, or when the identical (appointment, status) pair was committed
    less than *cooldown_seconds* ago. Entries for different appointments are
    independent. Nothing here awaits, so check-and-set is atomic on the
    event loop.
    """

    def __init__(
        self,
        cooldown_seconds: float = 1.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock or time.monotonic
        self._in_flight: set[Identifier] = set()
        self._last_commit: dict[Identifier, tuple[StatusValue, float]] = {}

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [
            key
            for key, (_, committed_at) in self._last_commit.items()
            if now - committed_at >= self.cooldown_seconds
        ]
        for key in expired:
            del self._last_commit[key]

    def is_in_flight(self, appointment_id: Identifier) -> bool:
        return appointment_id in self._in_flight

    def in_cooldown(self, appointment_id: Identifier, status: StatusValue) -> bool:
        self._purge_expired()
        entry = self._last_commit.get(appointment_id)
        return entry is not None and entry[0] == status

    def is_blocked(self, appointment_id: Identifier, status: StatusValue) -> bool:
        """Whether a request for *status* would be dropped right now."""
        if self.is_in_flight(appointment_id):
            logger.debug("Appointment %s already has a transition in flight", appointment_id)
            return True
        if self.in_cooldown(appointment_id, status):
            logger.debug(
                "Duplicate transition of appointment %s to %s within %.1fs",
                appointment_id, status, self.cooldown_seconds,
            )
            return True
        return False

    def try_acquire(self, appointment_id: Identifier, status: StatusValue) -> bool:
        """Mark a transition in flight unless it is blocked."""
        if self.is_blocked(appointment_id, status):
            return False
        self._in_flight.add(appointment_id)
        return True

    def release(self, appointment_id: Identifier) -> None:
        self._in_flight.discard(appointment_id)

    def mark_committed(self, appointment_id: Identifier, status: StatusValue) -> None:
        """Start the cooldown for a pair that was just committed."""
        self._last_commit[appointment_id] = (status, self._clock())
