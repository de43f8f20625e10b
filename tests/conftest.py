"""Pytest configuration and fixtures."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from vet_admin.observability import TransitionTelemetry
from vet_admin.transitions import (
    Appointment,
    AppointmentStatus,
    MedicalHistoryReconciler,
    MedicalHistoryRecord,
    RecordNotFoundError,
    TransitionController,
    TransitionGuard,
)


# ---------------------------------------------------------------------------
# In-memory stand-in for the clinic API
# ---------------------------------------------------------------------------

class InMemoryClinicStore:
    """Appointment + medical-history store that records every call.

    ``records`` keeps API order (newest first). Put an exception in
    ``failures[<operation>]`` to make that operation fail.
    """

    def __init__(self, records=None):
        self.records: list[MedicalHistoryRecord] = list(records or [])
        self.statuses: dict = {}
        self.calls: list[tuple] = []
        self.failures: dict[str, Exception] = {}
        self._next_id = 100

    def ops(self) -> list[str]:
        return [c[0] for c in self.calls]

    def calls_to(self, op: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == op]

    def _maybe_fail(self, op: str) -> None:
        if op in self.failures:
            raise self.failures[op]

    async def set_status(self, appointment_id, status):
        self.calls.append(("set_status", appointment_id, status))
        self._maybe_fail("set_status")
        self.statuses[appointment_id] = status

    async def list_by_pet(self, pet_id, page=1, limit=50):
        self.calls.append(("list_by_pet", pet_id, page, limit))
        self._maybe_fail("list_by_pet")
        return [r for r in self.records if r.pet_id == pet_id][:limit]

    async def create(self, payload):
        self.calls.append(("create", payload))
        self._maybe_fail("create")
        self._next_id += 1
        record = MedicalHistoryRecord(history_id=self._next_id, **payload.model_dump())
        self.records.insert(0, record)
        return record

    async def update(self, history_id, payload):
        self.calls.append(("update", history_id, payload))
        self._maybe_fail("update")
        for i, existing in enumerate(self.records):
            if existing.history_id == history_id:
                record = MedicalHistoryRecord(history_id=history_id, **payload.model_dump())
                self.records[i] = record
                return record
        raise RecordNotFoundError(f"Medical history {history_id} not found", status_code=404)

    async def delete(self, history_id):
        self.calls.append(("delete", history_id))
        self._maybe_fail("delete")
        remaining = [r for r in self.records if r.history_id != history_id]
        if len(remaining) == len(self.records):
            raise RecordNotFoundError(f"Medical history {history_id} not found", status_code=404)
        self.records = remaining


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_record(history_id, pet_id=3, record_date=datetime(2024, 6, 1, 8, 0), **kwargs):
    fields = {
        "description": "Vomiting for two days",
        "treatment": "Fluids and antiemetics",
    }
    fields.update(kwargs)
    return MedicalHistoryRecord(
        history_id=history_id,
        pet_id=pet_id,
        record_date=record_date,
        **fields,
    )


# ---------------------------------------------------------------------------
# Telemetry isolation
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _disabled_global_telemetry(tmp_path):
    """Keep the global telemetry singleton out of the working directory."""
    TransitionTelemetry._instance = TransitionTelemetry(log_dir=tmp_path / "global-logs", enabled=False)
    yield
    TransitionTelemetry._instance = None


@pytest.fixture
def telemetry(tmp_path):
    return TransitionTelemetry(log_dir=tmp_path / "logs", enabled=True)


# ---------------------------------------------------------------------------
# Workflow fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def pending_appointment():
    return Appointment(
        appointment_id=7,
        pet_id=3,
        doctor_id=11,
        service_id=5,
        service_name="General checkup",
        status=AppointmentStatus.PENDING,
        appointment_date=datetime(2024, 6, 1, 10, 30),
    )


@pytest.fixture
def completed_appointment(pending_appointment):
    return pending_appointment.model_copy(update={"status": AppointmentStatus.COMPLETED})


@pytest.fixture
def store():
    return InMemoryClinicStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def controller(store, clock, notifier, telemetry):
    return TransitionController(
        appointments=store,
        reconciler=MedicalHistoryReconciler(store),
        guard=TransitionGuard(cooldown_seconds=1.0, clock=clock),
        notifier=notifier,
        telemetry=telemetry,
    )
