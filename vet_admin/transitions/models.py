"""Models for appointment status transitions and medical-history records."""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

Identifier = Union[int, str]


class AppointmentStatus(IntEnum):
    """Appointment lifecycle statuses as stored by the clinic API."""

    PENDING = 0
    CONFIRMED = 1
    COMPLETED = 2
    CANCELLED = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def coerce(cls, value: Any) -> Optional["AppointmentStatus"]:
        """Map an int, numeric string, name or label onto a status.

        Returns ``None`` for anything unrecognized instead of raising.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                return None
        if isinstance(value, str):
            text = value.strip()
            if text.lstrip("-").isdigit():
                return cls.coerce(int(text))
            return cls.__members__.get(text.upper())
        return None


StatusValue = Union[AppointmentStatus, int, str]


def status_label(value: StatusValue) -> str:
    """Display label for a status, falling back to the raw value."""
    status = AppointmentStatus.coerce(value)
    return status.label if status is not None else str(value)


def status_options() -> list[tuple[int, str]]:
    """Value/label pairs for a status selector."""
    return [(s.value, s.label) for s in AppointmentStatus]


class Workflow(str, Enum):
    """Side-effect category a transition requires."""

    DIRECT_UPDATE = "direct_update"
    CREATE_MEDICAL_HISTORY = "create_medical_history"
    DELETE_MEDICAL_HISTORY = "delete_medical_history"
    EDIT_MEDICAL_HISTORY = "edit_medical_history"

    @property
    def needs_editor(self) -> bool:
        return self in (Workflow.CREATE_MEDICAL_HISTORY, Workflow.EDIT_MEDICAL_HISTORY)


def _lower_first(key: Any) -> Any:
    if isinstance(key, str) and key:
        return key[0].lower() + key[1:]
    return key


def _with_local_offset(value: Optional[datetime]) -> Optional[datetime]:
    """Attach the local UTC offset to a naive timestamp."""
    if value is not None and value.tzinfo is None:
        return value.astimezone()
    return value


def _as_datetime(value: Any) -> Any:
    """Accept date objects and date-only strings where a datetime is expected."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if len(text) == 10:
            return datetime.fromisoformat(text)
    return value


# ── Wire models ──────────────────────────────────────────────────────────────


class WireModel(BaseModel):
    """Base for models exchanged with the clinic API.

    The backend mixes ``PetId`` and ``petId`` style keys; both are folded
    into one camelCase shape here so nothing downstream has to care.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    @model_validator(mode="before")
    @classmethod
    def _normalize_casing(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {_lower_first(k): v for k, v in data.items()}
        return data

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys and JSON-compatible values."""
        return self.model_dump(mode="json", by_alias=True)


class Appointment(WireModel):
    """The slice of an appointment the transition workflow reads."""

    appointment_id: Identifier
    pet_id: Identifier
    doctor_id: Optional[Identifier] = None
    service_id: Optional[Identifier] = None
    service_name: Optional[str] = None
    notes: Optional[str] = None
    status: StatusValue = AppointmentStatus.PENDING
    appointment_date: datetime

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> Any:
        status = AppointmentStatus.coerce(value)
        return status if status is not None else value

    @field_validator("appointment_date", mode="before")
    @classmethod
    def _coerce_date(cls, value: Any) -> Any:
        return _as_datetime(value)


class MedicalHistoryRecord(WireModel):
    """A persisted medical-history entry for a pet."""

    history_id: Identifier
    pet_id: Identifier
    doctor_id: Optional[Identifier] = None
    appointment_id: Optional[Identifier] = None
    record_date: Optional[datetime] = None
    description: str = ""
    treatment: str = ""
    notes: Optional[str] = None
    next_appointment_date: Optional[datetime] = None
    next_service_id: Optional[Identifier] = None
    reminder_note: Optional[str] = None

    @field_validator("record_date", "next_appointment_date", mode="before")
    @classmethod
    def _coerce_dates(cls, value: Any) -> Any:
        return _as_datetime(value)


class MedicalHistoryPayload(WireModel):
    """Body sent to create or update a medical-history record."""

    pet_id: Identifier
    doctor_id: Optional[Identifier] = None
    appointment_id: Optional[Identifier] = None
    record_date: datetime
    description: str
    treatment: str
    notes: Optional[str] = None
    next_appointment_date: Optional[datetime] = None
    next_service_id: Optional[Identifier] = None
    reminder_note: Optional[str] = None

    @field_validator("record_date", "next_appointment_date", mode="after")
    @classmethod
    def _aware_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _with_local_offset(value)


class MedicalHistoryFormResult(WireModel):
    """What the medical-history editor hands back on submit."""

    pet_id: Optional[Identifier] = None
    doctor_id: Optional[Identifier] = None
    appointment_id: Optional[Identifier] = None
    record_date: Optional[datetime] = None
    description: str = ""
    treatment: str = ""
    notes: Optional[str] = None
    next_appointment_date: Optional[date] = None
    next_appointment_time: Optional[str] = None
    next_service_id: Optional[Identifier] = None
    reminder_note: Optional[str] = None

    @field_validator("record_date", mode="before")
    @classmethod
    def _coerce_record_date(cls, value: Any) -> Any:
        return _as_datetime(value)

    @field_validator("next_appointment_date", mode="before")
    @classmethod
    def _coerce_follow_up_date(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and not value.strip():
            return None
        if isinstance(value, str) and len(value.strip()) > 10:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).date()
        return value

    @field_validator(
        "doctor_id", "appointment_id", "next_service_id", "next_appointment_time",
        "reminder_note", mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


# ── Transient workflow state ─────────────────────────────────────────────────


@dataclass(frozen=True)
class TransitionDecision:
    """Policy verdict for a (current, requested) status pair."""

    current_status: StatusValue
    requested_status: StatusValue
    workflow: Workflow
    title: str
    message: str


@dataclass
class TransitionRequest:
    """A user-initiated status change awaiting confirmation or input."""

    appointment: Appointment
    decision: TransitionDecision
    existing_record: Optional[MedicalHistoryRecord] = None

    @property
    def appointment_id(self) -> Identifier:
        return self.appointment.appointment_id

    @property
    def current_status(self) -> StatusValue:
        return self.decision.current_status

    @property
    def requested_status(self) -> StatusValue:
        return self.decision.requested_status

    @property
    def workflow(self) -> Workflow:
        return self.decision.workflow

    @property
    def title(self) -> str:
        return self.decision.title

    @property
    def message(self) -> str:
        return self.decision.message


@dataclass
class EditorPrefill:
    """Data handed to the medical-history editor when it opens."""

    appointment: Appointment
    existing_record: Optional[MedicalHistoryRecord]
    is_edit: bool
    target_status: StatusValue

    def initial_form(self) -> MedicalHistoryFormResult:
        """Build the form contents the editor should start from."""
        record = self.existing_record
        if self.is_edit and record is not None:
            next_date = record.next_appointment_date
            if next_date is not None and next_date.tzinfo is not None:
                next_date = next_date.astimezone()
            return MedicalHistoryFormResult(
                pet_id=record.pet_id,
                doctor_id=record.doctor_id,
                appointment_id=record.appointment_id,
                record_date=record.record_date or datetime.now().astimezone(),
                description=record.description,
                treatment=record.treatment,
                notes=record.notes,
                next_appointment_date=next_date.date() if next_date else None,
                next_appointment_time=next_date.strftime("%H:%M") if next_date else None,
                next_service_id=record.next_service_id,
                reminder_note=record.reminder_note,
            )

        appt = self.appointment
        if self.is_edit:
            # Nothing on file: blank form tied to the appointment's pet.
            return MedicalHistoryFormResult(
                pet_id=appt.pet_id,
                doctor_id=appt.doctor_id,
                appointment_id=appt.appointment_id,
                record_date=datetime.now().astimezone(),
            )
        service = appt.service_name or ""
        return MedicalHistoryFormResult(
            pet_id=appt.pet_id,
            doctor_id=appt.doctor_id,
            appointment_id=appt.appointment_id,
            record_date=datetime.now().astimezone(),
            description=f"Routine examination - Service: {service}" if service else "",
            notes=appt.notes,
        )


class SessionState(str, Enum):
    """Where a per-appointment transition session currently stands."""

    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    AWAITING_MEDICAL_HISTORY_INPUT = "awaiting_medical_history_input"
    COMMITTING = "committing"


class TransitionResult(str, Enum):
    """How a controller event ended."""

    IGNORED = "ignored"
    CANCELLED = "cancelled"
    AWAITING_INPUT = "awaiting_input"
    INVALID = "invalid"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass
class TransitionOutcome:
    """Result of a controller event, safe to show to the user."""

    result: TransitionResult
    appointment_id: Identifier
    workflow: Optional[Workflow] = None
    status: Optional[StatusValue] = None
    record: Optional[MedicalHistoryRecord] = None
    prefill: Optional[EditorPrefill] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def committed(self) -> bool:
        return self.result == TransitionResult.COMMITTED

    @property
    def editor_open(self) -> bool:
        return self.prefill is not None and self.result in (
            TransitionResult.AWAITING_INPUT,
            TransitionResult.INVALID,
            TransitionResult.FAILED,
        )
