"""Keeps an appointment's medical-history record in step with its status."""

import logging
from datetime import date, datetime, time
from typing import Any, Optional

from vet_admin.transitions.errors import (
    RecordLookupError,
    RecordNotFoundError,
    RecordValidationError,
)
from vet_admin.transitions.models import (
    Identifier,
    MedicalHistoryFormResult,
    MedicalHistoryPayload,
    MedicalHistoryRecord,
)
from vet_admin.transitions.stores import MedicalHistoryStore

logger = logging.getLogger(__name__)

DEFAULT_FOLLOW_UP_HOUR = 9
DEFAULT_LOOKUP_LIMIT = 50


def _calendar_day(value: Any) -> Optional[date]:
    """Local calendar day of a date-like value, ignoring time of day."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        value = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone()
        return value.date()
    if isinstance(value, date):
        return value
    return None


def _parse_time_of_day(value: Any) -> Optional[time]:
    if value is None:
        return None
    if isinstance(value, time):
        return value
    text = str(value).strip()
    if not text:
        return None
    parts = text.split(":")
    try:
        hours, minutes = int(parts[0]), int(parts[1])
        return time(hours, minutes)
    except (IndexError, ValueError) as e:
        raise RecordValidationError(
            f"Invalid follow-up time: {text!r}", fields=["next_appointment_time"]
        ) from e


def compute_follow_up_timestamp(
    day: Any,
    time_of_day: Any = None,
    default_hour: int = DEFAULT_FOLLOW_UP_HOUR,
) -> Optional[datetime]:
    """Combine a follow-up date and an optional ``HH:MM`` into one local timestamp.

    Without a time the visit is put at *default_hour*:00. Seconds and
    microseconds are always zero. The result carries the local UTC offset.
    """
    calendar_day = _calendar_day(day)
    if calendar_day is None:
        return None
    at = _parse_time_of_day(time_of_day) or time(default_hour, 0)
    return datetime.combine(calendar_day, at.replace(second=0, microsecond=0)).astimezone()


class MedicalHistoryReconciler:
    """Finds, creates, updates and deletes the record tied to an appointment."""

    def __init__(
        self,
        store: MedicalHistoryStore,
        lookup_limit: int = DEFAULT_LOOKUP_LIMIT,
        default_follow_up_hour: int = DEFAULT_FOLLOW_UP_HOUR,
    ) -> None:
        self.store = store
        self.lookup_limit = lookup_limit
        self.default_follow_up_hour = default_follow_up_hour

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def find_existing_record(
        self,
        pet_id: Identifier,
        appointment_date: Any,
    ) -> Optional[MedicalHistoryRecord]:
        """Return the record for a pet's visit on *appointment_date*.

        A record dated on the same calendar day wins. Otherwise the first
        record in store order (the newest) is used. ``None`` when the pet has
        no history at all.

        Raises:
            RecordLookupError: If the store could not be queried
        """
        try:
            records = await self.store.list_by_pet(pet_id, page=1, limit=self.lookup_limit)
        except RecordLookupError:
            raise
        except Exception as e:
            raise RecordLookupError(
                f"Could not load medical history for pet {pet_id}: {e}"
            ) from e

        if not records:
            logger.debug("No medical history on file for pet %s", pet_id)
            return None

        target_day = _calendar_day(appointment_date)
        for record in records:
            if target_day is not None and _calendar_day(record.record_date) == target_day:
                logger.debug(
                    "Matched medical history %s for pet %s on %s",
                    record.history_id, pet_id, target_day,
                )
                return record

        # Relies on the store returning newest first.
        fallback = records[0]
        logger.info(
            "No medical history for pet %s dated %s, falling back to %s",
            pet_id, target_day, fallback.history_id,
        )
        return fallback

    # ------------------------------------------------------------------
    # Payloads
    # ------------------------------------------------------------------

    def compute_follow_up_timestamp(self, day: Any, time_of_day: Any = None) -> Optional[datetime]:
        return compute_follow_up_timestamp(day, time_of_day, self.default_follow_up_hour)

    @staticmethod
    def validate(form: MedicalHistoryFormResult | MedicalHistoryPayload) -> None:
        """Raise if the clinical write-up is incomplete."""
        missing = []
        if not (form.description or "").strip():
            missing.append("description")
        if not (form.treatment or "").strip():
            missing.append("treatment")
        if missing:
            raise RecordValidationError(
                f"Required medical-history fields are empty: {', '.join(missing)}",
                fields=missing,
            )

    def build_payload(
        self,
        form: MedicalHistoryFormResult,
        appointment_id: Optional[Identifier] = None,
    ) -> MedicalHistoryPayload:
        """Turn an editor submission into a write payload."""
        self.validate(form)
        missing = []
        if form.pet_id is None:
            missing.append("pet_id")
        if form.record_date is None:
            missing.append("record_date")
        if missing:
            raise RecordValidationError(
                f"Required medical-history fields are missing: {', '.join(missing)}",
                fields=missing,
            )

        return MedicalHistoryPayload(
            pet_id=form.pet_id,
            doctor_id=form.doctor_id,
            appointment_id=appointment_id if appointment_id is not None else form.appointment_id,
            record_date=form.record_date,
            description=form.description,
            treatment=form.treatment,
            notes=form.notes,
            next_appointment_date=self.compute_follow_up_timestamp(
                form.next_appointment_date, form.next_appointment_time
            ),
            next_service_id=form.next_service_id,
            reminder_note=form.reminder_note,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _check_writable(self, payload: MedicalHistoryPayload) -> None:
        self.validate(payload)
        if payload.record_date is None:
            raise RecordValidationError("Record date is required", fields=["record_date"])

    async def create(self, payload: MedicalHistoryPayload) -> MedicalHistoryRecord:
        """Persist a new record."""
        self._check_writable(payload)
        record = await self.store.create(payload)
        logger.info(
            "Created medical history %s for pet %s (appointment %s)",
            record.history_id, payload.pet_id, payload.appointment_id,
        )
        return record

    async def update(
        self,
        history_id: Identifier,
        payload: MedicalHistoryPayload,
    ) -> MedicalHistoryRecord:
        """Persist changes to an existing record.

        Raises:
            RecordNotFoundError: If the record was removed in the meantime
        """
        self._check_writable(payload)
        record = await self.store.update(history_id, payload)
        logger.info("Updated medical history %s", history_id)
        return record

    async def delete(self, history_id: Identifier) -> None:
        """Remove a record. Already gone counts as done."""
        try:
            await self.store.delete(history_id)
        except RecordNotFoundError:
            logger.debug("Medical history %s already deleted", history_id)
            return
        logger.info("Deleted medical history %s", history_id)
