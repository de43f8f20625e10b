"""Orchestrates appointment status changes and their medical-history side effects."""

import logging
from dataclasses import dataclass
from typing import Optional

from vet_admin.observability import TransitionTelemetry, get_transition_telemetry
from vet_admin.transitions.errors import (
    RecordLookupError,
    RecordNotFoundError,
    RecordValidationError,
)
from vet_admin.transitions.guard import TransitionGuard
from vet_admin.transitions.models import (
    Appointment,
    AppointmentStatus,
    EditorPrefill,
    Identifier,
    MedicalHistoryFormResult,
    MedicalHistoryPayload,
    MedicalHistoryRecord,
    SessionState,
    StatusValue,
    TransitionOutcome,
    TransitionRequest,
    TransitionResult,
    Workflow,
)
from vet_admin.transitions.policy import StatusTransitionPolicy
from vet_admin.transitions.reconciler import MedicalHistoryReconciler
from vet_admin.transitions.stores import (
    AppointmentStore,
    ConfirmationPrompt,
    MedicalHistoryEditor,
    Notifier,
)

logger = logging.getLogger(__name__)

STATUS_UPDATED = "Appointment status updated."
HISTORY_DELETED = "Medical history deleted and status updated."
HISTORY_CREATED = "Appointment completed and medical history created."
HISTORY_UPDATED = "Medical history and status updated."
STATUS_FAILED = "An error occurred while updating the status. Please try again."
HISTORY_FAILED = "An error occurred while saving the medical history. Please try again."
LOOKUP_FAILED = "Could not load the medical history for this appointment. Please try again."


class LoggingNotifier:
    """Notifier that only writes to the log."""

    def success(self, message: str) -> None:
        logger.info(message)

    def error(self, message: str) -> None:
        logger.error(message)


@dataclass
class TransitionSession:
    """Open dialogs and pending request for one appointment."""

    appointment_id: Identifier
    state: SessionState = SessionState.IDLE
    request: Optional[TransitionRequest] = None
    prefill: Optional[EditorPrefill] = None


class TransitionController:
    """Single entry point for "set appointment X to status Y".

    Flow per appointment:
    1. ``request_status_change`` asks the policy what to confirm
    2. ``confirm`` runs a direct or delete transition, or opens the editor
    3. ``submit_medical_history`` writes the record, then commits the status

    The medical-history write always finishes before the status commit.
    Errors never escape; they come back as ``FAILED``/``INVALID`` outcomes
    and are reported through the notifier.
    """

    def __init__(
        self,
        appointments: AppointmentStore,
        reconciler: MedicalHistoryReconciler,
        policy: Optional[StatusTransitionPolicy] = None,
        guard: Optional[TransitionGuard] = None,
        notifier: Optional[Notifier] = None,
        telemetry: Optional[TransitionTelemetry] = None,
    ):
        """Initialize controller.

        Args:
            appointments: Store that persists appointment status
            reconciler: Medical-history reconciler
            policy: Decision table (default StatusTransitionPolicy)
            guard: Duplicate/overlap guard (default 1s cooldown)
            notifier: Where user-facing notices go (default: log only)
            telemetry: Transition event sink (default: global instance)
        """
        self.appointments = appointments
        self.reconciler = reconciler
        self.policy = policy or StatusTransitionPolicy()
        self.guard = guard or TransitionGuard()
        self.notifier = notifier or LoggingNotifier()
        self.telemetry = telemetry or get_transition_telemetry()

        self._sessions: dict[Identifier, TransitionSession] = {}

    # ------------------------------------------------------------------
    # Session bookkeeping
    # ------------------------------------------------------------------

    def session(self, appointment_id: Identifier) -> TransitionSession:
        if appointment_id not in self._sessions:
            self._sessions[appointment_id] = TransitionSession(appointment_id=appointment_id)
        return self._sessions[appointment_id]

    def state(self, appointment_id: Identifier) -> SessionState:
        session = self._sessions.get(appointment_id)
        return session.state if session else SessionState.IDLE

    def _reset(self, session: TransitionSession) -> None:
        session.state = SessionState.IDLE
        session.request = None
        session.prefill = None
        if self._sessions.get(session.appointment_id) is session:
            del self._sessions[session.appointment_id]
        self.guard.release(session.appointment_id)

    def _ignored(self, appointment_id: Identifier, status: StatusValue, reason: str) -> TransitionOutcome:
        logger.debug("Ignoring transition of %s to %s: %s", appointment_id, status, reason)
        self.telemetry.log_ignored(appointment_id, status, reason)
        return TransitionOutcome(result=TransitionResult.IGNORED, appointment_id=appointment_id)

    def _failed(
        self,
        request: TransitionRequest,
        error: Exception,
        notice: str,
        prefill: Optional[EditorPrefill] = None,
    ) -> TransitionOutcome:
        self.notifier.error(notice)
        return TransitionOutcome(
            result=TransitionResult.FAILED,
            appointment_id=request.appointment_id,
            workflow=request.workflow,
            status=request.current_status,
            prefill=prefill,
            error=str(error),
            error_type=type(error).__name__,
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def request_status_change(
        self,
        appointment: Appointment,
        requested_status: StatusValue,
    ) -> Optional[TransitionRequest]:
        """Build the request the user has to confirm.

        Returns ``None`` when nothing should be asked: the status is
        unchanged or unknown, a transition for this appointment is already
        under way, or the same change was just committed.
        """
        appointment_id = appointment.appointment_id
        state = self.state(appointment_id)

        if state not in (SessionState.IDLE, SessionState.AWAITING_CONFIRMATION):
            self._ignored(appointment_id, requested_status, f"session is {state.value}")
            return None

        requested = AppointmentStatus.coerce(requested_status)
        if requested is None:
            logger.warning(
                "Unknown status %r requested for appointment %s", requested_status, appointment_id
            )
            return None

        decision = self.policy.evaluate(appointment.status, requested)
        if decision is None:
            return None

        if self.guard.is_blocked(appointment_id, requested):
            self._ignored(appointment_id, requested, "guarded")
            return None

        request = TransitionRequest(appointment=appointment, decision=decision)
        session = self.session(appointment_id)
        session.state = SessionState.AWAITING_CONFIRMATION
        session.request = request
        session.prefill = None
        self.telemetry.log_requested(
            appointment_id, decision.workflow, decision.current_status, decision.requested_status
        )
        return request

    def cancel(self, appointment_id: Identifier) -> TransitionOutcome:
        """Dismiss the confirmation prompt."""
        session = self._sessions.get(appointment_id)
        if session is None or session.state != SessionState.AWAITING_CONFIRMATION:
            return TransitionOutcome(result=TransitionResult.IGNORED, appointment_id=appointment_id)
        self._reset(session)
        return TransitionOutcome(result=TransitionResult.CANCELLED, appointment_id=appointment_id)

    def close_editor(self, appointment_id: Identifier) -> TransitionOutcome:
        """Abandon the medical-history editor without saving."""
        session = self._sessions.get(appointment_id)
        if session is None or session.state != SessionState.AWAITING_MEDICAL_HISTORY_INPUT:
            return TransitionOutcome(result=TransitionResult.IGNORED, appointment_id=appointment_id)
        self._reset(session)
        return TransitionOutcome(result=TransitionResult.CANCELLED, appointment_id=appointment_id)

    async def confirm(self, appointment_id: Identifier) -> TransitionOutcome:
        """Act on an accepted confirmation prompt."""
        session = self._sessions.get(appointment_id)
        if (
            session is None
            or session.state != SessionState.AWAITING_CONFIRMATION
            or session.request is None
        ):
            return self._ignored(appointment_id, None, "nothing to confirm")

        request = session.request
        if not self.guard.try_acquire(appointment_id, request.requested_status):
            self._reset(session)
            return self._ignored(appointment_id, request.requested_status, "guarded")

        if request.workflow == Workflow.CREATE_MEDICAL_HISTORY:
            return self._open_editor(session, existing_record=None, is_edit=False)

        session.state = SessionState.COMMITTING
        try:
            if request.workflow == Workflow.EDIT_MEDICAL_HISTORY:
                appt = request.appointment
                record = await self.reconciler.find_existing_record(
                    appt.pet_id, appt.appointment_date
                )
                return self._open_editor(session, existing_record=record, is_edit=True)

            if request.workflow == Workflow.DELETE_MEDICAL_HISTORY:
                return await self._commit_delete(request)

            return await self._commit_direct(request)

        except RecordLookupError as e:
            logger.error("Medical history lookup failed for appointment %s: %s", appointment_id, e)
            return self._failed(request, e, LOOKUP_FAILED)
        except Exception as e:
            logger.error("Status update of appointment %s failed: %s", appointment_id, e)
            return self._failed(request, e, f"{STATUS_FAILED} ({e})")
        finally:
            if session.state == SessionState.COMMITTING:
                self._reset(session)

    async def submit_medical_history(
        self,
        appointment_id: Identifier,
        form: MedicalHistoryFormResult,
    ) -> TransitionOutcome:
        """Save the editor contents, then commit the pending status."""
        session = self._sessions.get(appointment_id)
        if (
            session is None
            or session.state != SessionState.AWAITING_MEDICAL_HISTORY_INPUT
            or session.request is None
        ):
            return self._ignored(appointment_id, None, "editor is not open")

        request = session.request
        is_create = request.workflow == Workflow.CREATE_MEDICAL_HISTORY
        # Nothing on file to edit: the form is not persisted, so it is not checked.
        status_only = not is_create and request.existing_record is None

        payload = None
        if not status_only:
            try:
                payload = self.reconciler.build_payload(
                    form, appointment_id=appointment_id if is_create else None
                )
            except RecordValidationError as e:
                self.notifier.error(str(e))
                return TransitionOutcome(
                    result=TransitionResult.INVALID,
                    appointment_id=appointment_id,
                    workflow=request.workflow,
                    status=request.current_status,
                    prefill=session.prefill,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        session.state = SessionState.COMMITTING
        written = False
        try:
            record = None
            if status_only:
                logger.info(
                    "No medical history on file for appointment %s, committing status only",
                    appointment_id,
                )
            else:
                record = await self._write_medical_history(request, payload)
            written = True
            target = AppointmentStatus.COMPLETED if is_create else request.requested_status
            await self._commit_status(request, target, record)
        except RecordNotFoundError as e:
            logger.error("Medical history for appointment %s vanished: %s", appointment_id, e)
            return self._failed(request, e, HISTORY_FAILED)
        except Exception as e:
            if not written:
                logger.error("Saving medical history for appointment %s failed: %s", appointment_id, e)
                session.state = SessionState.AWAITING_MEDICAL_HISTORY_INPUT
                return self._failed(request, e, HISTORY_FAILED, prefill=session.prefill)
            if status_only:
                logger.error("Status update of appointment %s failed: %s", appointment_id, e)
            else:
                logger.warning(
                    "Medical history for appointment %s was saved but the status commit failed: %s",
                    appointment_id, e,
                )
            return self._failed(request, e, f"{STATUS_FAILED} ({e})")
        finally:
            if session.state == SessionState.COMMITTING:
                self._reset(session)

        self._announce_follow_up(appointment_id, record, payload)
        if is_create:
            self.notifier.success(HISTORY_CREATED)
        else:
            self.notifier.success(STATUS_UPDATED if status_only else HISTORY_UPDATED)
        return TransitionOutcome(
            result=TransitionResult.COMMITTED,
            appointment_id=appointment_id,
            workflow=request.workflow,
            status=target,
            record=record,
        )

    # ------------------------------------------------------------------
    # Driving the collaborators
    # ------------------------------------------------------------------

    async def change_status(
        self,
        appointment: Appointment,
        requested_status: StatusValue,
        prompt: ConfirmationPrompt,
        editor: MedicalHistoryEditor,
    ) -> TransitionOutcome:
        """Run a whole transition against a confirmation prompt and an editor.

        The editor is reopened after a rejected or failed submit until the
        user saves successfully or closes it.
        """
        appointment_id = appointment.appointment_id
        request = self.request_status_change(appointment, requested_status)
        if request is None:
            return TransitionOutcome(result=TransitionResult.IGNORED, appointment_id=appointment_id)

        try:
            accepted = await prompt.confirm(request.title, request.message)
        except Exception:
            self.cancel(appointment_id)
            raise
        if not accepted:
            return self.cancel(appointment_id)

        outcome = await self.confirm(appointment_id)
        while self.state(appointment_id) == SessionState.AWAITING_MEDICAL_HISTORY_INPUT:
            error = outcome.error if outcome.result != TransitionResult.AWAITING_INPUT else None
            try:
                form = await editor.edit(self.session(appointment_id).prefill, error=error)
            except Exception:
                self.close_editor(appointment_id)
                raise
            if form is None:
                return self.close_editor(appointment_id)
            outcome = await self.submit_medical_history(appointment_id, form)
        return outcome

    # ------------------------------------------------------------------
    # Commit steps
    # ------------------------------------------------------------------

    def _open_editor(
        self,
        session: TransitionSession,
        existing_record: Optional[MedicalHistoryRecord],
        is_edit: bool,
    ) -> TransitionOutcome:
        request = session.request
        request.existing_record = existing_record
        session.prefill = EditorPrefill(
            appointment=request.appointment,
            existing_record=existing_record,
            is_edit=is_edit,
            target_status=request.requested_status,
        )
        session.state = SessionState.AWAITING_MEDICAL_HISTORY_INPUT
        return TransitionOutcome(
            result=TransitionResult.AWAITING_INPUT,
            appointment_id=request.appointment_id,
            workflow=request.workflow,
            status=request.current_status,
            record=existing_record,
            prefill=session.prefill,
        )

    async def _commit_status(
        self,
        request: TransitionRequest,
        status: StatusValue,
        record: Optional[MedicalHistoryRecord] = None,
    ) -> None:
        with self.telemetry.transition(
            request.appointment_id, request.workflow, request.current_status, status
        ) as event:
            if record is not None:
                event.history_id = str(record.history_id)
            await self.appointments.set_status(request.appointment_id, status)
        self.guard.mark_committed(request.appointment_id, status)
        logger.info(
            "Appointment %s moved from %s to %s",
            request.appointment_id, request.current_status, status,
        )

    async def _commit_direct(self, request: TransitionRequest) -> TransitionOutcome:
        await self._commit_status(request, request.requested_status)
        self.notifier.success(STATUS_UPDATED)
        return TransitionOutcome(
            result=TransitionResult.COMMITTED,
            appointment_id=request.appointment_id,
            workflow=request.workflow,
            status=request.requested_status,
        )

    async def _commit_delete(self, request: TransitionRequest) -> TransitionOutcome:
        appt = request.appointment
        record = None
        try:
            record = await self.reconciler.find_existing_record(appt.pet_id, appt.appointment_date)
        except RecordLookupError as e:
            logger.warning(
                "Could not look up medical history for appointment %s, cancelling without cleanup: %s",
                appt.appointment_id, e,
            )

        if record is not None:
            await self.reconciler.delete(record.history_id)
            self.telemetry.log_medical_history(appt.appointment_id, record.history_id, "delete")
        request.existing_record = record

        await self._commit_status(request, AppointmentStatus.CANCELLED, record)
        self.notifier.success(HISTORY_DELETED if record is not None else STATUS_UPDATED)
        return TransitionOutcome(
            result=TransitionResult.COMMITTED,
            appointment_id=appt.appointment_id,
            workflow=request.workflow,
            status=AppointmentStatus.CANCELLED,
            record=record,
        )

    async def _write_medical_history(
        self,
        request: TransitionRequest,
        payload: MedicalHistoryPayload,
    ) -> MedicalHistoryRecord:
        if request.workflow == Workflow.CREATE_MEDICAL_HISTORY:
            record = await self.reconciler.create(payload)
            operation = "create"
        else:
            record = await self.reconciler.update(request.existing_record.history_id, payload)
            operation = "update"

        self.telemetry.log_medical_history(
            request.appointment_id, record.history_id, operation, payload.next_appointment_date
        )
        return record

    def _announce_follow_up(
        self,
        appointment_id: Identifier,
        record: Optional[MedicalHistoryRecord],
        payload: Optional[MedicalHistoryPayload],
    ) -> None:
        if record is None or payload.next_appointment_date is None:
            return
        logger.info(
            "Follow-up for pet %s scheduled at %s; customer reminder pending",
            payload.pet_id, payload.next_appointment_date.isoformat(),
        )
        self.telemetry.log_follow_up(appointment_id, record.history_id, payload.next_appointment_date)


def create_controller_from_settings(store, notifier: Optional[Notifier] = None) -> TransitionController:
    """Create a controller over a store that serves both appointments and medical history."""
    from vet_admin.config import get_settings

    settings = get_settings()
    return TransitionController(
        appointments=store,
        reconciler=MedicalHistoryReconciler(
            store,
            lookup_limit=settings.history_lookup_limit,
            default_follow_up_hour=settings.follow_up_default_hour,
        ),
        guard=TransitionGuard(cooldown_seconds=settings.transition_cooldown_seconds),
        notifier=notifier,
    )
