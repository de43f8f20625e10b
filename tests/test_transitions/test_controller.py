"""Tests for the transition controller."""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.conftest import InMemoryClinicStore, make_record
from vet_admin.transitions import (
    AppointmentStatus,
    MedicalHistoryFormResult,
    MedicalHistoryReconciler,
    RecordLookupError,
    SessionState,
    StoreError,
    TransitionController,
    TransitionGuard,
    TransitionResult,
    Workflow,
    create_controller_from_settings,
)
from vet_admin.transitions.controller import (
    HISTORY_CREATED,
    HISTORY_DELETED,
    HISTORY_UPDATED,
    LOOKUP_FAILED,
    STATUS_UPDATED,
)

PENDING = AppointmentStatus.PENDING
CONFIRMED = AppointmentStatus.CONFIRMED
COMPLETED = AppointmentStatus.COMPLETED
CANCELLED = AppointmentStatus.CANCELLED


class GatedStore(InMemoryClinicStore):
    """Store whose status writes block until ``gate`` is set."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = asyncio.Event()

    async def set_status(self, appointment_id, status):
        self.calls.append(("set_status", appointment_id, status))
        await self.gate.wait()
        self.statuses[appointment_id] = status


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


def _filled(form, **kwargs):
    fields = {"description": "Fever and lethargy", "treatment": "Antibiotics for 7 days"}
    fields.update(kwargs)
    return form.model_copy(update=fields)


@pytest.fixture
def gated_store():
    return GatedStore()


@pytest.fixture
def gated_controller(gated_store, clock, notifier, telemetry):
    return TransitionController(
        appointments=gated_store,
        reconciler=MedicalHistoryReconciler(gated_store),
        guard=TransitionGuard(cooldown_seconds=1.0, clock=clock),
        notifier=notifier,
        telemetry=telemetry,
    )


class TestRequestStatusChange:
    """Tests for building confirmation requests."""

    def test_same_status_is_noop(self, controller, pending_appointment):
        """Test that re-selecting the current status asks nothing."""
        assert controller.request_status_change(pending_appointment, PENDING) is None
        assert controller.state(7) == SessionState.IDLE

    def test_unknown_status_is_dropped(self, controller, pending_appointment, store):
        """Test that an unrecognized status never reaches the store."""
        assert controller.request_status_change(pending_appointment, "archived") is None
        assert controller.state(7) == SessionState.IDLE
        assert store.calls == []

    def test_request_awaits_confirmation(self, controller, pending_appointment, store):
        """Test that a valid request opens the confirmation step only."""
        request = controller.request_status_change(pending_appointment, "completed")

        assert request.workflow == Workflow.CREATE_MEDICAL_HISTORY
        assert request.appointment_id == 7
        assert request.title == "Confirm appointment completion"
        assert controller.state(7) == SessionState.AWAITING_CONFIRMATION
        assert store.calls == []

    def test_newer_request_replaces_pending_one(self, controller, pending_appointment):
        """Test that choosing again before confirming swaps the request."""
        controller.request_status_change(pending_appointment, COMPLETED)
        request = controller.request_status_change(pending_appointment, CONFIRMED)

        assert request.workflow == Workflow.DIRECT_UPDATE
        assert controller.session(7).request is request

    @pytest.mark.asyncio
    async def test_request_ignored_while_editor_open(self, controller, pending_appointment):
        """Test that a second request waits for the open editor."""
        controller.request_status_change(pending_appointment, COMPLETED)
        await controller.confirm(7)

        assert controller.request_status_change(pending_appointment, CANCELLED) is None
        assert controller.state(7) == SessionState.AWAITING_MEDICAL_HISTORY_INPUT


class TestCancelAndClose:
    """Tests for dismissing dialogs."""

    @pytest.mark.asyncio
    async def test_cancel_returns_to_idle(self, controller, pending_appointment, store):
        """Test that declining the prompt makes no calls."""
        controller.request_status_change(pending_appointment, CONFIRMED)

        outcome = controller.cancel(7)

        assert outcome.result == TransitionResult.CANCELLED
        assert controller.state(7) == SessionState.IDLE
        assert (await controller.confirm(7)).result == TransitionResult.IGNORED
        assert store.calls == []

    def test_cancel_without_prompt_is_ignored(self, controller):
        """Test that cancelling an idle appointment does nothing."""
        assert controller.cancel(7).result == TransitionResult.IGNORED

    @pytest.mark.asyncio
    async def test_close_editor_releases_guard(self, controller, pending_appointment, store):
        """Test that closing the editor leaves status and records untouched."""
        controller.request_status_change(pending_appointment, COMPLETED)
        await controller.confirm(7)
        assert controller.guard.is_in_flight(7)

        outcome = controller.close_editor(7)

        assert outcome.result == TransitionResult.CANCELLED
        assert controller.state(7) == SessionState.IDLE
        assert not controller.guard.is_in_flight(7)
        assert store.calls == []
        assert controller.request_status_change(pending_appointment, COMPLETED) is not None

    @pytest.mark.asyncio
    async def test_finished_sessions_are_dropped(self, controller, pending_appointment):
        """Test that no session is retained once a transition ends."""
        controller.request_status_change(pending_appointment, PENDING)
        controller.request_status_change(pending_appointment, "archived")
        assert controller._sessions == {}

        controller.request_status_change(pending_appointment, CONFIRMED)
        controller.cancel(7)
        assert 7 not in controller._sessions

        controller.request_status_change(pending_appointment, COMPLETED)
        await controller.confirm(7)
        controller.close_editor(7)
        assert 7 not in controller._sessions

        controller.request_status_change(pending_appointment, CONFIRMED)
        assert (await controller.confirm(7)).committed
        assert controller._sessions == {}

    @pytest.mark.asyncio
    async def test_submit_without_editor_is_ignored(self, controller):
        """Test that a stray submit is dropped."""
        outcome = await controller.submit_medical_history(7, MedicalHistoryFormResult(pet_id=3))

        assert outcome.result == TransitionResult.IGNORED


class TestDirectUpdate:
    """Tests for plain status changes."""

    @pytest.mark.asyncio
    async def test_commits_status_only(self, controller, pending_appointment, store, notifier):
        """Test that Pending -> Confirmed writes only the status."""
        controller.request_status_change(pending_appointment, CONFIRMED)

        outcome = await controller.confirm(7)

        assert outcome.committed
        assert outcome.status == CONFIRMED
        assert store.ops() == ["set_status"]
        assert store.statuses[7] == CONFIRMED
        assert controller.state(7) == SessionState.IDLE
        notifier.success.assert_called_once_with(STATUS_UPDATED)

    @pytest.mark.asyncio
    async def test_status_failure_reports_error(self, controller, pending_appointment, store, notifier):
        """Test that a failed status write surfaces and resets."""
        store.failures["set_status"] = StoreError("PUT failed with 500", status_code=500)
        controller.request_status_change(pending_appointment, CONFIRMED)

        outcome = await controller.confirm(7)

        assert outcome.result == TransitionResult.FAILED
        assert outcome.error_type == "StoreError"
        assert controller.state(7) == SessionState.IDLE
        assert not controller.guard.is_in_flight(7)
        notifier.error.assert_called_once()
        assert "PUT failed with 500" in notifier.error.call_args[0][0]


class TestCreateMedicalHistory:
    """Tests for completing an appointment."""

    @pytest.mark.asyncio
    async def test_confirm_opens_prefilled_editor(self, controller, pending_appointment, store):
        """Test that confirming opens the editor without touching the store."""
        controller.request_status_change(pending_appointment, COMPLETED)

        outcome = await controller.confirm(7)

        assert outcome.result == TransitionResult.AWAITING_INPUT
        assert outcome.editor_open
        assert not outcome.prefill.is_edit
        form = outcome.prefill.initial_form()
        assert form.pet_id == 3
        assert form.doctor_id == 11
        assert form.appointment_id == 7
        assert form.description == "Routine examination - Service: General checkup"
        assert form.treatment == ""
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_submit_creates_record_then_completes(self, controller, pending_appointment, store, notifier):
        """Test that the record is written before the status is committed."""
        controller.request_status_change(pending_appointment, COMPLETED)
        opened = await controller.confirm(7)

        outcome = await controller.submit_medical_history(7, _filled(opened.prefill.initial_form()))

        assert outcome.committed
        assert store.ops() == ["create", "set_status"]
        assert store.calls_to("set_status") == [("set_status", 7, COMPLETED)]
        assert store.calls_to("create")[0][1].appointment_id == 7
        assert outcome.record.history_id == store.records[0].history_id
        assert controller.state(7) == SessionState.IDLE
        assert not controller.guard.is_in_flight(7)
        notifier.success.assert_called_once_with(HISTORY_CREATED)

    @pytest.mark.asyncio
    async def test_blank_treatment_keeps_editor_open(self, controller, pending_appointment, store, notifier):
        """Test that an incomplete form is rejected with no writes."""
        controller.request_status_change(pending_appointment, COMPLETED)
        opened = await controller.confirm(7)

        outcome = await controller.submit_medical_history(7, opened.prefill.initial_form())

        assert outcome.result == TransitionResult.INVALID
        assert outcome.editor_open
        assert "treatment" in outcome.error
        assert store.calls == []
        assert controller.state(7) == SessionState.AWAITING_MEDICAL_HISTORY_INPUT
        notifier.error.assert_called_once()

        retry = await controller.submit_medical_history(7, _filled(opened.prefill.initial_form()))

        assert retry.committed
        assert store.ops() == ["create", "set_status"]

    @pytest.mark.asyncio
    async def test_create_failure_keeps_editor_open(self, controller, pending_appointment, store):
        """Test that a failed write skips the status and allows a retry."""
        store.failures["create"] = StoreError("POST failed with 500", status_code=500)
        controller.request_status_change(pending_appointment, COMPLETED)
        opened = await controller.confirm(7)
        form = _filled(opened.prefill.initial_form())

        outcome = await controller.submit_medical_history(7, form)

        assert outcome.result == TransitionResult.FAILED
        assert outcome.editor_open
        assert store.calls_to("set_status") == []
        assert controller.state(7) == SessionState.AWAITING_MEDICAL_HISTORY_INPUT
        assert controller.guard.is_in_flight(7)

        del store.failures["create"]
        retry = await controller.submit_medical_history(7, form)

        assert retry.committed
        assert store.ops() == ["create", "create", "set_status"]

    @pytest.mark.asyncio
    async def test_status_failure_after_create_keeps_record(self, controller, pending_appointment, store):
        """Test that a failed commit after the write ends the session."""
        store.failures["set_status"] = StoreError("PUT failed with 502", status_code=502)
        controller.request_status_change(pending_appointment, COMPLETED)
        opened = await controller.confirm(7)

        outcome = await controller.submit_medical_history(7, _filled(opened.prefill.initial_form()))

        assert outcome.result == TransitionResult.FAILED
        assert not outcome.editor_open
        assert len(store.records) == 1
        assert controller.state(7) == SessionState.IDLE
        assert not controller.guard.is_in_flight(7)

    @pytest.mark.asyncio
    async def test_follow_up_is_scheduled(self, controller, pending_appointment, telemetry):
        """Test that a follow-up date becomes a 09:00 timestamp and is announced."""
        controller.request_status_change(pending_appointment, COMPLETED)
        opened = await controller.confirm(7)
        form = _filled(
            opened.prefill.initial_form(),
            next_appointment_date=datetime(2024, 6, 10).date(),
            next_appointment_time=None,
        )

        outcome = await controller.submit_medical_history(7, form)

        assert outcome.record.next_appointment_date == datetime(2024, 6, 10, 9, 0).astimezone()
        event_types = [e["event_type"] for e in telemetry.get_recent_events()]
        assert event_types == [
            "transition_requested",
            "medical_history_written",
            "transition_committed",
            "follow_up_scheduled",
        ]


class TestDeleteMedicalHistory:
    """Tests for cancelling a completed appointment."""

    @pytest.mark.asyncio
    async def test_deletes_matching_record_then_cancels(
        self, controller, completed_appointment, store, notifier
    ):
        """Test that the same-day record is removed before the status changes."""
        store.records = [
            make_record(20, record_date=datetime(2024, 6, 5)),
            make_record(10, record_date=datetime(2024, 6, 1, 8, 0)),
        ]
        controller.request_status_change(completed_appointment, CANCELLED)

        outcome = await controller.confirm(7)

        assert outcome.committed
        assert outcome.status == CANCELLED
        assert store.ops() == ["list_by_pet", "delete", "set_status"]
        assert store.calls_to("delete") == [("delete", 10)]
        assert [r.history_id for r in store.records] == [20]
        assert store.statuses[7] == CANCELLED
        notifier.success.assert_called_once_with(HISTORY_DELETED)

    @pytest.mark.asyncio
    async def test_no_record_only_cancels(self, controller, completed_appointment, store, notifier):
        """Test that a pet without history is just cancelled."""
        controller.request_status_change(completed_appointment, CANCELLED)

        outcome = await controller.confirm(7)

        assert outcome.committed
        assert outcome.record is None
        assert store.ops() == ["list_by_pet", "set_status"]
        notifier.success.assert_called_once_with(STATUS_UPDATED)

    @pytest.mark.asyncio
    async def test_lookup_failure_still_cancels(self, controller, completed_appointment, store):
        """Test that a failed lookup degrades to a status-only cancel."""
        store.failures["list_by_pet"] = RecordLookupError("timeout", status_code=504)
        controller.request_status_change(completed_appointment, CANCELLED)

        outcome = await controller.confirm(7)

        assert outcome.committed
        assert store.ops() == ["list_by_pet", "set_status"]

    @pytest.mark.asyncio
    async def test_delete_failure_keeps_status(self, controller, completed_appointment, store):
        """Test that a failed delete leaves the appointment completed."""
        store.records = [make_record(10)]
        store.failures["delete"] = StoreError("DELETE failed with 500", status_code=500)
        controller.request_status_change(completed_appointment, CANCELLED)

        outcome = await controller.confirm(7)

        assert outcome.result == TransitionResult.FAILED
        assert store.calls_to("set_status") == []
        assert controller.state(7) == SessionState.IDLE


class TestEditMedicalHistory:
    """Tests for reopening a completed appointment."""

    @pytest.mark.asyncio
    async def test_edit_updates_record_then_status(
        self, controller, completed_appointment, store, notifier
    ):
        """Test that the existing record is shown, updated and then the status moves."""
        store.records = [make_record(10, notes="Recheck in two weeks")]
        controller.request_status_change(completed_appointment, PENDING)

        opened = await controller.confirm(7)

        assert opened.result == TransitionResult.AWAITING_INPUT
        assert opened.prefill.is_edit
        assert opened.record.history_id == 10
        form = opened.prefill.initial_form()
        assert form.description == "Vomiting for two days"
        assert form.notes == "Recheck in two weeks"
        assert store.ops() == ["list_by_pet"]

        outcome = await controller.submit_medical_history(7, form.model_copy(update={"notes": "Reopened"}))

        assert outcome.committed
        assert outcome.status == PENDING
        assert store.ops() == ["list_by_pet", "update", "set_status"]
        assert store.calls_to("update")[0][1] == 10
        assert store.records[0].notes == "Reopened"
        assert store.statuses[7] == PENDING
        notifier.success.assert_called_once_with(HISTORY_UPDATED)

    @pytest.mark.asyncio
    async def test_edit_without_record_commits_status_only(
        self, controller, completed_appointment, store, notifier
    ):
        """Test that saving the blank form with nothing on file only changes the status."""
        controller.request_status_change(completed_appointment, CONFIRMED)
        opened = await controller.confirm(7)

        assert opened.prefill.existing_record is None
        outcome = await controller.submit_medical_history(7, opened.prefill.initial_form())

        assert outcome.committed
        assert outcome.record is None
        assert store.ops() == ["list_by_pet", "set_status"]
        assert store.records == []
        assert store.statuses[7] == CONFIRMED
        notifier.success.assert_called_once_with(STATUS_UPDATED)
        notifier.error.assert_not_called()

    @pytest.mark.asyncio
    async def test_lookup_failure_aborts(self, controller, completed_appointment, store, notifier):
        """Test that the editor does not open when the record cannot be loaded."""
        store.failures["list_by_pet"] = RecordLookupError("timeout", status_code=504)
        controller.request_status_change(completed_appointment, PENDING)

        outcome = await controller.confirm(7)

        assert outcome.result == TransitionResult.FAILED
        assert outcome.error_type == "RecordLookupError"
        assert store.ops() == ["list_by_pet"]
        assert controller.state(7) == SessionState.IDLE
        notifier.error.assert_called_once_with(LOOKUP_FAILED)

    @pytest.mark.asyncio
    async def test_vanished_record_aborts(self, controller, completed_appointment, store):
        """Test that a record deleted meanwhile fails the edit without a status change."""
        store.records = [make_record(10)]
        controller.request_status_change(completed_appointment, PENDING)
        opened = await controller.confirm(7)
        store.records = []

        outcome = await controller.submit_medical_history(7, opened.prefill.initial_form())

        assert outcome.result == TransitionResult.FAILED
        assert outcome.error_type == "RecordNotFoundError"
        assert store.calls_to("set_status") == []
        assert controller.state(7) == SessionState.IDLE


class TestGuarding:
    """Tests for duplicate and overlapping transitions."""

    @pytest.mark.asyncio
    async def test_second_confirm_is_ignored(self, controller, pending_appointment, store):
        """Test that confirming twice commits once."""
        controller.request_status_change(pending_appointment, CONFIRMED)

        first = await controller.confirm(7)
        second = await controller.confirm(7)

        assert first.committed
        assert second.result == TransitionResult.IGNORED
        assert len(store.calls_to("set_status")) == 1

    @pytest.mark.asyncio
    async def test_repeat_within_cooldown_is_dropped(self, controller, pending_appointment, clock):
        """Test that the same change right after a commit is suppressed."""
        controller.request_status_change(pending_appointment, CONFIRMED)
        await controller.confirm(7)

        clock.advance(0.5)
        assert controller.request_status_change(pending_appointment, CONFIRMED) is None
        assert controller.request_status_change(pending_appointment, CANCELLED) is not None

        controller.cancel(7)
        clock.advance(0.5)
        assert controller.request_status_change(pending_appointment, CONFIRMED) is not None

    @pytest.mark.asyncio
    async def test_confirm_during_commit_is_ignored(self, gated_controller, gated_store, pending_appointment):
        """Test that nothing else runs for an appointment while it commits."""
        gated_controller.request_status_change(pending_appointment, CONFIRMED)
        first = asyncio.create_task(gated_controller.confirm(7))
        await _settle()

        assert gated_controller.state(7) == SessionState.COMMITTING
        assert (await gated_controller.confirm(7)).result == TransitionResult.IGNORED
        assert gated_controller.request_status_change(pending_appointment, CANCELLED) is None

        gated_store.gate.set()
        assert (await first).committed
        assert len(gated_store.calls_to("set_status")) == 1

    @pytest.mark.asyncio
    async def test_appointments_commit_independently(self, gated_controller, gated_store, pending_appointment):
        """Test that one appointment committing does not hold up another."""
        other = pending_appointment.model_copy(update={"appointment_id": 8})
        gated_controller.request_status_change(pending_appointment, CONFIRMED)
        gated_controller.request_status_change(other, CANCELLED)

        tasks = [
            asyncio.create_task(gated_controller.confirm(7)),
            asyncio.create_task(gated_controller.confirm(8)),
        ]
        await _settle()

        assert [c[1] for c in gated_store.calls_to("set_status")] == [7, 8]

        gated_store.gate.set()
        outcomes = await asyncio.gather(*tasks)
        assert all(o.committed for o in outcomes)
        assert gated_store.statuses == {7: CONFIRMED, 8: CANCELLED}


class TestChangeStatus:
    """Tests for driving a whole transition through prompt and editor."""

    @pytest.fixture
    def prompt(self):
        prompt = MagicMock()
        prompt.confirm = AsyncMock(return_value=True)
        return prompt

    @pytest.fixture
    def editor(self):
        editor = MagicMock()
        editor.edit = AsyncMock(return_value=None)
        return editor

    @pytest.mark.asyncio
    async def test_declined_prompt_cancels(self, controller, pending_appointment, prompt, editor, store):
        """Test that answering no changes nothing."""
        prompt.confirm.return_value = False

        outcome = await controller.change_status(pending_appointment, COMPLETED, prompt, editor)

        assert outcome.result == TransitionResult.CANCELLED
        prompt.confirm.assert_awaited_once()
        assert prompt.confirm.await_args[0][0] == "Confirm appointment completion"
        editor.edit.assert_not_awaited()
        assert store.calls == []
        assert controller.state(7) == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_noop_does_not_prompt(self, controller, pending_appointment, prompt, editor):
        """Test that selecting the current status asks nothing."""
        outcome = await controller.change_status(pending_appointment, PENDING, prompt, editor)

        assert outcome.result == TransitionResult.IGNORED
        prompt.confirm.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_direct_change_skips_editor(self, controller, pending_appointment, prompt, editor, store):
        """Test that a plain change never opens the editor."""
        outcome = await controller.change_status(pending_appointment, CONFIRMED, prompt, editor)

        assert outcome.committed
        editor.edit.assert_not_awaited()
        assert store.ops() == ["set_status"]

    @pytest.mark.asyncio
    async def test_editor_reopens_after_rejected_submit(
        self, controller, pending_appointment, prompt, editor, store
    ):
        """Test that the editor gets the validation error and a second chance."""
        base = {"pet_id": 3, "record_date": datetime(2024, 6, 1, 11, 0), "description": "Checkup"}
        editor.edit.side_effect = [
            MedicalHistoryFormResult(**base, treatment=""),
            MedicalHistoryFormResult(**base, treatment="Vaccination"),
        ]

        outcome = await controller.change_status(pending_appointment, COMPLETED, prompt, editor)

        assert outcome.committed
        assert editor.edit.await_count == 2
        assert editor.edit.await_args_list[0].kwargs["error"] is None
        assert "treatment" in editor.edit.await_args_list[1].kwargs["error"]
        assert store.ops() == ["create", "set_status"]

    @pytest.mark.asyncio
    async def test_closing_editor_cancels(self, controller, pending_appointment, prompt, editor, store):
        """Test that closing the editor abandons the transition."""
        outcome = await controller.change_status(pending_appointment, COMPLETED, prompt, editor)

        assert outcome.result == TransitionResult.CANCELLED
        assert store.calls == []
        assert controller.state(7) == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_edit_flow_uses_existing_record(
        self, controller, completed_appointment, prompt, editor, store
    ):
        """Test that the editor receives the record on file."""
        store.records = [make_record(10)]

        async def reopen(prefill, error=None):
            return prefill.initial_form().model_copy(update={"notes": "Owner asked to reopen"})

        editor.edit.side_effect = reopen

        outcome = await controller.change_status(completed_appointment, CONFIRMED, prompt, editor)

        assert outcome.committed
        assert store.ops() == ["list_by_pet", "update", "set_status"]
        assert store.records[0].notes == "Owner asked to reopen"

    @pytest.mark.asyncio
    async def test_prompt_error_resets_session(self, controller, pending_appointment, prompt, editor):
        """Test that a crashing prompt does not leave the session stuck."""
        prompt.confirm.side_effect = RuntimeError("terminal closed")

        with pytest.raises(RuntimeError):
            await controller.change_status(pending_appointment, CONFIRMED, prompt, editor)

        assert controller.state(7) == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_editor_error_releases_guard(self, controller, pending_appointment, prompt, editor):
        """Test that a crashing editor closes the session."""
        editor.edit.side_effect = RuntimeError("terminal closed")

        with pytest.raises(RuntimeError):
            await controller.change_status(pending_appointment, COMPLETED, prompt, editor)

        assert controller.state(7) == SessionState.IDLE
        assert not controller.guard.is_in_flight(7)


class TestCreateControllerFromSettings:
    """Tests for settings-driven construction."""

    def test_uses_settings(self):
        """Test that defaults come from configuration."""
        controller = create_controller_from_settings(InMemoryClinicStore())

        assert controller.guard.cooldown_seconds == 1.0
        assert controller.reconciler.lookup_limit == 50
        assert controller.reconciler.default_follow_up_hour == 9
