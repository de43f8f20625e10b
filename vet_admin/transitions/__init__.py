"""Appointment status transition workflow."""

from vet_admin.transitions.controller import (
    LoggingNotifier,
    TransitionController,
    create_controller_from_settings,
)
from vet_admin.transitions.errors import (
    RecordLookupError,
    RecordNotFoundError,
    RecordValidationError,
    StoreError,
    VetAdminError,
)
from vet_admin.transitions.guard import TransitionGuard
from vet_admin.transitions.models import (
    Appointment,
    AppointmentStatus,
    EditorPrefill,
    MedicalHistoryFormResult,
    MedicalHistoryPayload,
    MedicalHistoryRecord,
    SessionState,
    TransitionDecision,
    TransitionOutcome,
    TransitionRequest,
    TransitionResult,
    Workflow,
    status_label,
    status_options,
)
from vet_admin.transitions.policy import StatusTransitionPolicy
from vet_admin.transitions.reconciler import MedicalHistoryReconciler, compute_follow_up_timestamp

__all__ = [
    "Appointment",
    "AppointmentStatus",
    "EditorPrefill",
    "LoggingNotifier",
    "MedicalHistoryFormResult",
    "MedicalHistoryPayload",
    "MedicalHistoryReconciler",
    "MedicalHistoryRecord",
    "RecordLookupError",
    "RecordNotFoundError",
    "RecordValidationError",
    "SessionState",
    "StatusTransitionPolicy",
    "StoreError",
    "TransitionController",
    "TransitionDecision",
    "TransitionGuard",
    "TransitionOutcome",
    "TransitionRequest",
    "TransitionResult",
    "VetAdminError",
    "Workflow",
    "compute_follow_up_timestamp",
    "create_controller_from_settings",
    "status_label",
    "status_options",
]
