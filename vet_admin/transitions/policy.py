"""Decision table for appointment status changes."""

from typing import Optional

from vet_admin.transitions.models import (
    AppointmentStatus,
    StatusValue,
    TransitionDecision,
    Workflow,
    status_label,
)


class StatusTransitionPolicy:
    """Maps (current, requested) status pairs to a workflow and a prompt.

    Rules, first match wins:

    1. anything -> Completed: create a medical-history record
    2. Completed -> Cancelled: delete the linked record
    3. Completed -> Pending/Confirmed: the record may be edited
    4. everything else: plain status update

    Never raises. Unknown status values fall through to rule 4 and are
    shown by their raw value.
    """

    def evaluate(
        self,
        current_status: StatusValue,
        requested_status: StatusValue,
    ) -> Optional[TransitionDecision]:
        """Return the decision for a status change, or ``None`` for a no-op."""
        current = AppointmentStatus.coerce(current_status)
        requested = AppointmentStatus.coerce(requested_status)

        if current is not None and requested is not None:
            if current == requested:
                return None
        elif current_status == requested_status:
            return None

        if requested == AppointmentStatus.COMPLETED:
            return TransitionDecision(
                current_status=current if current is not None else current_status,
                requested_status=requested,
                workflow=Workflow.CREATE_MEDICAL_HISTORY,
                title="Confirm appointment completion",
                message=(
                    'Are you sure you want to mark this appointment as "Completed"? '
                    "You will then need to enter the medical-history record."
                ),
            )

        if current == AppointmentStatus.COMPLETED and requested == AppointmentStatus.CANCELLED:
            return TransitionDecision(
                current_status=current,
                requested_status=requested,
                workflow=Workflow.DELETE_MEDICAL_HISTORY,
                title="Confirm appointment cancellation",
                message=(
                    'Are you sure you want to move this appointment from "Completed" '
                    'to "Cancelled"? The linked medical-history record will be deleted.'
                ),
            )

        if current == AppointmentStatus.COMPLETED and requested is not None:
            return TransitionDecision(
                current_status=current,
                requested_status=requested,
                workflow=Workflow.EDIT_MEDICAL_HISTORY,
                title="Confirm status change",
                message=(
                    'Are you sure you want to change the status from "Completed" to '
                    f'"{requested.label}"? You will be able to update the '
                    "medical-history record."
                ),
            )

        return TransitionDecision(
            current_status=current if current is not None else current_status,
            requested_status=requested if requested is not None else requested_status,
            workflow=Workflow.DIRECT_UPDATE,
            title="Confirm status change",
            message=(
                f'Are you sure you want to change the status from "{status_label(current_status)}" '
                f'to "{status_label(requested_status)}"?'
            ),
        )
