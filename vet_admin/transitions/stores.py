"""Collaborator contracts consumed by the transition workflow."""

from typing import Optional, Protocol

from vet_admin.transitions.models import (
    EditorPrefill,
    Identifier,
    MedicalHistoryFormResult,
    MedicalHistoryPayload,
    MedicalHistoryRecord,
    StatusValue,
)


class AppointmentStore(Protocol):
    async def set_status(self, appointment_id: Identifier, status: StatusValue) -> None:
        ...


class MedicalHistoryStore(Protocol):
    async def list_by_pet(
        self, pet_id: Identifier, page: int = 1, limit: int = 50
    ) -> list[MedicalHistoryRecord]:
        ...

    async def create(self, payload: MedicalHistoryPayload) -> MedicalHistoryRecord:
        ...

    async def update(
        self, history_id: Identifier, payload: MedicalHistoryPayload
    ) -> MedicalHistoryRecord:
        ...

    async def delete(self, history_id: Identifier) -> None:
        ...


class ConfirmationPrompt(Protocol):
    """Yes/no dialog shown before a transition runs."""

    async def confirm(self, title: str, message: str) -> bool:
        ...


class MedicalHistoryEditor(Protocol):
    """Form that collects the clinical write-up.

    Returns ``None`` when the user closes the form without saving. ``error``
    carries the message from a previous failed submit.
    """

    async def edit(
        self, prefill: EditorPrefill, error: Optional[str] = None
    ) -> Optional[MedicalHistoryFormResult]:
        ...


class Notifier(Protocol):
    def success(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...
