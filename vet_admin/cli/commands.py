"""CLI commands for the clinic admin console."""

import asyncio
import json
from datetime import date
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from vet_admin.config import get_settings
from vet_admin.transitions import (
    AppointmentStatus,
    EditorPrefill,
    MedicalHistoryFormResult,
    StoreError,
    TransitionOutcome,
    TransitionResult,
    compute_follow_up_timestamp,
    create_controller_from_settings,
    status_label,
    status_options,
)

app = typer.Typer(
    name="vet-admin",
    help="Veterinary clinic admin console: appointment status workflow",
    add_completion=False,
)
console = Console()


def get_client():
    """Get an API client configured from settings."""
    from vet_admin.clients import create_client_from_settings

    return create_client_from_settings()


class ConsoleNotifier:
    """Prints user-facing notices."""

    def __init__(self, out: Console):
        self.out = out

    def success(self, message: str) -> None:
        self.out.print(f"[green]{message}[/green]")

    def error(self, message: str) -> None:
        self.out.print(f"[red]{message}[/red]")


class ConsoleConfirmationPrompt:
    """Yes/no confirmation in the terminal."""

    def __init__(self, out: Console, assume_yes: bool = False):
        self.out = out
        self.assume_yes = assume_yes

    async def confirm(self, title: str, message: str) -> bool:
        self.out.print(Panel(message, title=title, border_style="yellow"))
        if self.assume_yes:
            return True
        return Confirm.ask("Continue?", console=self.out, default=False)


class ConsoleMedicalHistoryEditor:
    """Medical-history form rendered as terminal prompts.

    Values passed on the command line replace the pre-filled ones. In
    non-interactive mode the form is submitted once as is; a rejected submit
    closes it and sets ``gave_up``.
    """

    def __init__(self, out: Console, overrides: dict, interactive: bool = True):
        self.out = out
        self.overrides = {k: v for k, v in overrides.items() if v is not None}
        self.interactive = interactive
        self._submitted = False
        self.gave_up = False

    def _ask(self, label: str, default: Optional[str]) -> Optional[str]:
        value = Prompt.ask(label, console=self.out, default=default or "")
        return value or None

    async def edit(
        self,
        prefill: EditorPrefill,
        error: Optional[str] = None,
    ) -> Optional[MedicalHistoryFormResult]:
        if error:
            self.out.print(f"[red]{error}[/red]")
            if not self.interactive:
                self.gave_up = True
                return None
        elif not self.interactive and self._submitted:
            self.gave_up = True
            return None

        form = MedicalHistoryFormResult.model_validate(
            {**prefill.initial_form().model_dump(), **self.overrides}
        )
        mode = "Update" if prefill.is_edit else "New"
        self.out.print(
            Panel(
                f"Pet: {form.pet_id}   Doctor: {form.doctor_id or '-'}   "
                f"Appointment: {form.appointment_id or '-'}",
                title=f"{mode} medical history",
                border_style="cyan",
            )
        )
        self._submitted = True
        if not self.interactive:
            return form

        follow_up = form.next_appointment_date.isoformat() if form.next_appointment_date else None
        answers = {
            "description": self._ask("Description", form.description) or "",
            "treatment": self._ask("Treatment", form.treatment) or "",
            "notes": self._ask("Notes", form.notes),
            "next_appointment_date": self._ask("Follow-up date (YYYY-MM-DD)", follow_up),
            "next_appointment_time": self._ask("Follow-up time (HH:MM)", form.next_appointment_time),
            "reminder_note": self._ask("Reminder note", form.reminder_note),
        }
        return MedicalHistoryFormResult.model_validate({**form.model_dump(), **answers})


def _parse_status(value: str) -> AppointmentStatus:
    status = AppointmentStatus.coerce(value)
    if status is None:
        options = ", ".join(f"{v}={label}" for v, label in status_options())
        console.print(f"[red]Invalid status: {value}. Use one of {options}[/red]")
        raise typer.Exit(1)
    return status


async def _run_transition(
    appointment_id: str,
    status: AppointmentStatus,
    prompt: ConsoleConfirmationPrompt,
    editor: ConsoleMedicalHistoryEditor,
) -> TransitionOutcome:
    async with get_client() as client:
        appointment = await client.get_appointment(appointment_id)
        controller = create_controller_from_settings(client, notifier=ConsoleNotifier(console))
        console.print(
            f"Appointment {appointment.appointment_id}: "
            f"{status_label(appointment.status)} -> {status.label}"
        )
        return await controller.change_status(appointment, status, prompt, editor)


@app.command("set-status")
def set_status(
    appointment_id: str = typer.Argument(..., help="Appointment ID"),
    status: str = typer.Argument(..., help="New status: 0-3 or pending/confirmed/completed/cancelled"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    description: Optional[str] = typer.Option(None, "--description", help="Medical-history description"),
    treatment: Optional[str] = typer.Option(None, "--treatment", help="Treatment given"),
    notes: Optional[str] = typer.Option(None, "--notes", help="Additional notes"),
    next_date: Optional[str] = typer.Option(None, "--next-date", help="Follow-up date (YYYY-MM-DD)"),
    next_time: Optional[str] = typer.Option(None, "--next-time", help="Follow-up time (HH:MM)"),
    reminder_note: Optional[str] = typer.Option(None, "--reminder-note", help="Note for the customer reminder"),
    no_input: bool = typer.Option(False, "--no-input", help="Never prompt for medical-history fields"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Change an appointment's status, handling its medical history."""
    requested = _parse_status(status)
    prompt = ConsoleConfirmationPrompt(console, assume_yes=yes)
    editor = ConsoleMedicalHistoryEditor(
        console,
        overrides={
            "description": description,
            "treatment": treatment,
            "notes": notes,
            "next_appointment_date": next_date,
            "next_appointment_time": next_time,
            "reminder_note": reminder_note,
        },
        interactive=not no_input,
    )

    try:
        outcome = asyncio.run(_run_transition(appointment_id, requested, prompt, editor))
    except StoreError as e:
        console.print(f"[red]Could not load appointment {appointment_id}: {e}[/red]")
        raise typer.Exit(1)
    except ValidationError as e:
        console.print(f"[red]Invalid medical-history input: {e}[/red]")
        raise typer.Exit(1)

    if output_json:
        console.print(json.dumps(_outcome_dict(outcome), indent=2, default=str))
    else:
        _display_outcome(outcome)

    if outcome.result == TransitionResult.FAILED or editor.gave_up:
        raise typer.Exit(1)


def _outcome_dict(outcome: TransitionOutcome) -> dict:
    return {
        "result": outcome.result.value,
        "appointment_id": outcome.appointment_id,
        "workflow": outcome.workflow.value if outcome.workflow else None,
        "status": status_label(outcome.status) if outcome.status is not None else None,
        "history_id": outcome.record.history_id if outcome.record else None,
        "error": outcome.error,
    }


def _display_outcome(outcome: TransitionOutcome) -> None:
    table = Table(title="Transition", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in _outcome_dict(outcome).items():
        if value is not None:
            table.add_row(key, str(value))
    console.print(table)


@app.command()
def statuses():
    """List the appointment statuses."""
    table = Table(title="Appointment statuses")
    table.add_column("Value", justify="right")
    table.add_column("Label")
    for value, label in status_options():
        table.add_row(str(value), label)
    console.print(table)


@app.command("follow-up")
def follow_up(
    day: str = typer.Argument(..., help="Follow-up date (YYYY-MM-DD)"),
    time_of_day: Optional[str] = typer.Option(None, "--time", "-t", help="Time (HH:MM)"),
):
    """Show the timestamp stored for a follow-up visit."""
    settings = get_settings()
    try:
        parsed = date.fromisoformat(day)
        stamp = compute_follow_up_timestamp(parsed, time_of_day, settings.follow_up_default_hour)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(stamp.isoformat())


if __name__ == "__main__":
    app()
