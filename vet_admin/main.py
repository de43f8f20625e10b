"""Main entry point for the clinic admin console."""

import logging
import sys

from vet_admin.config import get_settings


def setup_logging():
    """Configure logging based on settings."""
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def main():
    """Main entry point - runs CLI."""
    setup_logging()

    from vet_admin.cli.commands import app

    app()


async def change_appointment_status(appointment_id, status, prompt, editor, notifier=None):
    """Programmatic API for running one status transition against the clinic API.

    Example:
        import asyncio
        from vet_admin.main import change_appointment_status

        outcome = asyncio.run(change_appointment_status(7, 2, my_prompt, my_editor))
    """
    from vet_admin.clients import create_client_from_settings
    from vet_admin.transitions import create_controller_from_settings

    async with create_client_from_settings() as client:
        appointment = await client.get_appointment(appointment_id)
        controller = create_controller_from_settings(client, notifier=notifier)
        return await controller.change_status(appointment, status, prompt, editor)


if __name__ == "__main__":
    main()
