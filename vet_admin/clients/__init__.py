"""Clients for the clinic backend."""

from vet_admin.clients.api import ClinicApiClient, create_client_from_settings

__all__ = ["ClinicApiClient", "create_client_from_settings"]
