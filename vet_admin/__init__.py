"""Veterinary clinic admin console: appointment status workflow."""

__version__ = "0.1.0"
