"""Error taxonomy for appointment status transitions."""

from typing import Optional


class VetAdminError(Exception):
    """Base exception for admin console errors."""

    pass


class RecordValidationError(VetAdminError, ValueError):
    """Medical-history fields are missing or empty."""

    def __init__(self, message: str, fields: Optional[list[str]] = None):
        super().__init__(message)
        self.fields = fields or []


class StoreError(VetAdminError):
    """A persistence call against the clinic API failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RecordLookupError(StoreError, LookupError):
    """Medical-history records could not be queried."""

    pass


class RecordNotFoundError(StoreError):
    """The targeted medical-history record no longer exists."""

    pass
