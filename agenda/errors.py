"""
Error types raised across the data access layer.
"""
from typing import Optional


class AgendaError(Exception):
    """Base exception for recoverable agenda errors."""

    pass


class BackendError(AgendaError):
    """Raised when a remote read or write fails."""

    def __init__(self, message: str, table: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.table = table
        self.operation = operation


class NotFoundError(BackendError):
    """Raised when an update targets a row that does not exist."""

    pass


class UnknownTableError(BackendError):
    """Raised when a table is not declared in the registry."""

    pass


class RecordValidationError(BackendError):
    """Raised when a row does not match its declared schema."""

    pass


class StorageError(AgendaError):
    """Raised when object storage rejects an upload or lookup."""

    pass


class IdentityError(AgendaError):
    """Raised when the sign-in provider rejects or is misconfigured."""

    def __init__(self, message: str, provider_misconfigured: bool = False):
        super().__init__(message)
        self.provider_misconfigured = provider_misconfigured
