"""Error taxonomy for the sync engine."""
from typing import Any, Dict, Optional


class SyncError(Exception):
    """Base class for every sync failure."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigError(SyncError):
    """Missing or invalid mapping configuration."""


class AuthError(SyncError):
    """No usable credentials; aborts the whole pass."""


class TransportError(SyncError):
    """Network failure or timeout talking to the remote system."""


class RemoteApiError(SyncError):
    """Remote system answered with a non-2xx status."""

    def __init__(self, message: str, status: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.status = status


class ResolutionError(SyncError):
    """A lookup or custom value could not be resolved; the field is dropped."""


class CalculationError(ResolutionError):
    """A [calculate] expression could not be parsed or evaluated."""


class NoDataError(SyncError):
    """A mapping produced an empty payload."""


class ReconciliationMismatch(SyncError):
    """Inbound event references a remote record with no local counterpart."""
