"""Error taxonomy for the lead sync pipeline."""

from typing import List, Optional


class LeadSyncError(Exception):
    """Base class; ``status_code`` is used by the HTTP exception handler."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ParseError(LeadSyncError):
    """Structurally malformed input handed to a parser by its caller."""


class FetchError(LeadSyncError):
    """No candidate export endpoint returned usable tabular content."""

    status_code = 502

    def __init__(self, message: str, source: Optional[str] = None, attempts: Optional[List[str]] = None):
        super().__init__(message)
        self.source = source
        self.attempts = attempts or []


class ConflictError(LeadSyncError):
    """A sync is already running for the tenant."""

    status_code = 409


class SyncPausedError(ConflictError):
    """Sync for the tenant is paused."""


class SyncTimeoutError(LeadSyncError):
    """A sync run exceeded its wall-clock budget."""

    status_code = 504


class ValidationError(LeadSyncError):
    status_code = 422


class NotFoundError(LeadSyncError):
    status_code = 404


class ConversionError(LeadSyncError):
    """Lead cannot be converted to a contact."""


class MissingEmail(ConversionError):
    status_code = 400


class AlreadyConverted(ConversionError):
    status_code = 409
