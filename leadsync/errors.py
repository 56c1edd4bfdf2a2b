"""Exception types shared across the sync pipeline."""

from typing import Optional


class LeadSyncError(Exception):
    """Base class for all leadsync errors."""


class ConfigurationError(LeadSyncError):
    """Missing or invalid configuration. Aborts a run before any record is touched."""


class RemoteAPIError(LeadSyncError):
    """A remote collaborator rejected a call.

    Carries an HTTP-like status code and an optional server-supplied
    retry hint (seconds) so the retry executor can classify it the same
    way it classifies ``httpx.HTTPStatusError``.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class RunCancelled(LeadSyncError):
    """Raised at a suspension point once the run's cancel event is set."""
