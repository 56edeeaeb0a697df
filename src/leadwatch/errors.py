from __future__ import annotations


class LeadwatchError(Exception):
    """Base class for pipeline errors."""


class ClassifyError(LeadwatchError):
    """Hard classification failure. Never retried."""


class RateLimitedError(ClassifyError):
    """The inference service asked us to slow down (HTTP 429)."""

    def __init__(self, message: str = "rate limited", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class SourceFetchError(LeadwatchError):
    """A source bridge call failed."""


class QueueClosedError(LeadwatchError):
    """The work queue no longer accepts items."""


class HubClosedError(LeadwatchError):
    """Publish attempted after the hub was closed."""
