"""
Failure taxonomy for the harvesting pipeline.

Per-page and per-item errors are recovered by the stage that sees them and
recorded as data. Only `FatalInfrastructureError` is allowed to end a stage.
"""

from __future__ import annotations


class HarvestError(RuntimeError):
    """Base exception for harvesting failures."""


class TransientNetworkError(HarvestError):
    """Timeout, reset or other retryable transport failure."""


class AccessDeniedError(HarvestError):
    """The site refused to serve a page (401/403/429 or a block page)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SessionLostError(HarvestError):
    """The browser session died (closed target, protocol error)."""


class ExtractionError(HarvestError):
    """A detail page could not be turned into a record."""


class LeadRequestError(HarvestError):
    """A lead API call failed for a reason other than 401/429."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(LeadRequestError):
    """The lead API answered 429."""


class UnauthorizedError(LeadRequestError):
    """The lead API answered 401."""


class CredentialRefreshError(HarvestError):
    """Re-authentication did not yield a usable credential."""


class IdentityRotationError(HarvestError):
    """The egress identity could not be changed."""


class FatalInfrastructureError(HarvestError):
    """Store or fetch capability is unreachable; the current stage must stop."""
