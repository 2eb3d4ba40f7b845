"""
Error taxonomy for the measurement session engine.
"""

from typing import Optional


class MeshProbeError(Exception):
    """Base class for all meshprobe errors.

    Errors raised after a measurement was submitted carry whatever results
    were accumulated in ``measurement`` so callers can still show them.
    """

    def __init__(self, message: str = "", measurement=None):
        super().__init__(message)
        self.message = message
        self.measurement = measurement

    def __str__(self) -> str:
        return self.message


class ApiError(MeshProbeError):
    """The probe service answered with an error or could not be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type


class NotFoundError(ApiError):
    """The requested resource does not exist."""


class RateLimitError(ApiError):
    """The caller ran out of measurements or credits."""

    def __init__(
        self,
        message: str,
        remaining: Optional[int] = None,
        reset: Optional[int] = None,
        credits_remaining: Optional[int] = None,
    ):
        super().__init__(message, status_code=429, error_type="too_many_requests")
        self.remaining = remaining
        self.reset = reset
        self.credits_remaining = credits_remaining

    @property
    def hint(self) -> str:
        """Human readable remaining-quota hint, empty when nothing is known."""
        parts = []
        if self.remaining is not None:
            parts.append(f"{self.remaining} measurements remaining")
        if self.credits_remaining is not None:
            parts.append(f"{self.credits_remaining} credits remaining")
        if self.reset is not None:
            parts.append(f"limit resets in {self.reset}s")
        return ", ".join(parts)


class SubmissionFailed(MeshProbeError):
    """The measurement could not be created."""


class PollFailed(MeshProbeError):
    """Polling kept failing past the consecutive failure limit."""


class MeasurementFailed(MeshProbeError):
    """The service reported the measurement as failed."""


class MeasurementInterrupted(MeshProbeError):
    """Polling was cancelled by the user."""


class NoSuchSessionReference(MeshProbeError):
    """A session reference points outside the session history."""


class NoSuchMeasurement(MeshProbeError):
    """A measurement id used as a locator does not exist."""


class AmbiguousLocatorExpression(MeshProbeError):
    """A locator mixes location filters with measurement references."""


class AuthRefreshFailed(MeshProbeError):
    """The access token could not be refreshed."""


class CacheSweepError(MeshProbeError):
    """The response cache sweep failed; logged, never fatal."""
