"""Error taxonomy for SKStamp.

Every error raised by the package derives from :class:`SkStampError`, so
callers can catch the whole family with one ``except`` clause while still
branching on the specific failure when they need to.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from .models import TimestampLog

__all__ = [
    "SkStampError",
    "ConfigurationError",
    "DigestValidationError",
    "ProviderAttemptError",
    "CreateTimestampTokenError",
    "VerificationMismatchError",
    "ToolkitExecutionError",
    "TimestampParseError",
]


class SkStampError(Exception):
    """Base class for all SKStamp errors."""


class ConfigurationError(SkStampError):
    """The service or a provider is misconfigured. Never retried."""


class DigestValidationError(SkStampError):
    """A digest or hash algorithm was rejected before any I/O happened."""


class ProviderAttemptError(SkStampError):
    """A single TSA provider attempt failed.

    Raised inside the orchestrator and recovered there: the failure is
    logged and the next provider is tried.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CreateTimestampTokenError(SkStampError):
    """Token creation failed.

    Carries the name of the last provider attempted and the complete
    attempt log so operators can see why every provider was rejected.
    """

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        log_history: Optional[Sequence["TimestampLog"]] = None,
    ):
        super().__init__(message)
        self.provider_name = provider_name
        self.log_history = list(log_history or [])


class VerificationMismatchError(SkStampError):
    """The stored timestamp does not belong to the data being checked."""


class ToolkitExecutionError(SkStampError):
    """The external timestamp toolkit exited with an error."""

    def __init__(self, command: str, message: str, returncode: Optional[int] = None):
        self.command = command
        self.message = message
        self.returncode = returncode
        super().__init__(f'Failed to execute "{command}": {message}')


class TimestampParseError(SkStampError):
    """Toolkit text output could not be turned into a structured record."""
