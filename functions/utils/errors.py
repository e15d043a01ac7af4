"""
Exception hierarchy for the crash-response functions.

Each request-level error carries the HTTP status it is surfaced with, so the
endpoints in main.py can map failures to responses in one place.
"""

from dataclasses import dataclass
from typing import Optional, Dict, Any


class CrashResponseError(Exception):
    """Base exception for all crash-response errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(CrashResponseError):
    """Raised when Firebase credentials or settings cannot be used."""
    pass


class ValidationError(CrashResponseError):
    """Malformed or missing request fields."""
    status_code = 400


class NotFound(CrashResponseError):
    """No facility could be resolved for the crash location."""
    status_code = 404


class ResolutionFailure(CrashResponseError):
    """Recipient lookup infrastructure failed (as opposed to finding nobody)."""
    pass


class UnhandledFailure(CrashResponseError):
    """Any other failure during crash processing."""
    pass


@dataclass
class DispatchFailure:
    """A single notification target that could not be delivered to.

    Recorded in a DispatchReport, never raised to the HTTP caller.
    """
    target: str
    reason: str
