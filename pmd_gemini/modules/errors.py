"""
PMD-Gemini Service - Error Taxonomy

Every failure that can reach a caller is a ServiceError subclass carrying the
HTTP status, a public message and raw diagnostic details. The API layer turns
these into ``{"error": ..., "details": ...}`` bodies.
"""

from __future__ import annotations

from typing import Optional


class ServiceError(RuntimeError):
    status_code: int = 500

    def __init__(self, error: str, details: Optional[str] = None):
        super().__init__(error)
        self.error = error
        self.details = details if details is not None else error


class ValidationFailure(ServiceError):
    """Missing, empty or oversized request fields."""

    status_code = 400


class IOFailure(ServiceError):
    """The scan artifact could not be written."""


class ProcessFailure(ServiceError):
    """The external analyzer could not run to a clean exit."""

    TOOL_MISSING = "tool_missing"
    LAUNCH_ERROR = "launch_error"
    NONZERO_EXIT = "nonzero_exit"
    OUTPUT_LIMIT = "output_limit"

    def __init__(
        self,
        error: str,
        details: Optional[str] = None,
        *,
        kind: str = NONZERO_EXIT,
        exit_code: Optional[int] = None,
    ):
        super().__init__(error, details)
        self.kind = kind
        self.exit_code = exit_code


class TimeoutFailure(ServiceError):
    """The analyzer did not finish before its deadline."""

    def __init__(self, error: str, details: Optional[str] = None, *, deadline_seconds: float = 0.0):
        super().__init__(error, details)
        self.deadline_seconds = deadline_seconds


class CollaboratorUnavailable(ServiceError):
    """The AI collaborator was not configured at startup."""

    status_code = 503


class UpstreamFailure(ServiceError):
    """The AI collaborator call failed."""


class ConfigError(ValueError):
    pass
