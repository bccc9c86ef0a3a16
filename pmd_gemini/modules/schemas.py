"""
PMD-Gemini Service - Data Structures (Pydantic Schemas)

Defines the request/response models exposed over HTTP:
- Violation: canonical record for one static-analysis finding
- ScanRequest: body of POST /run
- FixRequest / FixResponse: body and reply of POST /fix
- HealthResponse: reply of GET /health
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_RULE_NAME = "Unknown"
DEFAULT_SEVERITY = "Info"
DEFAULT_LINE = 1
DEFAULT_MESSAGE = "Code violation detected"
DEFAULT_FILE_NAME = "Unknown"


# =============================================================================
# SCAN RESULTS
# =============================================================================


class Violation(BaseModel):
    """One normalized analyzer finding. Immutable, compared by value."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    rule_name: str = Field(DEFAULT_RULE_NAME, alias="ruleName")
    severity: Union[int, str] = Field(DEFAULT_SEVERITY)
    line: int = Field(DEFAULT_LINE, ge=1)
    message: str = Field(DEFAULT_MESSAGE)
    file_name: str = Field(DEFAULT_FILE_NAME, alias="fileName")


# =============================================================================
# API REQUESTS / RESPONSES
# =============================================================================


class ScanRequest(BaseModel):
    """POST /run body. Presence and size are checked by the scanner, not here."""

    filename: Optional[str] = None
    source: Optional[str] = None


class FixRequest(BaseModel):
    """POST /fix body."""

    prompt: Optional[str] = None
    code: Optional[str] = None


class FixResponse(BaseModel):
    patch: str
    model: str
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class HealthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "ok"
    message: str = "PMD-Gemini Service is running"
    gemini_available: bool = Field(False, alias="geminiAvailable")
    analyzer: str = ""
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None

    @field_validator("details")
    @classmethod
    def _cap_details(cls, v: Optional[str]) -> Optional[str]:
        # Raw analyzer stderr can be large; keep error bodies readable.
        if v is None:
            return v
        return v[:4000]
