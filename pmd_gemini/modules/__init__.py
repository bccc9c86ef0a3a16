# PMD-Gemini Service Modules
# Version: 1.0

# Scan pipeline
from .normalizer import normalize, parse_json_output, parse_table_output
from .artifacts import create_artifact, destroy_artifact, scan_artifact
from .process_runner import invoke, probe_tool
from .scanner import run_scan, validate_scan_request

# AI fix suggestions
from .fix_advisor import FixAdvisor, build_fix_advisor

# Configuration and errors
from .config import ServiceConfig, load_config
from .errors import (
    CollaboratorUnavailable,
    ConfigError,
    IOFailure,
    ProcessFailure,
    ServiceError,
    TimeoutFailure,
    UpstreamFailure,
    ValidationFailure,
)

# Pydantic schemas
from .schemas import (
    ErrorResponse,
    FixRequest,
    FixResponse,
    HealthResponse,
    ScanRequest,
    Violation,
)

# FastAPI app (import separately to avoid loading the web stack)
# from .api import create_app

__all__ = [
    # Pipeline
    "normalize",
    "parse_json_output",
    "parse_table_output",
    "create_artifact",
    "destroy_artifact",
    "scan_artifact",
    "invoke",
    "probe_tool",
    "run_scan",
    "validate_scan_request",
    # Fix advisor
    "FixAdvisor",
    "build_fix_advisor",
    # Config
    "ServiceConfig",
    "load_config",
    # Errors
    "ServiceError",
    "ValidationFailure",
    "IOFailure",
    "ProcessFailure",
    "TimeoutFailure",
    "CollaboratorUnavailable",
    "UpstreamFailure",
    "ConfigError",
    # Schemas
    "Violation",
    "ScanRequest",
    "FixRequest",
    "FixResponse",
    "HealthResponse",
    "ErrorResponse",
]
