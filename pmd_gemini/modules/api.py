"""
PMD-Gemini Service - FastAPI Backend

Endpoints:
- GET  /health  liveness + collaborator availability
- POST /run     run Code Analyzer (PMD) on one submitted file
- POST /fix     ask Gemini for a fix to one violation

Run with ``python -m pmd_gemini.server`` or
``uvicorn pmd_gemini.modules.api:create_app --factory``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from loguru import logger

from .config import ServiceConfig, describe, load_config
from .errors import CollaboratorUnavailable, ServiceError, ValidationFailure
from .fix_advisor import GENERIC_FAILURE_MESSAGE, FixAdvisor, build_fix_advisor
from .process_runner import probe_tool
from .scanner import REQUIRED_FIELDS_MESSAGE, run_scan
from .schemas import ErrorResponse, FixRequest, FixResponse, HealthResponse, ScanRequest, Violation

CORS_ALLOW_METHODS = ["GET", "POST", "OPTIONS"]
CORS_ALLOW_HEADERS = ["Origin", "X-Requested-With", "Content-Type", "Accept", "Authorization"]
CORS_RESPONSE_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": ", ".join(CORS_ALLOW_METHODS),
    "Access-Control-Allow-Headers": ", ".join(CORS_ALLOW_HEADERS),
}

_UNSET: Any = object()


def _error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(error=error, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump())


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_config(request: Request) -> ServiceConfig:
    return request.app.state.config


def get_fix_advisor(request: Request) -> Optional[FixAdvisor]:
    return request.app.state.fix_advisor


def require_fix_advisor(advisor: Optional[FixAdvisor] = Depends(get_fix_advisor)) -> FixAdvisor:
    if advisor is None:
        raise CollaboratorUnavailable(
            "Gemini AI service not available - check GEMINI_API_KEY environment variable"
        )
    return advisor


# =============================================================================
# APP FACTORY
# =============================================================================


def create_app(
    config: Optional[ServiceConfig] = None,
    fix_advisor: Optional[FixAdvisor] = _UNSET,
) -> FastAPI:
    """Build the app.

    Args:
        config: Service settings; loaded from YAML/env when omitted.
        fix_advisor: The shared AI collaborator. Omitted -> built from config;
            None -> /fix disabled.
    """
    if config is None:
        config = load_config()
    if fix_advisor is _UNSET:
        fix_advisor = build_fix_advisor(config)

    app = FastAPI(
        title="PMD-Gemini Service",
        description="Salesforce Code Analyzer scans with Gemini fix suggestions",
        version="1.0.0",
    )
    app.state.config = config
    app.state.fix_advisor = fix_advisor

    open_to_all = "*" in config.allowed_origins

    @app.middleware("http")
    async def short_circuit_options(request: Request, call_next):
        # Preflights are answered by CORSMiddleware; any other OPTIONS ends here.
        if request.method == "OPTIONS":
            response = Response(status_code=200)
        else:
            response = await call_next(request)
        # CORSMiddleware only decorates requests that carry an Origin header.
        if open_to_all:
            response.headers.update(CORS_RESPONSE_HEADERS)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.allowed_origins),
        allow_methods=CORS_ALLOW_METHODS,
        allow_headers=["*"],
    )

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        return _error_response(exc.status_code, exc.error, exc.details)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        if request.url.path == "/fix":
            message = "Both 'prompt' and 'code' fields are required"
        else:
            message = REQUIRED_FIELDS_MESSAGE
        return _error_response(400, message, str(exc.errors()))

    @app.on_event("startup")
    async def startup_event() -> None:
        logger.info("PMD-Gemini Service starting up...")
        for line in describe(config):
            logger.info(f"Startup config: {line}")
        logger.info(f"Gemini AI: {'Ready' if app.state.fix_advisor else 'Not configured'}")

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        logger.info("PMD-Gemini Service shutting down...")

    # -------------------------------------------------------------------------
    # ENDPOINTS
    # -------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse, response_model_by_alias=True)
    async def health(
        config: ServiceConfig = Depends(get_config),
        advisor: Optional[FixAdvisor] = Depends(get_fix_advisor),
    ) -> HealthResponse:
        return HealthResponse(
            gemini_available=advisor is not None,
            analyzer=probe_tool(config.analyzer_binary),
        )

    @app.post("/run", response_model=List[Violation])
    async def run(
        payload: ScanRequest,
        config: ServiceConfig = Depends(get_config),
    ) -> Any:
        logger.info("Received PMD scan request")
        try:
            violations = await run_scan(payload.filename, payload.source, config)
        except ValidationFailure as e:
            logger.warning(f"Rejected scan request: {e.error}")
            raise
        except ServiceError as e:
            logger.error(f"PMD scan error: {e.error}")
            raise
        except Exception as e:
            logger.exception(f"PMD scan error: {e}")
            return _error_response(500, f"PMD scan failed: {e}", repr(e))
        return violations

    @app.post("/fix", response_model=FixResponse)
    async def fix(
        request: Request,
        advisor: FixAdvisor = Depends(require_fix_advisor),
    ) -> Any:
        logger.info("Received AI fix suggestion request")
        payload = await _parse_fix_request(request)
        if not payload.prompt or not payload.code:
            raise ValidationFailure("Both 'prompt' and 'code' fields are required")

        try:
            return await advisor.suggest_fix(payload.prompt, payload.code)
        except ServiceError:
            raise
        except Exception as e:
            logger.exception(f"AI suggestion error: {e}")
            return _error_response(500, GENERIC_FAILURE_MESSAGE, str(e))

    return app


async def _parse_fix_request(request: Request) -> FixRequest:
    # Parsed here rather than as a body parameter so a missing credential
    # answers 503 before the body is looked at.
    try:
        data: Dict[str, Any] = await request.json()
    except ValueError as e:
        raise ValidationFailure("Both 'prompt' and 'code' fields are required", f"Invalid JSON body: {e}") from e
    if not isinstance(data, dict):
        raise ValidationFailure("Both 'prompt' and 'code' fields are required", "Body must be a JSON object")

    prompt = data.get("prompt")
    code = data.get("code")
    return FixRequest(
        prompt=prompt if isinstance(prompt, str) else None,
        code=code if isinstance(code, str) else None,
    )
