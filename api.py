"""
Regulation Validator — FastAPI Server
=====================================

HTTP surface over the validation orchestrator.

Endpoints:
    POST /validate                   Validate one client-held regulation copy
    POST /validate/batch             Validate many regulations concurrently
    GET  /regulations                List authoritative regulations (paginated)
    GET  /regulations/{regulationId} One regulation with its version history
    GET  /status                     Component health

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
    uvicorn api:app --host 0.0.0.0        # Production

Docs:
    http://localhost:8000/docs             # Swagger UI (auto-generated)
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from regulation_validator import __version__
from regulation_validator.audit import emit_audit_event, system_event
from regulation_validator.config import get_settings
from regulation_validator.exceptions import RegulationValidationError, RequestShapeError
from regulation_validator.models import (
    BatchValidationResponse,
    RegulationDetail,
    RegulationListResponse,
    StatusResponse,
    ValidationResponse,
)
from regulation_validator.orchestrator import ValidationOrchestrator, new_request_id

# ─── Load .env if available ──────────────────────────────────────────
try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


# ─── Application Lifespan ────────────────────────────────────────────

_orchestrator: ValidationOrchestrator | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the orchestrator from the environment and record startup/shutdown."""
    global _orchestrator  # noqa: PLW0603
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _orchestrator = ValidationOrchestrator.from_settings(settings)
    await emit_audit_event(
        _orchestrator.audit_sink,
        system_event("startup", {"version": __version__, "environment": settings.environment}),
    )
    yield
    await emit_audit_event(_orchestrator.audit_sink, system_event("shutdown"))
    await _orchestrator.close()
    _orchestrator = None


# ─── FastAPI App ─────────────────────────────────────────────────────

app = FastAPI(
    title="Regulation Validator API",
    description=(
        "Checks a client's copy of a regulation against the authoritative version. "
        "Complexity-based level selection, tiered validators with local fallback, "
        "certainty gating, and signed attestation for high-confidence matches."
    ),
    version=__version__,
    lifespan=lifespan,
)


# ─── Error Envelope ──────────────────────────────────────────────────


def _error_body(code: str, message: str, details: Any, request_id: str) -> dict:
    error: dict[str, Any] = {"code": code, "message": message, "requestId": request_id}
    if details:
        error["details"] = details
    return {"error": error}


@app.exception_handler(RegulationValidationError)
async def regulation_error_handler(request: Request, exc: RegulationValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.code, exc.message, exc.details, _request_id(request)),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=_error_body(
            "INTERNAL_ERROR", "An internal error occurred", None, _request_id(request)
        ),
    )


# ─── Helpers ─────────────────────────────────────────────────────────


def _get_orchestrator() -> ValidationOrchestrator:
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not initialised")
    return _orchestrator


def _request_id(request: Request) -> str:
    """Caller-supplied X-Request-ID, else one generated per request."""
    if not hasattr(request.state, "request_id"):
        request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or new_request_id()
    return request.state.request_id


async def _json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise RequestShapeError(
            "Invalid request format",
            [{"field": "request", "message": "Request body must be valid JSON"}],
        ) from exc


# ─── Endpoints ───────────────────────────────────────────────────────


@app.post(
    "/validate",
    summary="Validate a client-held regulation copy",
    tags=["Validation"],
    response_model_by_alias=True,
    response_model_exclude_none=True,
    responses={
        400: {"description": "Malformed request"},
        404: {"description": "Unknown regulation"},
        503: {"description": "Orchestrator not yet initialised"},
    },
)
async def validate_regulation(request: Request) -> ValidationResponse:
    """Classify, route, gate and (for certainty ≥ 4) attest one regulation copy.

    Returns:
    - **validationResult**: the certainty-gated verdict
    - **classification**: complexity score and the level actually used
    - **attestationCertificate**: present only for valid results with certainty ≥ 4
    """
    orchestrator = _get_orchestrator()
    body = await _json_body(request)
    return await orchestrator.validate(body, request_id=_request_id(request))


@app.post(
    "/validate/batch",
    summary="Validate many regulations concurrently",
    tags=["Validation"],
    response_model_by_alias=True,
    response_model_exclude_none=True,
    responses={
        400: {"description": "Malformed batch envelope"},
        503: {"description": "Orchestrator not yet initialised"},
    },
)
async def validate_batch(request: Request) -> BatchValidationResponse:
    """Per-entry failures come back as error records inside ``results``."""
    orchestrator = _get_orchestrator()
    body = await _json_body(request)
    return await orchestrator.validate_batch(body, request_id=_request_id(request))


@app.get(
    "/regulations",
    summary="List regulations",
    tags=["Regulations"],
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def list_regulations(
    page: str = "1",
    limit: str = "20",
    category: Optional[str] = None,
    jurisdiction: Optional[str] = None,
    query: Optional[str] = None,
    tags: Optional[list[str]] = Query(default=None),
    active: Optional[bool] = None,
) -> RegulationListResponse:
    orchestrator = _get_orchestrator()
    filters = {
        "category": category,
        "jurisdiction": jurisdiction,
        "query": query,
        "tags": tags,
        "active": active,
    }
    return await orchestrator.list_regulations(filters, page, limit)


@app.get(
    "/regulations/{regulation_id}",
    summary="Get one regulation with its version history",
    tags=["Regulations"],
    response_model_by_alias=True,
    response_model_exclude_none=True,
    responses={404: {"description": "Unknown regulation"}},
)
async def get_regulation(regulation_id: str) -> RegulationDetail:
    orchestrator = _get_orchestrator()
    return await orchestrator.get_regulation(regulation_id)


@app.get(
    "/status",
    summary="Service and component health",
    tags=["System"],
    response_model_by_alias=True,
)
async def status() -> StatusResponse:
    orchestrator = _get_orchestrator()
    return await orchestrator.status()
