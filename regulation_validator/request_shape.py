"""
Structural validation of inbound requests — the Received → Validated step.

Pydantic does the field checks; this module turns its error list into the
protocol's ``{field, message}`` entries and raises RequestShapeError with all
of them at once. Nothing here touches the store or any remote service.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import ValidationError

from .exceptions import RequestShapeError
from .models import SEMVER_PATTERN, BatchValidationRequest, ValidationRequest

_SEMVER_RE = re.compile(SEMVER_PATTERN)

# Friendlier messages for the checks clients trip over most.
_FIELD_MESSAGES: dict[str, str] = {
    "regulationId": "Regulation ID is required",
    "regulationVersion": "Regulation version must be in semantic versioning format (e.g., 1.2.3)",
    "regulationContent": "Regulation content is required",
    "regulationContent.text": "Regulation text is required",
    "validationLevel": "Validation level must be 1, 2, or 3",
    "options.requireCertainty": "Required certainty must be between 1 and 5",
    "regulations": "Regulations must be a non-empty array",
}


def is_valid_semantic_version(version: object) -> bool:
    """True for ``MAJOR.MINOR.PATCH`` strings like ``1.2.3``."""
    return isinstance(version, str) and bool(_SEMVER_RE.match(version))


def parse_validation_request(body: Any) -> ValidationRequest:
    """Validate a single-request body.

    Raises:
        RequestShapeError: with one entry per offending field.
    """
    if not isinstance(body, dict):
        raise RequestShapeError(
            "Invalid request format",
            [{"field": "request", "message": "Request body is required"}],
        )
    try:
        return ValidationRequest.model_validate(body)
    except ValidationError as exc:
        raise RequestShapeError("Invalid request format", _field_errors(exc)) from exc


def parse_batch_request(body: Any, max_batch_size: int) -> BatchValidationRequest:
    """Validate the batch envelope (list bounds, shared options).

    Individual entries are NOT checked here. Each is validated inside its
    own isolated execution so one malformed entry cannot sink the batch.
    """
    if not isinstance(body, dict):
        raise RequestShapeError(
            "Invalid request format",
            [{"field": "request", "message": "Request body is required"}],
        )
    try:
        batch = BatchValidationRequest.model_validate(body)
    except ValidationError as exc:
        raise RequestShapeError("Invalid request format", _field_errors(exc)) from exc

    if len(batch.regulations) > max_batch_size:
        raise RequestShapeError(
            "Invalid request format",
            [{
                "field": "regulations",
                "message": f"Batch size cannot exceed {max_batch_size} regulations",
            }],
        )
    return batch


def validate_pagination(page: Any, limit: Any, max_limit: int = 100) -> tuple[int, int]:
    """Parse list pagination. ``limit`` is capped at ``max_limit``."""
    try:
        page_num = int(page)
        limit_num = min(int(limit), max_limit)
    except (TypeError, ValueError):
        page_num, limit_num = 0, 0

    if page_num < 1 or limit_num < 1:
        raise RequestShapeError(
            "Invalid pagination parameters",
            [{"field": "page/limit", "message": "page and limit must be positive integers"}],
            code="INVALID_PARAMETERS",
        )
    return page_num, limit_num


# ─── Internal Helpers ────────────────────────────────────────────────


def _field_errors(exc: ValidationError) -> list[dict[str, str]]:
    errors: list[dict[str, str]] = []
    seen: set[str] = set()
    for err in exc.errors():
        field = _dotted(err["loc"])
        if field in seen:
            continue
        seen.add(field)
        message = _FIELD_MESSAGES.get(field, err["msg"])
        if err["type"] == "missing" and field not in _FIELD_MESSAGES:
            message = f"{field} is required"
        errors.append({"field": field, "message": message})
    return errors


def _dotted(loc: tuple[int | str, ...]) -> str:
    out = ""
    for part in loc:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out += f".{part}" if out else str(part)
    return out or "request"
