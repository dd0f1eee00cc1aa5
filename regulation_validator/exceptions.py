"""
Exception hierarchy for the validation orchestrator.

Every exception carries a machine-readable code and an HTTP-style status.
Only RequestShapeError, NotFoundError and InternalError ever reach a caller;
ValidatorUnavailableError and AuditWriteError are absorbed inside the
orchestrator (local fallback and log-and-continue respectively).
"""

from __future__ import annotations

from typing import Any


class RegulationValidationError(Exception):
    """Base exception for all orchestrator failures."""

    status_code: int = 500

    def __init__(self, code: str, message: str, details: Any = None):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)


class RequestShapeError(RegulationValidationError):
    """Malformed, missing, or out-of-range request fields."""

    status_code = 400

    def __init__(
        self,
        message: str,
        details: list[dict[str, str]] | None = None,
        code: str = "INVALID_REQUEST",
    ):
        super().__init__(code, message, details or [])


class NotFoundError(RegulationValidationError):
    """The requested regulation id is unknown to the store."""

    status_code = 404

    def __init__(self, regulation_id: str):
        self.regulation_id = regulation_id
        super().__init__(
            "REGULATION_NOT_FOUND",
            f"Regulation with ID {regulation_id} not found",
        )


class ValidatorUnavailableError(RegulationValidationError):
    """A remote validator could not be reached or reported a failure."""

    status_code = 503

    def __init__(self, message: str, details: Any = None):
        super().__init__("VALIDATOR_UNAVAILABLE", message, details)


class AuditWriteError(RegulationValidationError):
    """An audit event could not be written or enqueued."""

    def __init__(self, message: str, details: Any = None):
        super().__init__("AUDIT_WRITE_FAILED", message, details)


class InternalError(RegulationValidationError):
    """Any unanticipated fault. Logged with full context before surfacing."""

    def __init__(self, message: str = "An internal error occurred", details: Any = None):
        super().__init__("INTERNAL_ERROR", message, details)
