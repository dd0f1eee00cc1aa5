"""
Pydantic models for the validation protocol — typed at every boundary.

The wire format is camelCase (what clients and remote validators speak);
Python attributes are snake_case. Every model accepts either spelling on
input and serializes camelCase when dumped with ``by_alias=True``.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr
from pydantic.alias_generators import to_camel

SEMVER_PATTERN = r"^\d+\.\d+\.\d+$"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProtocolModel(BaseModel):
    """Base for every protocol model: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── Enumerations ───────────────────────────────────────────────────


class ValidatorType(str, Enum):
    """Validator family implied by the final validation level."""

    TEXT = "text"  # Level 1: static text comparison
    PATTERN = "pattern"  # Level 2: pattern / semi-structured
    CONTEXT = "context"  # Level 3: context-aware


class ErrorSeverity(str, Enum):
    """Severity bucket for validator-reported discrepancies."""

    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


class CertificateStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


# ─── Request Models ─────────────────────────────────────────────────


class RegulationContent(ProtocolModel):
    """The client's locally-held copy. ``text`` may be empty; that is a verdict, not a shape error."""

    text: StrictStr
    metadata: dict[str, Any] = Field(default_factory=dict)


class ValidationOptions(ProtocolModel):
    require_certainty: StrictInt = Field(default=1, ge=1, le=5)
    include_evidence: StrictBool = True
    check_version_changes: StrictBool = False


class ValidationRequest(ProtocolModel):
    """A single validation request after structural validation."""

    regulation_id: StrictStr = Field(min_length=1)
    regulation_version: StrictStr = Field(pattern=SEMVER_PATTERN)
    content: RegulationContent = Field(
        validation_alias=AliasChoices("regulationContent", "content"),
    )
    requested_level: StrictInt = Field(
        default=1,
        ge=1,
        le=3,
        validation_alias=AliasChoices("validationLevel", "requestedLevel"),
    )
    options: ValidationOptions = Field(default_factory=ValidationOptions)


class BatchValidationRequest(ProtocolModel):
    """Batch envelope. Entries stay raw here; each is shape-checked in its own slot."""

    regulations: list[Any] = Field(min_length=1)
    options: ValidationOptions = Field(default_factory=ValidationOptions)


# ─── Authority Records ──────────────────────────────────────────────


class RegulationSnapshot(ProtocolModel):
    """Authoritative regulation record. Immutable for the duration of a request."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    title: str
    category: str
    jurisdiction: str
    current_version: str
    citation: Optional[str] = None
    tags: tuple[str, ...] = ()
    active: bool = True


class RegulationVersion(ProtocolModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    version_number: str
    effective_date: Optional[date] = None
    is_current: bool = False


class RegulationDetail(RegulationSnapshot):
    """Snapshot plus its version history, newest first."""

    versions: tuple[RegulationVersion, ...] = ()


# ─── Classification ─────────────────────────────────────────────────


class ComplexityFactors(ProtocolModel):
    text_complexity: int
    content_size: int
    change_frequency: int
    structural_complexity: int


class Classification(ProtocolModel):
    """Derived per request, never persisted."""

    regulation_id: str
    validation_level: int = Field(ge=1, le=3)
    complexity_score: int = Field(ge=0, le=100)
    factors: ComplexityFactors
    validator_type: ValidatorType


# ─── Validation Results ─────────────────────────────────────────────


class IndividualResult(ProtocolModel):
    is_valid: bool
    certainty_level: int
    validation_level: int


class ValidationResult(ProtocolModel):
    """Outcome of one validator, or of merging several.

    ``certainty_level`` 0 and ``validation_level`` 0 only appear on the
    empty-merge sentinel; real validators report 1–5 and 1–3.
    """

    is_valid: bool
    certainty_level: int = Field(ge=0, le=5)
    validation_level: int = Field(ge=0, le=3)
    validation_timestamp: datetime = Field(default_factory=utcnow)
    evidence: Optional[dict[str, Any]] = None
    errors: Optional[list[dict[str, Any]]] = None
    individual_results: Optional[list[IndividualResult]] = None
    override_reason: Optional[str] = None


class AggregateSummary(ProtocolModel):
    total_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    average_certainty: float = 0.0
    success_rate: int = 0


# ─── Version Drift ──────────────────────────────────────────────────


class VersionChange(ProtocolModel):
    """One detected change. Remote services may attach extra fields."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    from_version: Optional[str] = None
    to_version: Optional[str] = None
    change_type: Optional[str] = None
    regulation_id: Optional[str] = None


class VersionStatus(ProtocolModel):
    has_changes: bool
    changes: list[VersionChange] = Field(default_factory=list)
    authority_version: Optional[str] = None
    regulation_id: Optional[str] = None


class VersionSummary(ProtocolModel):
    has_changes: bool = False
    change_count: int = 0
    regulations_with_changes: int = 0
    regulations_checked: int = 0
    changes: list[VersionChange] = Field(default_factory=list)
    change_rate: int = 0


# ─── Side-Effect Records ────────────────────────────────────────────


class AttestationCertificate(ProtocolModel):
    certificate_id: str
    validation_id: str
    regulation_id: str
    regulation_version: str
    issued_at: datetime
    expires_at: datetime
    issuer: str
    signature: str
    status: CertificateStatus = CertificateStatus.ACTIVE
    certificate_url: str


class AuditEvent(ProtocolModel):
    event_type: str
    entity_type: str
    entity_id: str
    action: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


# ─── Responses ──────────────────────────────────────────────────────


class ErrorInfo(ProtocolModel):
    code: str
    message: str
    details: Any = None


class ValidationData(ProtocolModel):
    regulation_id: str
    regulation_version: str
    authority_version: str
    classification: Classification
    validation_result: ValidationResult
    summary: str
    version_status: Optional[VersionStatus] = None
    attestation_certificate: Optional[AttestationCertificate] = None


class ValidationResponse(ProtocolModel):
    request_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    status: str = "success"
    data: ValidationData


class BatchItemOutcome(ProtocolModel):
    """One slot of a batch: either ``data`` or ``error`` is set, never both."""

    regulation_id: Optional[str] = None
    request_id: str
    data: Optional[ValidationData] = None
    error: Optional[ErrorInfo] = None


class BatchValidationResponse(ProtocolModel):
    request_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    status: str = "success"
    summary: AggregateSummary
    results: Optional[list[BatchItemOutcome]] = None
    version_summary: Optional[VersionSummary] = None


class Pagination(ProtocolModel):
    page: int
    limit: int
    total: int
    pages: int


class RegulationListResponse(ProtocolModel):
    data: list[RegulationSnapshot]
    pagination: Pagination


class StatusResponse(ProtocolModel):
    status: str
    version: str
    environment: str
    timestamp: datetime = Field(default_factory=utcnow)
    components: dict[str, str]
