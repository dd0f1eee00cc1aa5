"""
Result aggregation — deterministic merging, gating and summarising.

Two independent jobs live here:

  merge_validation_results()   several validators, ONE regulation
      validity is conjunctive, certainty is the MINIMUM (never averaged),
      level is the maximum, timestamp is the latest.

  aggregate_results()          ONE outcome each, MANY regulations
      success/failure counts, mean certainty, success rate.

Plus the certainty gate (process_validation_response), error severity
buckets, version-drift aggregation and the human-readable summary. Nothing
here performs I/O; identical input gives identical output.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from .models import (
    AggregateSummary,
    BatchItemOutcome,
    BatchValidationResponse,
    ErrorSeverity,
    IndividualResult,
    ValidationOptions,
    ValidationResult,
    VersionChange,
    VersionStatus,
    VersionSummary,
    utcnow,
)

INSUFFICIENT_CERTAINTY = "insufficient_certainty"

CRITICAL_ERROR_TYPES: frozenset[str] = frozenset({"contradiction", "omission", "factual_error"})
MAJOR_ERROR_TYPES: frozenset[str] = frozenset({"inconsistency", "ambiguity"})

CERTAINTY_PHRASES: tuple[str, ...] = (
    "with extremely low certainty",
    "with low certainty",
    "with moderate certainty",
    "with high certainty",
    "with very high certainty",
)

LEVEL_PHRASES: tuple[str, ...] = (
    "basic text comparison",
    "pattern matching and structural validation",
    "comprehensive contextual analysis",
)


# ─── Single Regulation: Multi-Validator Merge ───────────────────────


def merge_validation_results(results: list[ValidationResult]) -> ValidationResult:
    """Merge several validators' verdicts on the same regulation.

    One validator saying "invalid" makes the merge invalid, and the least
    confident validator bounds the merged certainty. Colliding evidence keys
    are kept by suffixing the later one with ``_validator<N>`` (1-based),
    numbered further if that name is taken too. A validator's own
    ``validatorCount`` or ``validatorsAgreed`` is kept under a ``_reported`` name.

    Zero inputs yields an invalid, certainty-0 sentinel rather than an error.
    """
    if not results:
        return ValidationResult(
            is_valid=False,
            certainty_level=0,
            validation_level=0,
            evidence={},
        )

    if len(results) == 1:
        return results[0]

    is_valid = all(r.is_valid for r in results)

    merged_evidence: dict[str, Any] = {}
    for index, result in enumerate(results):
        for key, value in (result.evidence or {}).items():
            merged_evidence[_free_key(merged_evidence, key, f"_validator{index + 1}")] = value

    for key, value in (("validatorCount", len(results)), ("validatorsAgreed", is_valid)):
        if key in merged_evidence:
            reported_key = _free_key(merged_evidence, key, "_reported")
            merged_evidence[reported_key] = merged_evidence[key]
        merged_evidence[key] = value

    return ValidationResult(
        is_valid=is_valid,
        certainty_level=min(r.certainty_level for r in results),
        validation_level=max(r.validation_level for r in results),
        validation_timestamp=max(_as_utc(r.validation_timestamp) for r in results),
        evidence=merged_evidence,
        individual_results=[
            IndividualResult(
                is_valid=r.is_valid,
                certainty_level=r.certainty_level,
                validation_level=r.validation_level,
            )
            for r in results
        ],
    )


# ─── Certainty Gate ─────────────────────────────────────────────────


def process_validation_response(
    result: ValidationResult, options: Optional[ValidationOptions] = None
) -> ValidationResult:
    """Apply the caller's certainty requirement and evidence preference.

    A valid verdict below ``require_certainty`` is downgraded to invalid and
    stamped with ``override_reason="insufficient_certainty"``. The input is
    never mutated.
    """
    options = options or ValidationOptions()
    updates: dict[str, Any] = {}

    if result.is_valid and result.certainty_level < options.require_certainty:
        updates["is_valid"] = False
        updates["override_reason"] = INSUFFICIENT_CERTAINTY

    if not options.include_evidence:
        updates["evidence"] = None

    return result.model_copy(update=updates)


# ─── Many Regulations: Batch Summary ────────────────────────────────


def aggregate_results(results: list[BatchItemOutcome]) -> AggregateSummary:
    """Summarise a batch.

    An item carrying an error counts as a failure even without a result.
    ``average_certainty`` only covers items that expose a certainty value.
    """
    if not results:
        return AggregateSummary()

    success_count = 0
    failure_count = 0
    certainty_total = 0
    certainty_count = 0

    for item in results:
        if item.data is not None:
            verdict = item.data.validation_result
            if verdict.is_valid:
                success_count += 1
            else:
                failure_count += 1
            if verdict.certainty_level:
                certainty_total += verdict.certainty_level
                certainty_count += 1
        elif item.error is not None:
            failure_count += 1

    average = certainty_total / certainty_count if certainty_count else 0.0

    return AggregateSummary(
        total_count=len(results),
        success_count=success_count,
        failure_count=failure_count,
        average_certainty=_round_half_up(average, 1),
        success_rate=int(_round_half_up(success_count / len(results) * 100, 0)),
    )


def aggregate_version_results(statuses: list[VersionStatus]) -> VersionSummary:
    """Roll per-regulation drift checks into one summary."""
    if not statuses:
        return VersionSummary()

    with_changes = 0
    all_changes: list[VersionChange] = []

    for status in statuses:
        if not status.has_changes:
            continue
        with_changes += 1
        for change in status.changes:
            all_changes.append(change.model_copy(update={"regulation_id": status.regulation_id}))

    return VersionSummary(
        has_changes=with_changes > 0,
        change_count=len(all_changes),
        regulations_with_changes=with_changes,
        regulations_checked=len(statuses),
        changes=all_changes,
        change_rate=int(_round_half_up(with_changes / len(statuses) * 100, 0)),
    )


def format_results_for_response(
    summary: AggregateSummary,
    results: list[BatchItemOutcome],
    request_id: str,
    include_details: bool = True,
    version_summary: Optional[VersionSummary] = None,
) -> BatchValidationResponse:
    return BatchValidationResponse(
        request_id=request_id,
        timestamp=utcnow(),
        summary=summary,
        results=results if include_details else None,
        version_summary=version_summary,
    )


# ─── Error Categorisation ────────────────────────────────────────────


def categorize_errors(errors: Optional[list[dict[str, Any]]]) -> dict[str, list[dict[str, Any]]]:
    """Bucket validator-reported errors by severity.

    critical: contradiction, omission, factual_error, or impact=high
    major:    inconsistency, ambiguity, or impact=medium
    minor:    everything else
    """
    categorized: dict[str, list[dict[str, Any]]] = {s.value: [] for s in ErrorSeverity}

    for error in errors or []:
        error_type = error.get("type")
        impact = error.get("impact")

        if error_type in CRITICAL_ERROR_TYPES or impact == "high":
            severity = ErrorSeverity.CRITICAL
        elif error_type in MAJOR_ERROR_TYPES or impact == "medium":
            severity = ErrorSeverity.MAJOR
        else:
            severity = ErrorSeverity.MINOR

        categorized[severity.value].append(error)

    return categorized


# ─── Human-Readable Summary ──────────────────────────────────────────


def generate_human_readable_summary(result: Optional[ValidationResult]) -> str:
    """Render a fixed-phrase sentence summary of a result.

    Deterministic: the same result always renders the same string.
    """
    if result is None:
        return "No validation result available."

    sentences = [
        "Validation passed successfully." if result.is_valid else "Validation failed."
    ]

    if 1 <= result.certainty_level <= 5:
        sentences.append(
            f"The validation was performed {CERTAINTY_PHRASES[result.certainty_level - 1]}."
        )

    if 1 <= result.validation_level <= 3:
        sentences.append(f"Validation used {LEVEL_PHRASES[result.validation_level - 1]}.")

    if not result.is_valid and result.errors:
        categorized = categorize_errors(result.errors)
        critical = len(categorized[ErrorSeverity.CRITICAL.value])
        major = len(categorized[ErrorSeverity.MAJOR.value])
        minor = len(categorized[ErrorSeverity.MINOR.value])
        if critical:
            sentences.append(f"Found {critical} critical issue(s) that must be addressed.")
        if major:
            sentences.append(f"Found {major} major issue(s) that should be addressed.")
        if minor:
            sentences.append(f"Found {minor} minor issue(s) that could be improved.")

    return " ".join(sentences)


# ─── Internal Helpers ────────────────────────────────────────────────


def _free_key(taken: dict[str, Any], key: str, suffix: str) -> str:
    """``key`` if unused, else ``key + suffix``, then numbered variants of that."""
    if key not in taken:
        return key
    candidate = f"{key}{suffix}"
    n = 2
    while candidate in taken:
        candidate = f"{key}{suffix}_{n}"
        n += 1
    return candidate


def _round_half_up(value: float, places: int) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _as_utc(moment: datetime) -> datetime:
    """Naive timestamps from remote validators are taken to be UTC."""
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)
