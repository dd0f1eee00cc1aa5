"""
Regulation complexity classifier.

Scores a regulation on four independent 0–100 factors and picks the minimum
validation level it deserves:

    score = 0.3 * text + 0.2 * size + 0.3 * change + 0.2 * structure

    score < 30  → level 1  (static text)
    score < 70  → level 2  (pattern / semi-structured)
    otherwise   → level 3  (context-aware)

The final level is max(requested, determined): classification can escalate
what the caller asked for, never downgrade it.

Change frequency and structural complexity are static lookup tables keyed on
category and jurisdiction. They are NOT learned from version history.

Everything here is a pure function with no I/O or clock access, so the
same (snapshot, requested_level) pair always yields an identical Classification.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from .models import Classification, ComplexityFactors, RegulationSnapshot, ValidatorType

# ─── Weights & Thresholds ───────────────────────────────────────────

FACTOR_WEIGHTS: dict[str, float] = {
    "text_complexity": 0.3,
    "content_size": 0.2,
    "change_frequency": 0.3,
    "structural_complexity": 0.2,
}

LEVEL_2_THRESHOLD = 30
LEVEL_3_THRESHOLD = 70

# ─── Lookup Tables ──────────────────────────────────────────────────

HIGH_CHANGE_CATEGORIES: frozenset[str] = frozenset({
    "technology", "financial", "healthcare", "cybersecurity", "security",
})
MEDIUM_CHANGE_CATEGORIES: frozenset[str] = frozenset({
    "academic", "policy", "admissions", "student",
})

JURISDICTION_STRUCTURE_SCORES: dict[str, int] = {
    "federal": 80,
    "accreditation": 70,
    "state": 60,
}
DEFAULT_STRUCTURE_SCORE = 40  # Local, institutional, etc.

# Category baseline inside text complexity
CATEGORY_TEXT_BASELINE: dict[str, int] = {
    "financial": 20,
    "policy": 15,
}
DEFAULT_TEXT_BASELINE = 10

_MANDATORY_LANGUAGE = re.compile(
    r"\b(shall|must|according\s+to|pursuant\s+to|in\s+accordance\s+with)\b", re.IGNORECASE
)
_NUMERIC_REQUIREMENT = re.compile(
    r"\b\d+(\.\d+)?%|\b\d+\s+days\b|\$\s*\d+|\b\d+\s+years\b", re.IGNORECASE
)
_TECHNICAL_VOCABULARY = re.compile(
    r"\b(compliance|threshold|requirement|standard|procedure|protocol)\b", re.IGNORECASE
)


@dataclass(frozen=True)
class TextComplexity:
    """Intermediate text-analysis result, kept for tests and debugging."""

    score: int
    size_bucket: str
    has_mandatory_language: bool
    has_numeric_requirements: bool
    has_technical_terms: bool


# ─── Public API ──────────────────────────────────────────────────────


def classify_regulation(snapshot: RegulationSnapshot, requested_level: int = 1) -> Classification:
    """Classify a regulation and pick its validation level.

    Args:
        snapshot: Authoritative regulation record.
        requested_level: Level the caller asked for (1–3).

    Returns:
        Classification whose ``validation_level`` is never below ``requested_level``.
    """
    text = analyze_text_complexity(snapshot)
    factors = ComplexityFactors(
        text_complexity=text.score,
        content_size=content_size_score(snapshot.title),
        change_frequency=change_frequency_score(snapshot.category),
        structural_complexity=structural_complexity_score(snapshot.jurisdiction),
    )
    score = complexity_score(factors)
    level = max(requested_level, determine_level(score))

    return Classification(
        regulation_id=snapshot.id,
        validation_level=level,
        complexity_score=score,
        factors=factors,
        validator_type=validator_type_for(level),
    )


def determine_level(score: int) -> int:
    """Map a 0–100 complexity score onto validation levels 1–3."""
    if score < LEVEL_2_THRESHOLD:
        return 1
    if score < LEVEL_3_THRESHOLD:
        return 2
    return 3


def validator_type_for(level: int) -> ValidatorType:
    if level == 1:
        return ValidatorType.TEXT
    if level == 2:
        return ValidatorType.PATTERN
    return ValidatorType.CONTEXT


def complexity_score(factors: ComplexityFactors) -> int:
    """Weighted sum of the four factors, rounded half-up and clamped to [0, 100]."""
    weighted = (
        factors.text_complexity * FACTOR_WEIGHTS["text_complexity"]
        + factors.content_size * FACTOR_WEIGHTS["content_size"]
        + factors.change_frequency * FACTOR_WEIGHTS["change_frequency"]
        + factors.structural_complexity * FACTOR_WEIGHTS["structural_complexity"]
    )
    rounded = int(Decimal(str(weighted)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return min(100, max(0, rounded))


# ─── Factor Scores ───────────────────────────────────────────────────


def size_bucket(title: str) -> str:
    """Title length is the size proxy; the snapshot carries no body text."""
    if len(title) >= 100:
        return "large"
    if len(title) >= 50:
        return "medium"
    return "small"


def content_size_score(title: str) -> int:
    return {"large": 100, "medium": 50}.get(size_bucket(title), 25)


def analyze_text_complexity(snapshot: RegulationSnapshot) -> TextComplexity:
    """Pattern checks over the title plus size and category contributions."""
    title = snapshot.title
    mandatory = bool(_MANDATORY_LANGUAGE.search(title))
    numeric = bool(_NUMERIC_REQUIREMENT.search(title))
    technical = bool(_TECHNICAL_VOCABULARY.search(title))
    bucket = size_bucket(title)

    score = (
        (20 if mandatory else 0)
        + (20 if numeric else 0)
        + (20 if technical else 0)
        + {"large": 30, "medium": 15}.get(bucket, 0)
        + CATEGORY_TEXT_BASELINE.get(snapshot.category.strip().lower(), DEFAULT_TEXT_BASELINE)
    )

    return TextComplexity(
        score=min(100, score),
        size_bucket=bucket,
        has_mandatory_language=mandatory,
        has_numeric_requirements=numeric,
        has_technical_terms=technical,
    )


def change_frequency_score(category: str) -> int:
    """Static category table: 75 volatile, 50 moderate, 25 everything else."""
    key = category.strip().lower()
    if key in HIGH_CHANGE_CATEGORIES:
        return 75
    if key in MEDIUM_CHANGE_CATEGORIES:
        return 50
    return 25


def structural_complexity_score(jurisdiction: str) -> int:
    """Static jurisdiction table: federal 80, accreditation 70, state 60, else 40."""
    return JURISDICTION_STRUCTURE_SCORES.get(jurisdiction.strip().lower(), DEFAULT_STRUCTURE_SCORE)
