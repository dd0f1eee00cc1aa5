#!/usr/bin/env python3
"""
Regulation Validator — Entry Point
==================================

Runs one sample validation request through the orchestrator and prints the
response. With no LEVELn_VALIDATOR_URL set, every call is answered by the
local basic validator.

Usage:
    python main.py                                   # Local fallback only
    LEVEL1_VALIDATOR_URL=http://... python main.py   # Remote level-1 tier
"""

from __future__ import annotations

import asyncio
import logging
import sys

from regulation_validator.aggregator import categorize_errors
from regulation_validator.config import get_settings
from regulation_validator.exceptions import RegulationValidationError
from regulation_validator.orchestrator import ValidationOrchestrator

# ─── Load .env if available (optional dependency) ────────────────────
try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass


# ─── Sample Request ─────────────────────────────────────────────────

SAMPLE_REQUEST = {
    "regulationId": "FERPA-99",
    "regulationVersion": "2.0.0",
    "regulationContent": {
        "text": (
            "An educational agency or institution shall give a parent or eligible "
            "student an opportunity to inspect and review the student's education "
            "records within 45 days after the request."
        ),
        "metadata": {"source": "local-policy-handbook"},
    },
    "validationLevel": 1,
    "options": {"requireCertainty": 2, "includeEvidence": True, "checkVersionChanges": True},
}


# ─── ANSI Color Constants ───────────────────────────────────────────

_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72


# ─── Pretty Printer Helpers ─────────────────────────────────────────


def _print_classification(classification) -> None:
    factors = classification.factors
    print(f"  Level:       {_BOLD}{classification.validation_level}{_RESET} ({classification.validator_type.value})")
    print(f"  Complexity:  {classification.complexity_score}/100")
    print(f"    {_DIM}text {factors.text_complexity}  size {factors.content_size}  "
          f"change {factors.change_frequency}  structure {factors.structural_complexity}{_RESET}")


def _print_evidence(evidence) -> None:
    if not evidence:
        return
    print(f"\n  {_CYAN}EVIDENCE{_RESET}")
    for key, value in evidence.items():
        print(f"    {_DIM}{key}: {value}{_RESET}")


def _print_version_status(status) -> None:
    if status is None:
        return
    if not status.has_changes:
        print(f"  {_GREEN}Version is current ({status.authority_version}){_RESET}")
        return
    for change in status.changes:
        print(f"  {_YELLOW}Version drift: {change.from_version} -> {change.to_version} "
              f"({change.change_type}){_RESET}")


def _print_errors(errors) -> None:
    """Validator-reported discrepancies, grouped by severity."""
    if not errors:
        return
    colors = {"critical": _RED, "major": _YELLOW, "minor": _CYAN}
    for severity, items in categorize_errors(errors).items():
        if not items:
            continue
        print(f"\n  {colors[severity]}{_BOLD}{severity.upper()} ({len(items)}){_RESET}")
        for item in items:
            print(f"    {item.get('description') or item}")


# ─── Pretty Printer ─────────────────────────────────────────────────


def print_response(response) -> int:
    """Pretty-print a validation response with ANSI color codes.

    Returns:
        0 if the copy validated, 1 otherwise.
    """
    data = response.data
    result = data.validation_result

    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  REGULATION VALIDATION REPORT{_RESET}")
    print(f"{'=' * _WIDTH}")
    print(f"  Request:     {_DIM}{response.request_id}{_RESET}")
    print(f"  Regulation:  {data.regulation_id}")
    print(f"  Client ver:  {data.regulation_version}")
    print(f"  Authority:   {data.authority_version}")
    print(f"{'─' * _WIDTH}")

    _print_classification(data.classification)
    _print_version_status(data.version_status)

    print(f"{'─' * _WIDTH}")
    print(f"  Certainty:   {result.certainty_level}/5")
    if result.override_reason:
        print(f"  {_YELLOW}Override:    {result.override_reason}{_RESET}")
    _print_evidence(result.evidence)
    _print_errors(result.errors)

    print(f"\n  {data.summary}")

    print(f"{'=' * _WIDTH}")
    if data.attestation_certificate:
        cert = data.attestation_certificate
        print(f"  {_GREEN}{_BOLD}ATTESTED  --  {cert.certificate_id}{_RESET}")
        print(f"  {_DIM}expires {cert.expires_at:%Y-%m-%d}{_RESET}")
    elif result.is_valid:
        print(f"  {_GREEN}{_BOLD}VALID  --  certainty too low for attestation{_RESET}")
    else:
        print(f"  {_RED}{_BOLD}NOT VALID{_RESET}")
    print(f"{'=' * _WIDTH}\n")

    return 0 if result.is_valid else 1


# ─── Main ────────────────────────────────────────────────────────────


async def _run() -> int:
    orchestrator = ValidationOrchestrator.from_settings()
    try:
        response = await orchestrator.validate(SAMPLE_REQUEST)
    except RegulationValidationError as exc:
        print(f"  {_RED}{_BOLD}{exc.code}{_RESET}: {exc.message}")
        return 2
    finally:
        await orchestrator.close()
    return print_response(response)


def main():
    """Validate the sample request and print the report."""
    logging.basicConfig(level=get_settings().log_level.upper())
    print("\n  Starting Regulation Validator...")
    print(f"  Validating {SAMPLE_REQUEST['regulationId']}@{SAMPLE_REQUEST['regulationVersion']}...\n")

    exit_code = asyncio.run(_run())
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
