"""
Validation router — picks a validator for a level and never lets a remote
failure escape.

Resolution order:
  1. the validator registered for the requested level
  2. the nearest lower level (3 → 2 → 1)
  3. the local basic validator

A remote call that fails (transport, remote error, malformed body) is logged
and answered by the local basic validator instead. There are no retries: a
failed call is a failed call, and the caller gets the degraded verdict.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Union

from .exceptions import ValidatorUnavailableError
from .gateway import LocalBasicValidator, Validator, ValidatorCall, ValidatorRegistry
from .models import (
    Classification,
    ErrorInfo,
    RegulationContent,
    RegulationSnapshot,
    ValidationOptions,
    ValidationResult,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteRequest:
    """One unit of routing work for route_batch()."""

    classification: Classification
    snapshot: RegulationSnapshot
    content: RegulationContent
    level: int
    options: ValidationOptions


class ValidationRouter:
    """Routes validation calls to the registered tiers with local fallback.

    Usage:
        router = ValidationRouter(ValidatorRegistry.from_urls({1: url}))
        result = await router.route(classification, snapshot, content, 2, options)
    """

    def __init__(
        self,
        registry: Optional[ValidatorRegistry] = None,
        fallback: Optional[Validator] = None,
    ):
        self.registry = registry or ValidatorRegistry()
        self.fallback = fallback or LocalBasicValidator()

    async def route(
        self,
        classification: Classification,
        snapshot: RegulationSnapshot,
        content: RegulationContent,
        level: int,
        options: ValidationOptions,
    ) -> ValidationResult:
        """Validate ``content`` at ``level`` (or the best level available)."""
        call = ValidatorCall.build(snapshot, content, options)
        resolved = self.registry.resolve(level)

        if resolved is None:
            logger.info(
                "No validator registered at or below level %s for %s, using local basic validation",
                level,
                snapshot.id,
            )
            return await self._fallback(call, level, "no_validator_registered")

        resolved_level, validator = resolved
        if resolved_level != level:
            logger.info(
                "Level %s validator unavailable for %s, downgraded to level %s",
                level,
                snapshot.id,
                resolved_level,
            )

        logger.info(
            "Routing %s (score %s, %s) to %s",
            snapshot.id,
            classification.complexity_score,
            classification.validator_type.value,
            validator.name,
        )
        try:
            return await validator.validate(call)
        except ValidatorUnavailableError as exc:
            logger.warning("Validator %s failed for %s: %s", validator.name, snapshot.id, exc)
            return await self._fallback(call, level, "validator_unavailable")

    async def route_batch(
        self, batch: list[RouteRequest]
    ) -> list[Union[ValidationResult, ErrorInfo]]:
        """Route every item concurrently. Output order matches input order.

        An item that faults gets an ErrorInfo in its slot; siblings are unaffected.
        """
        return list(await asyncio.gather(*(self._route_isolated(item) for item in batch)))

    async def is_validator_available(self, level: int) -> bool:
        """Ping the validator registered at exactly ``level``."""
        validator = self.registry.get(level)
        if validator is None:
            return False
        return await validator.ping()

    # ─── Internal Helpers ────────────────────────────────────────────

    async def _fallback(self, call: ValidatorCall, level: int, reason: str) -> ValidationResult:
        result = await self.fallback.validate(call)
        evidence = dict(result.evidence or {})
        evidence["fallback"] = {"reason": reason, "requestedLevel": level}
        return result.model_copy(update={"evidence": evidence})

    async def _route_isolated(self, item: RouteRequest) -> Union[ValidationResult, ErrorInfo]:
        try:
            return await self.route(
                item.classification, item.snapshot, item.content, item.level, item.options
            )
        except Exception as exc:  # isolate the slot; siblings must complete
            logger.exception("Routing failed for %s", item.snapshot.id)
            return ErrorInfo(code="VALIDATION_FAILED", message=str(exc))
