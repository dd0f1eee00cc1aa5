"""
Validator gateway — the capability every validation tier implements.

    Validator.validate(call) -> ValidationResult   (raises ValidatorUnavailableError)

Implementations:
  - LocalBasicValidator: text-existence check, always available, certainty ≤ 2.
  - RemoteValidator:     synchronous request/response over HTTP to a tier service.

The ValidatorRegistry maps levels 1–3 to implementations. Resolution is a
plain dictionary lookup plus a downward walk (3 → 2 → 1).
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import ValidationError

from .exceptions import ValidatorUnavailableError
from .models import (
    ProtocolModel,
    RegulationContent,
    RegulationSnapshot,
    ValidationOptions,
    ValidationResult,
)

logger = logging.getLogger(__name__)

VALID_LEVELS: tuple[int, ...] = (1, 2, 3)

# The fallback can never reach the attestation threshold (certainty >= 4).
LOCAL_MAX_CERTAINTY = 2

_PUNCTUATION = re.compile(r"[.,;:!?]")


# ─── Call Payload ────────────────────────────────────────────────────


class ValidatorCall(ProtocolModel):
    """The payload every validator receives, local or remote."""

    action: str = "validate"
    regulation_id: str
    regulation_title: str
    regulation_category: str
    regulation_jurisdiction: str
    authority_version: str
    client_content: RegulationContent
    options: ValidationOptions

    @classmethod
    def build(
        cls,
        snapshot: RegulationSnapshot,
        content: RegulationContent,
        options: ValidationOptions,
    ) -> ValidatorCall:
        return cls(
            regulation_id=snapshot.id,
            regulation_title=snapshot.title,
            regulation_category=snapshot.category,
            regulation_jurisdiction=snapshot.jurisdiction,
            authority_version=snapshot.current_version,
            client_content=content,
            options=options,
        )


# ─── Capability ──────────────────────────────────────────────────────


class Validator(ABC):
    """Abstract validation tier.

    Contract:
        - validate() returns a ValidationResult or raises ValidatorUnavailableError
        - it never raises anything else for transport or remote failures
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for logging."""
        ...

    @abstractmethod
    async def validate(self, call: ValidatorCall) -> ValidationResult:
        ...

    async def ping(self) -> bool:
        """Availability probe. Local implementations are always up."""
        return True


class LocalBasicValidator(Validator):
    """Fallback of last resort: does the client even have text?

    This is the weakest judgment in the system and is reported
    as level 1 with certainty 2 (valid) or 1 (invalid).
    """

    @property
    def name(self) -> str:
        return "local-basic"

    async def validate(self, call: ValidatorCall) -> ValidationResult:
        return basic_validation(call.client_content.text)


def basic_validation(text: str) -> ValidationResult:
    """Pure text-existence check used by LocalBasicValidator."""
    text_exists = len(text) > 0
    return ValidationResult(
        is_valid=text_exists,
        certainty_level=LOCAL_MAX_CERTAINTY if text_exists else 1,
        validation_level=1,
        evidence={
            "textExists": text_exists,
            "metrics": {
                "contentLength": len(text),
                "wordCount": len(text.split()),
                "hasPunctuation": bool(_PUNCTUATION.search(text)),
            },
        },
    )


class RemoteValidator(Validator):
    """A validation tier reached over HTTP.

    A non-2xx status, a transport error, an ``error`` key in the body, or a
    body that is not a ValidationResult all raise ValidatorUnavailableError.
    """

    def __init__(
        self,
        level: int,
        url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.level = level
        self.url = url
        self.timeout = timeout
        self._client = client

    @property
    def name(self) -> str:
        return f"remote-level{self.level}"

    async def validate(self, call: ValidatorCall) -> ValidationResult:
        data = await self._invoke(call.model_dump(mode="json", by_alias=True))
        if isinstance(data, dict) and data.get("error"):
            raise ValidatorUnavailableError(
                f"{self.name} reported an error",
                {"url": self.url, "error": data["error"]},
            )
        try:
            result = ValidationResult.model_validate(data)
        except ValidationError as exc:
            raise ValidatorUnavailableError(
                f"{self.name} returned a malformed result",
                {"url": self.url, "errors": exc.errors(include_url=False)},
            ) from exc
        # The model admits 0 for the empty-merge sentinel; a live verdict may not.
        if not (1 <= result.certainty_level <= 5 and 1 <= result.validation_level <= 3):
            raise ValidatorUnavailableError(
                f"{self.name} returned a malformed result",
                {
                    "url": self.url,
                    "certaintyLevel": result.certainty_level,
                    "validationLevel": result.validation_level,
                },
            )
        return result

    async def ping(self) -> bool:
        try:
            data = await self._invoke({"action": "ping"})
        except ValidatorUnavailableError as exc:
            logger.warning("Validator %s ping failed: %s", self.name, exc)
            return False
        return not (isinstance(data, dict) and data.get("error"))

    async def _invoke(self, payload: dict) -> object:
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise ValidatorUnavailableError(
                f"{self.name} call failed: {exc}", {"url": self.url}
            ) from exc
        except ValueError as exc:  # body was not JSON
            raise ValidatorUnavailableError(
                f"{self.name} returned a non-JSON body", {"url": self.url}
            ) from exc


# ─── Registry ────────────────────────────────────────────────────────


class ValidatorRegistry:
    """Level-keyed validator lookup with a downward fallback walk."""

    def __init__(self, validators: Optional[dict[int, Validator]] = None):
        self._validators: dict[int, Validator] = {}
        for level, validator in (validators or {}).items():
            self.register(level, validator)

    @classmethod
    def from_urls(
        cls,
        urls: dict[int, str],
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> ValidatorRegistry:
        return cls({
            level: RemoteValidator(level, url, timeout=timeout, client=client)
            for level, url in urls.items()
        })

    def register(self, level: int, validator: Validator) -> None:
        if level not in VALID_LEVELS:
            raise ValueError(f"Validator level must be one of {VALID_LEVELS}, got {level}")
        self._validators[level] = validator

    def get(self, level: int) -> Optional[Validator]:
        return self._validators.get(level)

    def resolve(self, level: int) -> Optional[tuple[int, Validator]]:
        """Validator for ``level``, else the nearest lower level, else None."""
        for candidate in range(min(level, max(VALID_LEVELS)), 0, -1):
            validator = self._validators.get(candidate)
            if validator is not None:
                return candidate, validator
        return None

    @property
    def levels(self) -> list[int]:
        return sorted(self._validators)

    def __len__(self) -> int:
        return len(self._validators)
