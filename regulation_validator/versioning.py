"""
Version drift checks — is the client's copy behind the authority?

Two implementations of the same contract:
  - StoreVersionService: compares against the snapshot's current version.
  - HttpVersionService:  asks a remote version service.

Both raise on failure; the orchestrator logs and omits the drift block.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import httpx
from pydantic import ValidationError

from .models import RegulationSnapshot, VersionChange, VersionStatus

logger = logging.getLogger(__name__)


class VersionServiceError(Exception):
    """The version service could not answer."""


class VersionService(ABC):
    @abstractmethod
    async def check_version(
        self,
        regulation_id: str,
        client_version: str,
        timestamp: datetime,
        snapshot: Optional[RegulationSnapshot] = None,
    ) -> VersionStatus:
        ...


# ─── Store-Backed ────────────────────────────────────────────────────


def parse_version(version: str) -> tuple[int, int, int]:
    """``"1.2.3"`` -> ``(1, 2, 3)``. Raises ValueError on anything else."""
    parts = version.split(".")
    if len(parts) != 3:
        raise ValueError(f"Not a semantic version: {version!r}")
    major, minor, patch = (int(p) for p in parts)
    return major, minor, patch


def classify_change(client_version: str, authority_version: str) -> Optional[str]:
    """major / minor / patch drift, ``ahead`` when the client is newer, None when equal."""
    client = parse_version(client_version)
    authority = parse_version(authority_version)
    if client == authority:
        return None
    if client > authority:
        return "ahead"
    if client[0] != authority[0]:
        return "major"
    if client[1] != authority[1]:
        return "minor"
    return "patch"


class StoreVersionService(VersionService):
    """Drift check against the authoritative snapshot already fetched for the request."""

    async def check_version(
        self,
        regulation_id: str,
        client_version: str,
        timestamp: datetime,
        snapshot: Optional[RegulationSnapshot] = None,
    ) -> VersionStatus:
        if snapshot is None:
            raise VersionServiceError(f"No authority record for {regulation_id}")

        change_type = classify_change(client_version, snapshot.current_version)
        logger.debug(
            "Version check %s: client %s, authority %s -> %s",
            regulation_id, client_version, snapshot.current_version, change_type or "current",
        )
        changes = []
        if change_type is not None:
            changes.append(VersionChange(
                from_version=client_version,
                to_version=snapshot.current_version,
                change_type=change_type,
                regulation_id=regulation_id,
            ))

        return VersionStatus(
            has_changes=bool(changes),
            changes=changes,
            authority_version=snapshot.current_version,
            regulation_id=regulation_id,
        )


# ─── Remote ──────────────────────────────────────────────────────────


class HttpVersionService(VersionService):
    """Calls ``{"action": "checkVersion", ...}`` on a remote version service."""

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def check_version(
        self,
        regulation_id: str,
        client_version: str,
        timestamp: datetime,
        snapshot: Optional[RegulationSnapshot] = None,
    ) -> VersionStatus:
        payload = {
            "action": "checkVersion",
            "regulationId": regulation_id,
            "clientVersion": client_version,
            "timestamp": timestamp.isoformat(),
        }
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            raise VersionServiceError(f"Version service call failed: {exc}") from exc

        if not isinstance(data, dict) or data.get("error"):
            raise VersionServiceError(f"Version service reported an error for {regulation_id}")

        try:
            status = VersionStatus.model_validate(data)
        except ValidationError as exc:
            raise VersionServiceError(f"Version service returned a malformed status: {exc}") from exc
        return status.model_copy(update={"regulation_id": status.regulation_id or regulation_id})
