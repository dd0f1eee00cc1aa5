"""
Regulation store — the authoritative records the orchestrator validates against.

The store itself is an external collaborator; this module defines its
contract and two local implementations:

  - InMemoryRegulationStore: records in a dict, certificates and audit
    events kept in bounded deques (handy for tests and demos).
  - JsonRegulationStore: the same, seeded from ``regulations.json``.

StoreHandle is the one piece of state shared across requests: a lazily
created store that can be dropped and recreated after a failure. It takes
no locks: two racing first calls may each build a store, and the last one
wins, which is harmless because stores are interchangeable.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections import deque
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from .models import AttestationCertificate, AuditEvent, RegulationDetail, RegulationSnapshot

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 10_000


# ─── Contract ────────────────────────────────────────────────────────


class RegulationStore(ABC):
    """What the orchestrator needs from persistence. Schema is not our concern."""

    @abstractmethod
    async def get_by_id(self, regulation_id: str) -> Optional[RegulationSnapshot]:
        ...

    @abstractmethod
    async def get_with_versions(self, regulation_id: str) -> Optional[RegulationDetail]:
        ...

    @abstractmethod
    async def list_regulations(
        self, filters: dict[str, Any], page: int, limit: int
    ) -> tuple[list[RegulationSnapshot], int]:
        """Return one page of matching records and the total match count."""
        ...

    @abstractmethod
    async def create_certificate(self, certificate: AttestationCertificate) -> AttestationCertificate:
        ...

    @abstractmethod
    async def create_audit_event(self, event: AuditEvent) -> AuditEvent:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True or raise."""
        ...

    async def close(self) -> None:
        return None


# ─── In-Memory Store ─────────────────────────────────────────────────


class InMemoryRegulationStore(RegulationStore):
    """Dict-backed store. Issued certificates and audit events are kept only
    as the most recent ``history_size`` of each; nothing is persisted."""

    def __init__(
        self,
        records: Iterable[RegulationDetail] = (),
        history_size: int = DEFAULT_HISTORY_SIZE,
    ):
        self._records: dict[str, RegulationDetail] = {r.id: r for r in records}
        self.certificates: deque[AttestationCertificate] = deque(maxlen=history_size)
        self.audit_events: deque[AuditEvent] = deque(maxlen=history_size)

    def add(self, record: RegulationDetail) -> None:
        self._records[record.id] = record

    async def get_by_id(self, regulation_id: str) -> Optional[RegulationSnapshot]:
        record = self._records.get(regulation_id)
        if record is None:
            return None
        return RegulationSnapshot.model_validate(record.model_dump(exclude={"versions"}))

    async def get_with_versions(self, regulation_id: str) -> Optional[RegulationDetail]:
        return self._records.get(regulation_id)

    async def list_regulations(
        self, filters: dict[str, Any], page: int, limit: int
    ) -> tuple[list[RegulationSnapshot], int]:
        matches = [
            RegulationSnapshot.model_validate(r.model_dump(exclude={"versions"}))
            for r in self._records.values()
            if _matches(r, filters)
        ]
        offset = (page - 1) * limit
        return matches[offset:offset + limit], len(matches)

    async def create_certificate(self, certificate: AttestationCertificate) -> AttestationCertificate:
        self.certificates.append(certificate)
        return certificate

    async def create_audit_event(self, event: AuditEvent) -> AuditEvent:
        self.audit_events.append(event)
        return event

    async def health_check(self) -> bool:
        return True


class JsonRegulationStore(InMemoryRegulationStore):
    """In-memory store seeded from a JSON reference file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        super().__init__(load_regulations(self.path))
        logger.info("Loaded %s regulation(s) from %s", len(self._records), self.path)


def load_regulations(path: str | Path) -> list[RegulationDetail]:
    """Load regulation records (camelCase keys) from a JSON array file."""
    with Path(path).open(encoding="utf-8") as f:
        raw: list[dict[str, Any]] = json.load(f)
    return [RegulationDetail.model_validate(item) for item in raw]


# ─── Lazily-Initialised Handle ──────────────────────────────────────


class StoreHandle:
    """Owns the store across requests; creates it on first use.

    Usage:
        handle = StoreHandle(lambda: JsonRegulationStore(path))
        store = await handle.get()
        ...
        handle.invalidate()   # after a failed health check
    """

    def __init__(self, factory: Callable[[], RegulationStore]):
        self._factory = factory
        self._store: Optional[RegulationStore] = None

    async def get(self) -> RegulationStore:
        if self._store is None:
            self._store = self._factory()
        return self._store

    def invalidate(self) -> None:
        """Drop the current store; the next get() builds a fresh one."""
        self._store = None

    @property
    def is_initialised(self) -> bool:
        return self._store is not None

    async def close(self) -> None:
        if self._store is not None:
            await self._store.close()
            self._store = None


# ─── Internal Helpers ────────────────────────────────────────────────


def _matches(record: RegulationSnapshot, filters: dict[str, Any]) -> bool:
    category = filters.get("category")
    if category and record.category.lower() != str(category).lower():
        return False

    jurisdiction = filters.get("jurisdiction")
    if jurisdiction and record.jurisdiction.lower() != str(jurisdiction).lower():
        return False

    query = filters.get("query")
    if query:
        needle = str(query).lower()
        haystacks = [record.title.lower(), (record.citation or "").lower()]
        if not any(needle in h for h in haystacks):
            return False

    tags = filters.get("tags")
    if tags and not set(tags) & set(record.tags):
        return False

    active = filters.get("active")
    if active is not None and record.active != active:
        return False

    return True
