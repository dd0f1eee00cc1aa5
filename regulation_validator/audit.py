"""
Audit sinks — best-effort recording of what the orchestrator did.

    AuditSink.emit(event) -> None   (raises AuditWriteError, nothing else)

Implementations:
  - DirectAuditSink:   writes through the regulation store, bounded by a timeout.
  - ServiceAuditSink:  posts the event to a remote audit service.
  - BufferedAuditSink: enqueues and returns; a background worker drains the
                       queue into a delegate sink.

Callers never handle AuditWriteError themselves; they go through
emit_audit_event(), which logs the failure and carries on. An audit problem
must never change a validation outcome.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from .config import Settings
from .exceptions import AuditWriteError
from .models import AuditEvent, ValidationResult
from .store import StoreHandle

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000


# ─── Contract ────────────────────────────────────────────────────────


class AuditSink(ABC):
    """Where audit events go.

    Contract:
        - emit() returns once the event is written (direct) or accepted (buffered)
        - any failure surfaces as AuditWriteError and only as AuditWriteError
    """

    @abstractmethod
    async def emit(self, event: AuditEvent) -> None:
        ...

    async def close(self) -> None:
        return None


class DirectAuditSink(AuditSink):
    """Synchronous write through the store's create_audit_event."""

    def __init__(self, store_handle: StoreHandle, timeout: float = 5.0):
        self.store_handle = store_handle
        self.timeout = timeout

    async def emit(self, event: AuditEvent) -> None:
        try:
            store = await self.store_handle.get()
            await asyncio.wait_for(store.create_audit_event(event), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise AuditWriteError(
                f"Audit write timed out after {self.timeout}s", {"eventType": event.event_type}
            ) from exc
        except Exception as exc:
            raise AuditWriteError(
                f"Audit write failed: {exc}", {"eventType": event.event_type}
            ) from exc


class ServiceAuditSink(AuditSink):
    """Posts ``{"action": "createAuditEvent", "auditEvent": ...}`` to an audit service."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def emit(self, event: AuditEvent) -> None:
        payload = {
            "action": "createAuditEvent",
            "auditEvent": event.model_dump(mode="json", by_alias=True),
        }
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise AuditWriteError(
                f"Audit service call failed: {exc}", {"url": self.url, "eventType": event.event_type}
            ) from exc


class BufferedAuditSink(AuditSink):
    """Queue-and-return sink.

    emit() only enqueues. A single worker task, started lazily on the running
    loop, hands each event to ``delegate``; delegate failures are logged there
    and dropped. A full queue is the one failure emit() itself reports.
    """

    def __init__(self, delegate: AuditSink, max_queue_size: int = DEFAULT_QUEUE_SIZE):
        self.delegate = delegate
        self._queue: asyncio.Queue[AuditEvent] = asyncio.Queue(maxsize=max_queue_size)
        self._worker: Optional[asyncio.Task] = None

    async def emit(self, event: AuditEvent) -> None:
        self._ensure_worker()
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull as exc:
            raise AuditWriteError(
                "Audit queue is full", {"eventType": event.event_type, "size": self._queue.qsize()}
            ) from exc

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def flush(self) -> None:
        """Wait until every queued event has been handed to the delegate."""
        if self._worker is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Drain the queue, stop the worker, close the delegate."""
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        await self.delegate.close()

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.delegate.emit(event)
            except AuditWriteError as exc:
                logger.warning("Buffered audit write dropped (%s): %s", event.event_type, exc.message)
            finally:
                self._queue.task_done()


def build_audit_sink(
    settings: Settings,
    store_handle: StoreHandle,
    client: Optional[httpx.AsyncClient] = None,
) -> AuditSink:
    """Pick the sink for ``settings.audit_mode``."""
    direct = DirectAuditSink(store_handle, timeout=settings.audit_timeout_seconds)
    if settings.audit_mode == "direct":
        return direct

    if settings.audit_service_url:
        delegate: AuditSink = ServiceAuditSink(
            settings.audit_service_url, timeout=settings.audit_timeout_seconds, client=client
        )
    else:
        delegate = direct
    return BufferedAuditSink(delegate)


# ─── Best-Effort Emit ────────────────────────────────────────────────


async def emit_audit_event(sink: AuditSink, event: AuditEvent) -> bool:
    """Emit ``event``; log and swallow AuditWriteError. Returns True on success."""
    try:
        await sink.emit(event)
    except AuditWriteError as exc:
        logger.warning(
            "Audit event %s for %s not recorded: %s", event.event_type, event.entity_id, exc.message
        )
        return False
    return True


# ─── Event Builders ──────────────────────────────────────────────────


def validation_requested_event(
    regulation_id: str,
    regulation_version: str,
    requested_level: int,
    validation_level: int,
    request_id: str,
) -> AuditEvent:
    return AuditEvent(
        event_type="validation.requested",
        entity_type="regulation",
        entity_id=regulation_id,
        action="validate",
        metadata={
            "requestId": request_id,
            "regulationVersion": regulation_version,
            "requestedLevel": requested_level,
            "validationLevel": validation_level,
        },
    )


def validation_completed_event(
    regulation_id: str,
    regulation_version: str,
    result: ValidationResult,
    request_id: str,
) -> AuditEvent:
    metadata: dict[str, Any] = {
        "requestId": request_id,
        "regulationVersion": regulation_version,
        "validationLevel": result.validation_level,
        "isValid": result.is_valid,
        "certaintyLevel": result.certainty_level,
    }
    if result.override_reason:
        metadata["overrideReason"] = result.override_reason
    return AuditEvent(
        event_type="validation.completed",
        entity_type="regulation",
        entity_id=regulation_id,
        action="validate",
        metadata=metadata,
    )


def batch_requested_event(request_id: str, regulation_count: int) -> AuditEvent:
    return AuditEvent(
        event_type="validation.batch.requested",
        entity_type="batch",
        entity_id=request_id,
        action="validate_batch",
        metadata={"regulationCount": regulation_count},
    )


def batch_completed_event(request_id: str, summary: dict[str, Any]) -> AuditEvent:
    return AuditEvent(
        event_type="validation.batch.completed",
        entity_type="batch",
        entity_id=request_id,
        action="validate_batch",
        metadata=summary,
    )


def certificate_issued_event(
    certificate_id: str,
    regulation_id: str,
    regulation_version: str,
    validation_id: str,
    expires_at: str,
) -> AuditEvent:
    return AuditEvent(
        event_type="certificate.issued",
        entity_type="certificate",
        entity_id=certificate_id,
        action="issue",
        metadata={
            "regulationId": regulation_id,
            "regulationVersion": regulation_version,
            "validationId": validation_id,
            "expiresAt": expires_at,
        },
    )


def regulations_listed_event(filters: dict[str, Any], page: int, limit: int, total: int) -> AuditEvent:
    return AuditEvent(
        event_type="regulations.listed",
        entity_type="regulation",
        entity_id="*",
        action="list",
        metadata={"filters": filters, "page": page, "limit": limit, "total": total},
    )


def regulation_viewed_event(regulation_id: str) -> AuditEvent:
    return AuditEvent(
        event_type="regulation.viewed",
        entity_type="regulation",
        entity_id=regulation_id,
        action="view",
    )


def request_error_event(request_id: str, stage: str, error: Exception) -> AuditEvent:
    return AuditEvent(
        event_type="request.error",
        entity_type="request",
        entity_id=request_id,
        action="error",
        metadata={"stage": stage, "errorType": type(error).__name__, "message": str(error)},
    )


def system_event(action: str, details: Optional[dict[str, Any]] = None) -> AuditEvent:
    """``system.<action>`` events: startup, shutdown and similar lifecycle markers."""
    return AuditEvent(
        event_type=f"system.{action}",
        entity_type="system",
        entity_id="regulation-validator",
        action=action,
        metadata=details or {},
    )
