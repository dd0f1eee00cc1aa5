"""
Audit sink tests — best effort, never escalated.

Run: pytest tests/ -v
"""

from __future__ import annotations

import asyncio
import json
import logging

import httpx
import pytest

from regulation_validator.audit import (
    AuditSink,
    BufferedAuditSink,
    DirectAuditSink,
    ServiceAuditSink,
    build_audit_sink,
    emit_audit_event,
    system_event,
    validation_completed_event,
)
from regulation_validator.config import Settings
from regulation_validator.exceptions import AuditWriteError
from regulation_validator.models import AuditEvent, ValidationResult
from regulation_validator.store import InMemoryRegulationStore, StoreHandle


class _FailingStore(InMemoryRegulationStore):
    async def create_audit_event(self, event: AuditEvent) -> AuditEvent:
        raise RuntimeError("audit table locked")


class _SlowStore(InMemoryRegulationStore):
    async def create_audit_event(self, event: AuditEvent) -> AuditEvent:
        await asyncio.sleep(1)
        return await super().create_audit_event(event)


class _RecordingSink(AuditSink):
    def __init__(self, fail: bool = False):
        self.events: list[AuditEvent] = []
        self.fail = fail
        self.closed = False

    async def emit(self, event: AuditEvent) -> None:
        if self.fail:
            raise AuditWriteError("delegate down")
        self.events.append(event)

    async def close(self) -> None:
        self.closed = True


def _event(action: str = "test") -> AuditEvent:
    return system_event(action)


# ═══════════════════════════════════════════════════════════════════════
# DIRECT SINK
# ═══════════════════════════════════════════════════════════════════════


class TestDirectAuditSink:
    def test_writes_through_store(self):
        store = InMemoryRegulationStore()
        sink = DirectAuditSink(StoreHandle(lambda: store))
        asyncio.run(sink.emit(_event()))
        assert [e.event_type for e in store.audit_events] == ["system.test"]

    def test_store_keeps_bounded_history(self):
        store = InMemoryRegulationStore(history_size=2)
        sink = DirectAuditSink(StoreHandle(lambda: store))

        async def run():
            for action in ("one", "two", "three"):
                await sink.emit(_event(action))

        asyncio.run(run())
        assert [e.event_type for e in store.audit_events] == ["system.two", "system.three"]

    def test_store_failure_becomes_audit_write_error(self):
        sink = DirectAuditSink(StoreHandle(lambda: _FailingStore()))
        with pytest.raises(AuditWriteError) as exc_info:
            asyncio.run(sink.emit(_event()))
        assert exc_info.value.code == "AUDIT_WRITE_FAILED"

    def test_bounded_by_timeout(self):
        sink = DirectAuditSink(StoreHandle(lambda: _SlowStore()), timeout=0.01)
        with pytest.raises(AuditWriteError, match="timed out"):
            asyncio.run(sink.emit(_event()))


# ═══════════════════════════════════════════════════════════════════════
# SERVICE SINK
# ═══════════════════════════════════════════════════════════════════════


class TestServiceAuditSink:
    def test_posts_create_audit_event(self):
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(202, json={"accepted": True})

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                await ServiceAuditSink("http://audit.test", client=client).emit(_event("startup"))

        asyncio.run(run())
        assert seen[0]["action"] == "createAuditEvent"
        assert seen[0]["auditEvent"]["eventType"] == "system.startup"
        assert seen[0]["auditEvent"]["entityType"] == "system"

    def test_http_failure_becomes_audit_write_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                await ServiceAuditSink("http://audit.test", client=client).emit(_event())

        with pytest.raises(AuditWriteError):
            asyncio.run(run())

    def test_malformed_url_becomes_audit_write_error(self):
        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(202))) as client:
                await ServiceAuditSink("http://au dit.test/\x00", client=client).emit(_event())

        with pytest.raises(AuditWriteError):
            asyncio.run(run())


# ═══════════════════════════════════════════════════════════════════════
# BUFFERED SINK
# ═══════════════════════════════════════════════════════════════════════


class TestBufferedAuditSink:
    def test_emit_returns_before_delegate_runs(self):
        delegate = _RecordingSink()

        async def run():
            sink = BufferedAuditSink(delegate)
            await sink.emit(_event("a"))
            await sink.emit(_event("b"))
            queued_before_flush = len(delegate.events)
            await sink.close()
            return queued_before_flush

        assert asyncio.run(run()) == 0
        assert [e.action for e in delegate.events] == ["a", "b"]
        assert delegate.closed is True

    def test_full_queue_raises(self):
        delegate = _RecordingSink()

        async def run():
            sink = BufferedAuditSink(delegate, max_queue_size=1)
            await sink.emit(_event("first"))
            try:
                await sink.emit(_event("second"))
            finally:
                await sink.close()

        with pytest.raises(AuditWriteError, match="full"):
            asyncio.run(run())
        assert [e.action for e in delegate.events] == ["first"]

    def test_delegate_failures_are_logged_not_raised(self, caplog):
        async def run():
            sink = BufferedAuditSink(_RecordingSink(fail=True))
            await sink.emit(_event())
            await sink.close()

        with caplog.at_level(logging.WARNING, logger="regulation_validator.audit"):
            asyncio.run(run())
        assert "Buffered audit write dropped" in caplog.text


class TestBuildAuditSink:
    def test_direct_by_default(self):
        sink = build_audit_sink(Settings(), StoreHandle(InMemoryRegulationStore))
        assert isinstance(sink, DirectAuditSink)

    def test_buffered_over_direct(self):
        sink = build_audit_sink(Settings(audit_mode="buffered"), StoreHandle(InMemoryRegulationStore))
        assert isinstance(sink, BufferedAuditSink)
        assert isinstance(sink.delegate, DirectAuditSink)

    def test_buffered_over_service(self):
        settings = Settings(audit_mode="buffered", audit_service_url="http://audit.test")
        sink = build_audit_sink(settings, StoreHandle(InMemoryRegulationStore))
        assert isinstance(sink.delegate, ServiceAuditSink)
        assert sink.delegate.url == "http://audit.test"


# ═══════════════════════════════════════════════════════════════════════
# BEST-EFFORT EMIT & EVENT BUILDERS
# ═══════════════════════════════════════════════════════════════════════


class TestEmitAuditEvent:
    def test_success(self):
        sink = _RecordingSink()
        assert asyncio.run(emit_audit_event(sink, _event())) is True
        assert len(sink.events) == 1

    def test_failure_is_swallowed_and_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="regulation_validator.audit"):
            ok = asyncio.run(emit_audit_event(_RecordingSink(fail=True), _event("startup")))
        assert ok is False
        assert "system.startup" in caplog.text


class TestEventBuilders:
    def test_system_event(self):
        event = system_event("startup", {"version": "1.0.0"})
        assert event.event_type == "system.startup"
        assert event.entity_type == "system"
        assert event.action == "startup"
        assert event.metadata == {"version": "1.0.0"}

    def test_completed_event_carries_outcome(self):
        result = ValidationResult(
            is_valid=False,
            certainty_level=3,
            validation_level=2,
            override_reason="insufficient_certainty",
        )
        event = validation_completed_event("R1", "1.2.3", result, "req-1")
        assert event.event_type == "validation.completed"
        assert event.entity_id == "R1"
        assert event.metadata == {
            "requestId": "req-1",
            "regulationVersion": "1.2.3",
            "validationLevel": 2,
            "isValid": False,
            "certaintyLevel": 3,
            "overrideReason": "insufficient_certainty",
        }
