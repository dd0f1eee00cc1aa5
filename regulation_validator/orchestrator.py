"""
Validation orchestrator — owns control flow for one request.

Flow (single request):

    Received ──► Validated ──► Classified ──► Routed ──► Merged
                                                            │
                 Responded ◄── Audited ◄── Attested? ◄── CertaintyGated

  - A shape error or unknown regulation ends in ErrorResponded straight away.
  - Remote validator failures never get here: the router degrades to the
    local basic validator instead.
  - Audit failures are logged and swallowed; they never change the outcome.
  - Anything unanticipated is logged with the stage reached, audited as
    ``request.error`` and surfaced as InternalError.

Batches fan out one independent execution per entry, concurrently, and join
before aggregating. Output order is input order. One entry's failure becomes
an error record in its own slot.
"""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from enum import Enum
from typing import Any, Optional

import httpx

from . import __version__
from .aggregator import (
    aggregate_results,
    aggregate_version_results,
    format_results_for_response,
    generate_human_readable_summary,
    merge_validation_results,
    process_validation_response,
)
from .audit import (
    AuditSink,
    batch_completed_event,
    batch_requested_event,
    build_audit_sink,
    certificate_issued_event,
    emit_audit_event,
    regulation_viewed_event,
    regulations_listed_event,
    request_error_event,
    validation_completed_event,
    validation_requested_event,
)
from .certificates import CertificateIssuer, HmacSigner, qualifies_for_attestation
from .classifier import classify_regulation
from .config import Settings, get_settings
from .exceptions import InternalError, NotFoundError, RegulationValidationError
from .gateway import ValidatorRegistry
from .models import (
    AttestationCertificate,
    BatchItemOutcome,
    BatchValidationResponse,
    ErrorInfo,
    Pagination,
    RegulationDetail,
    RegulationListResponse,
    RegulationSnapshot,
    StatusResponse,
    ValidationData,
    ValidationOptions,
    ValidationRequest,
    ValidationResponse,
    ValidationResult,
    VersionStatus,
    utcnow,
)
from .request_shape import parse_batch_request, parse_validation_request, validate_pagination
from .router import ValidationRouter
from .store import JsonRegulationStore, RegulationStore, StoreHandle
from .versioning import HttpVersionService, StoreVersionService, VersionService, VersionServiceError

logger = logging.getLogger(__name__)

OPERATIONAL = "operational"
DEGRADED = "degraded"


class Stage(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    CLASSIFIED = "classified"
    ROUTED = "routed"
    MERGED = "merged"
    CERTAINTY_GATED = "certainty_gated"
    ATTESTED = "attested"
    NOT_ATTESTED = "not_attested"
    AUDITED = "audited"
    RESPONDED = "responded"
    ERROR_RESPONDED = "error_responded"


class _StageTracker:
    """Remembers how far a request got, for fault logging."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.current = Stage.RECEIVED

    def advance(self, stage: Stage) -> None:
        logger.debug("[%s] %s -> %s", self.request_id, self.current.value, stage.value)
        self.current = stage


def new_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:12]}"


class ValidationOrchestrator:
    """Coordinates classifier, router, aggregator, certificates and audit.

    Usage:
        orchestrator = ValidationOrchestrator.from_settings()
        response = await orchestrator.validate(body)
        if response.data.attestation_certificate:
            ...
    """

    def __init__(
        self,
        settings: Settings,
        store_handle: StoreHandle,
        router: ValidationRouter,
        audit_sink: AuditSink,
        certificate_issuer: CertificateIssuer,
        version_service: VersionService,
    ):
        self.settings = settings
        self.store_handle = store_handle
        self.router = router
        self.audit_sink = audit_sink
        self.certificate_issuer = certificate_issuer
        self.version_service = version_service

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        store: Optional[RegulationStore] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> ValidationOrchestrator:
        """Wire every collaborator from configuration.

        ``store`` pins a ready-made store (tests, demos); otherwise the JSON
        store at ``settings.regulations_path`` is created on first use.
        ``client`` is shared by every HTTP collaborator when given.
        """
        settings = settings or get_settings()

        if store is not None:
            store_handle = StoreHandle(lambda: store)
        else:
            store_handle = StoreHandle(lambda: JsonRegulationStore(settings.regulations_path))

        registry = ValidatorRegistry.from_urls(
            settings.validator_urls(), timeout=settings.validator_timeout_seconds, client=client
        )

        if settings.version_service_url:
            version_service: VersionService = HttpVersionService(
                settings.version_service_url,
                timeout=settings.validator_timeout_seconds,
                client=client,
            )
        else:
            version_service = StoreVersionService()

        logger.info(
            "Orchestrator configured: remote levels %s, audit mode %s, version service %s",
            registry.levels or "none",
            settings.audit_mode,
            "remote" if settings.version_service_url else "store",
        )

        return cls(
            settings=settings,
            store_handle=store_handle,
            router=ValidationRouter(registry),
            audit_sink=build_audit_sink(settings, store_handle, client),
            certificate_issuer=CertificateIssuer(
                store_handle,
                HmacSigner(settings.certificate_signing_key),
                issuer=settings.certificate_issuer,
                validity_days=settings.certificate_validity_days,
            ),
            version_service=version_service,
        )

    async def close(self) -> None:
        await self.audit_sink.close()
        await self.store_handle.close()

    # ─── Single Validation ───────────────────────────────────────────

    async def validate(self, body: Any, request_id: Optional[str] = None) -> ValidationResponse:
        """Validate one regulation copy.

        Raises:
            RequestShapeError: malformed body (400).
            NotFoundError: unknown regulation id (404).
            InternalError: anything unanticipated (500).
        """
        request_id = request_id or new_request_id()
        tracker = _StageTracker(request_id)
        logger.info("[%s] Validation request received", request_id)

        try:
            request = parse_validation_request(body)
            tracker.advance(Stage.VALIDATED)
            data = await self._execute(request, request_id, tracker)
        except RegulationValidationError:
            tracker.advance(Stage.ERROR_RESPONDED)
            raise
        except Exception as exc:
            raise await self._internal_error(exc, request_id, tracker) from exc

        tracker.advance(Stage.RESPONDED)
        return ValidationResponse(request_id=request_id, data=data)

    async def _execute(
        self, request: ValidationRequest, request_id: str, tracker: _StageTracker
    ) -> ValidationData:
        snapshot = await self._fetch_snapshot(request.regulation_id)

        classification = classify_regulation(snapshot, request.requested_level)
        tracker.advance(Stage.CLASSIFIED)

        await emit_audit_event(self.audit_sink, validation_requested_event(
            request.regulation_id,
            request.regulation_version,
            request.requested_level,
            classification.validation_level,
            request_id,
        ))

        result = await self.router.route(
            classification,
            snapshot,
            request.content,
            classification.validation_level,
            request.options,
        )
        tracker.advance(Stage.ROUTED)

        merged = merge_validation_results([result])
        tracker.advance(Stage.MERGED)

        gated = process_validation_response(merged, request.options)
        tracker.advance(Stage.CERTAINTY_GATED)

        version_status = None
        if request.options.check_version_changes:
            version_status = await self._check_version(request, snapshot)

        certificate = None
        if qualifies_for_attestation(gated):
            certificate = await self._attest(request, gated, request_id)
            tracker.advance(Stage.ATTESTED)
        else:
            tracker.advance(Stage.NOT_ATTESTED)

        await emit_audit_event(self.audit_sink, validation_completed_event(
            request.regulation_id, request.regulation_version, gated, request_id
        ))
        tracker.advance(Stage.AUDITED)

        logger.info(
            "[%s] %s@%s -> valid=%s certainty=%s level=%s%s",
            request_id,
            request.regulation_id,
            request.regulation_version,
            gated.is_valid,
            gated.certainty_level,
            gated.validation_level,
            " (attested)" if certificate else "",
        )

        return ValidationData(
            regulation_id=request.regulation_id,
            regulation_version=request.regulation_version,
            authority_version=snapshot.current_version,
            classification=classification,
            validation_result=gated,
            summary=generate_human_readable_summary(gated),
            version_status=version_status,
            attestation_certificate=certificate,
        )

    # ─── Batch Validation ────────────────────────────────────────────

    async def validate_batch(
        self, body: Any, request_id: Optional[str] = None
    ) -> BatchValidationResponse:
        """Validate many regulations concurrently.

        Only a malformed envelope raises (RequestShapeError); every per-entry
        problem lands in that entry's slot.
        """
        request_id = request_id or new_request_id()
        batch = parse_batch_request(body, self.settings.max_batch_size)
        logger.info("[%s] Batch of %s regulation(s) received", request_id, len(batch.regulations))

        await emit_audit_event(
            self.audit_sink, batch_requested_event(request_id, len(batch.regulations))
        )

        outcomes = list(await asyncio.gather(*(
            self._validate_entry(entry, index, batch.options, request_id)
            for index, entry in enumerate(batch.regulations)
        )))

        summary = aggregate_results(outcomes)

        version_summary = None
        if batch.options.check_version_changes:
            statuses = [
                o.data.version_status for o in outcomes
                if o.data is not None and o.data.version_status is not None
            ]
            version_summary = aggregate_version_results(statuses)

        await emit_audit_event(
            self.audit_sink,
            batch_completed_event(request_id, summary.model_dump(by_alias=True)),
        )
        logger.info(
            "[%s] Batch complete: %s/%s valid, average certainty %s",
            request_id,
            summary.success_count,
            summary.total_count,
            summary.average_certainty,
        )

        return format_results_for_response(
            summary, outcomes, request_id, version_summary=version_summary
        )

    async def _validate_entry(
        self,
        entry: Any,
        index: int,
        options: ValidationOptions,
        batch_request_id: str,
    ) -> BatchItemOutcome:
        raw_id = entry.get("regulationId") if isinstance(entry, dict) else None
        regulation_id = raw_id if isinstance(raw_id, str) and raw_id else None
        item_request_id = f"{batch_request_id}-{regulation_id or index}"
        tracker = _StageTracker(item_request_id)

        item_body = entry
        if isinstance(entry, dict):
            item_body = {"options": options.model_dump(by_alias=True), **entry}

        try:
            request = parse_validation_request(item_body)
            tracker.advance(Stage.VALIDATED)
            data = await self._execute(request, item_request_id, tracker)
        except RegulationValidationError as exc:
            tracker.advance(Stage.ERROR_RESPONDED)
            return BatchItemOutcome(
                regulation_id=regulation_id,
                request_id=item_request_id,
                error=ErrorInfo(code=exc.code, message=exc.message, details=exc.details),
            )
        except Exception as exc:
            error = await self._internal_error(exc, item_request_id, tracker)
            return BatchItemOutcome(
                regulation_id=regulation_id,
                request_id=item_request_id,
                error=ErrorInfo(code=error.code, message=error.message, details=error.details),
            )

        tracker.advance(Stage.RESPONDED)
        return BatchItemOutcome(regulation_id=regulation_id, request_id=item_request_id, data=data)

    # ─── Catalogue ───────────────────────────────────────────────────

    async def list_regulations(
        self,
        filters: Optional[dict[str, Any]] = None,
        page: Any = 1,
        limit: Any = 20,
    ) -> RegulationListResponse:
        page_num, limit_num = validate_pagination(page, limit)
        active_filters = {k: v for k, v in (filters or {}).items() if v is not None}

        store = await self.store_handle.get()
        items, total = await store.list_regulations(active_filters, page_num, limit_num)

        await emit_audit_event(
            self.audit_sink, regulations_listed_event(active_filters, page_num, limit_num, total)
        )

        return RegulationListResponse(
            data=items,
            pagination=Pagination(
                page=page_num,
                limit=limit_num,
                total=total,
                pages=math.ceil(total / limit_num),
            ),
        )

    async def get_regulation(self, regulation_id: str) -> RegulationDetail:
        store = await self.store_handle.get()
        detail = await store.get_with_versions(regulation_id)
        if detail is None:
            raise NotFoundError(regulation_id)

        await emit_audit_event(self.audit_sink, regulation_viewed_event(regulation_id))
        return detail

    # ─── Status ──────────────────────────────────────────────────────

    async def status(self) -> StatusResponse:
        components = {"api": OPERATIONAL}

        try:
            store = await self.store_handle.get()
            healthy = await store.health_check()
        except Exception as exc:
            logger.warning("Store health check failed: %s", exc)
            healthy = False
        if not healthy:
            self.store_handle.invalidate()
        components["database"] = OPERATIONAL if healthy else DEGRADED

        if self.router.registry.get(1) is None:
            components["validation"] = OPERATIONAL
        else:
            available = await self.router.is_validator_available(1)
            components["validation"] = OPERATIONAL if available else DEGRADED

        overall = OPERATIONAL if all(v == OPERATIONAL for v in components.values()) else DEGRADED
        return StatusResponse(
            status=overall,
            version=__version__,
            environment=self.settings.environment,
            components=components,
        )

    # ─── Internal Helpers ────────────────────────────────────────────

    async def _fetch_snapshot(self, regulation_id: str) -> RegulationSnapshot:
        store = await self.store_handle.get()
        snapshot = await store.get_by_id(regulation_id)
        if snapshot is None:
            raise NotFoundError(regulation_id)
        return snapshot

    async def _check_version(
        self, request: ValidationRequest, snapshot: RegulationSnapshot
    ) -> Optional[VersionStatus]:
        try:
            return await self.version_service.check_version(
                request.regulation_id, request.regulation_version, utcnow(), snapshot
            )
        except (VersionServiceError, ValueError) as exc:
            logger.warning("Version check skipped for %s: %s", request.regulation_id, exc)
            return None

    async def _attest(
        self, request: ValidationRequest, result: ValidationResult, request_id: str
    ) -> AttestationCertificate:
        certificate = await self.certificate_issuer.issue(
            request.regulation_id, request.regulation_version, result, request_id
        )
        await emit_audit_event(self.audit_sink, certificate_issued_event(
            certificate.certificate_id,
            certificate.regulation_id,
            certificate.regulation_version,
            certificate.validation_id,
            certificate.expires_at.isoformat(),
        ))
        return certificate

    async def _internal_error(
        self, exc: Exception, request_id: str, tracker: _StageTracker
    ) -> InternalError:
        logger.exception(
            "[%s] Unexpected fault at stage %s", request_id, tracker.current.value
        )
        stage = tracker.current.value
        tracker.advance(Stage.ERROR_RESPONDED)
        await emit_audit_event(self.audit_sink, request_error_event(request_id, stage, exc))
        return InternalError(details={"requestId": request_id, "stage": stage})
