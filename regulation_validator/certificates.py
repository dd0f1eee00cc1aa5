"""
Attestation certificates.

Issued only for a gated result that is valid with certainty >= 4; the
orchestrator makes that decision, this module just builds, signs and persists
the certificate. Signing is an HMAC-SHA256 placeholder behind a Signer
interface; a real deployment swaps in its own signer.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Optional

from .models import AttestationCertificate, CertificateStatus, ValidationResult, utcnow
from .store import StoreHandle

logger = logging.getLogger(__name__)

ATTESTATION_MIN_CERTAINTY = 4


def qualifies_for_attestation(result: ValidationResult) -> bool:
    return result.is_valid and result.certainty_level >= ATTESTATION_MIN_CERTAINTY


# ─── Signing ─────────────────────────────────────────────────────────


class Signer(ABC):
    @abstractmethod
    def sign(self, payload: dict[str, Any]) -> str:
        ...


class HmacSigner(Signer):
    """Hex HMAC-SHA256 over the canonical (sorted, compact) JSON of ``payload``."""

    def __init__(self, key: str):
        self._key = key.encode("utf-8")

    def sign(self, payload: dict[str, Any]) -> str:
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        return hmac.new(self._key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify(self, payload: dict[str, Any], signature: str) -> bool:
        return hmac.compare_digest(self.sign(payload), signature)


# ─── Issuer ──────────────────────────────────────────────────────────


class CertificateIssuer:
    """Builds a certificate, signs it, and stores it through create_certificate.

    Usage:
        issuer = CertificateIssuer(handle, HmacSigner(key), issuer="regulation-validator")
        cert = await issuer.issue("R1", "1.2.3", result, request_id)
    """

    def __init__(
        self,
        store_handle: StoreHandle,
        signer: Signer,
        issuer: str = "regulation-validator",
        validity_days: int = 90,
    ):
        self.store_handle = store_handle
        self.signer = signer
        self.issuer = issuer
        self.validity_days = validity_days

    async def issue(
        self,
        regulation_id: str,
        regulation_version: str,
        result: ValidationResult,
        request_id: str,
        issued_at: Optional[datetime] = None,
    ) -> AttestationCertificate:
        issued_at = issued_at or utcnow()
        expires_at = issued_at + timedelta(days=self.validity_days)
        certificate_id = (
            f"cert-{regulation_id}-{regulation_version}-{int(issued_at.timestamp() * 1000)}"
        )

        signed_fields = {
            "certificateId": certificate_id,
            "validationId": request_id,
            "regulationId": regulation_id,
            "regulationVersion": regulation_version,
            "certaintyLevel": result.certainty_level,
            "validationLevel": result.validation_level,
            "issuedAt": issued_at.isoformat(),
            "expiresAt": expires_at.isoformat(),
            "issuer": self.issuer,
        }

        certificate = AttestationCertificate(
            certificate_id=certificate_id,
            validation_id=request_id,
            regulation_id=regulation_id,
            regulation_version=regulation_version,
            issued_at=issued_at,
            expires_at=expires_at,
            issuer=self.issuer,
            signature=self.signer.sign(signed_fields),
            status=CertificateStatus.ACTIVE,
            certificate_url=f"/api/certificates/{certificate_id}",
        )

        store = await self.store_handle.get()
        stored = await store.create_certificate(certificate)
        logger.info("Issued certificate %s for %s@%s", certificate_id, regulation_id, regulation_version)
        return stored
