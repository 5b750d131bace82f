"""
Completion Certificate Service
Derives the completion certificate from a completed contract's parties and
signatures. Issuance is idempotent and refuses contracts whose stored
signatures fail verification.
"""
import hashlib
import json
import logging
import secrets
import time
from datetime import datetime
from typing import Callable, List, Optional

from utils.timestamps import isoformat_ms, utc_now
from econtract.errors import ContractNotCompletedError, IntegrityViolationError
from econtract.models.audit import ContractAuditAction
from econtract.models.certificate import (
    AuthType,
    CertificateParty,
    CertificatePartyType,
    CompletionCertificate,
    SignatureType,
)
from econtract.models.contract import Contract, ContractStatus
from econtract.repositories.certificates import CertificateRepository
from econtract.services.certificate_renderer import CertificateRenderer
from econtract.services.contract_service import ContractService
from econtract.services.signing_service import SigningService

logger = logging.getLogger(__name__)


def generate_completion_certificate_id() -> str:
    """16 random hex chars, a dash, then the last 8 digits of the epoch-ms clock."""
    return f"{secrets.token_hex(8)}-{str(int(time.time() * 1000))[-8:]}"


def compute_certificate_hash(certificate_id: str, contract_id: str, timestamp_date: datetime,
                             parties: List[CertificateParty], contract_hash: Optional[str] = None) -> str:
    data = {
        "certificateId": certificate_id,
        "contractId": contract_id,
        "timestampDate": isoformat_ms(timestamp_date),
        "parties": [
            {"id": p.id, "email": p.email, "signedAt": isoformat_ms(p.signed_at)}
            for p in parties
        ],
    }
    if contract_hash is not None:
        data["contractHash"] = contract_hash
    return hashlib.sha256(json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")).hexdigest()


def verify_certificate_hash(certificate: CompletionCertificate) -> bool:
    expected = compute_certificate_hash(
        certificate.certificate_id,
        certificate.contract_id,
        certificate.timestamp_date,
        certificate.parties,
        certificate.contract_hash,
    )
    return expected == certificate.certificate_hash


class CertificateService:
    def __init__(
        self,
        contract_service: ContractService,
        signing_service: SigningService,
        repository: CertificateRepository,
        renderer: CertificateRenderer,
        issuer_name: str,
        issuer_company: str,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.contract_service = contract_service
        self.signing_service = signing_service
        self.repository = repository
        self.renderer = renderer
        self.issuer_name = issuer_name
        self.issuer_company = issuer_company
        self._clock = clock

    def build_certificate(self, contract: Contract) -> CompletionCertificate:
        now = self._clock()
        parties = []
        for index, party in enumerate(contract.parties):
            signature = contract.get_signature(party.id)
            if signature is None:
                continue
            parties.append(CertificateParty(
                id=party.id,
                type=CertificatePartyType.SENDER if index == 0 else CertificatePartyType.RECEIVER,
                name=party.name,
                email=party.email,
                company=party.company,
                auth_method="email",
                signed_at=signature.signed_at,
            ))

        timestamp_date = max((s.signed_at for s in contract.signatures), default=now)
        certificate_id = generate_completion_certificate_id()

        return CompletionCertificate(
            certificate_id=certificate_id,
            contract_id=contract.contract_id,
            contract_title=contract.title,
            contract_management_number=contract.contract_id,
            signature_type=SignatureType.ELECTRONIC_SIGNATURE,
            auth_type=AuthType.EMAIL_AUTH,
            timestamp_date=timestamp_date,
            parties=parties,
            issued_at=now,
            issued_by=self.issuer_name,
            issuer_company=self.issuer_company,
            certificate_hash=compute_certificate_hash(
                certificate_id, contract.contract_id, timestamp_date, parties, contract.integrity_hash
            ),
            contract_hash=contract.integrity_hash,
            created_at=now,
            updated_at=now,
        )

    async def issue_certificate(self, contract_id: str, performed_by: str = "system") -> CompletionCertificate:
        """Return the contract's certificate, creating it on first request."""
        contract = await self.contract_service.require_contract(contract_id)
        if contract.status != ContractStatus.COMPLETED:
            raise ContractNotCompletedError(contract_id, contract.status.value)

        existing = await self.repository.find_by_contract_id(contract_id)
        if existing is not None:
            return existing

        report = self.signing_service.verify_contract_signatures(contract)
        if not report.integrity_valid:
            logger.error(f"Refusing certificate for {contract_id}: {report.integrity_error}")
            raise IntegrityViolationError(contract_id, report.invalid_party_ids, reason=report.integrity_error)
        if not report.valid:
            logger.error(f"Refusing certificate for {contract_id}: signature verification failed")
            raise IntegrityViolationError(contract_id, report.invalid_party_ids)

        if not contract.all_required_signed():
            signed = {s.party_id for s in contract.signatures}
            missing = [pid for pid in contract.required_party_ids() if pid not in signed]
            logger.error(f"Refusing certificate for {contract_id}: missing signatures from {missing}")
            raise IntegrityViolationError(contract_id, missing)

        certificate = self.build_certificate(contract)
        if not await self.repository.insert(certificate):
            # Another issuer won the race; theirs is the certificate
            return await self.repository.find_by_contract_id(contract_id)

        logger.info(f"Certificate {certificate.certificate_id} issued for contract {contract_id}")
        self.contract_service.audit(
            ContractAuditAction.CERTIFICATE_ISSUED,
            contract_id,
            performed_by,
            {"certificate_id": certificate.certificate_id},
        )
        return certificate

    async def issue_for_completed_contract(self, contract: Contract) -> CompletionCertificate:
        """Completion listener run from the side-effect queue."""
        return await self.issue_certificate(contract.contract_id)

    async def get_certificate(self, contract_id: str) -> Optional[CompletionCertificate]:
        return await self.repository.find_by_contract_id(contract_id)

    async def download_certificate_pdf(
        self,
        contract_id: str,
        performed_by: str = "system",
        ip_address: Optional[str] = None,
    ) -> bytes:
        certificate = await self.issue_certificate(contract_id, performed_by)
        pdf_bytes = self.renderer.render(certificate)
        self.contract_service.audit(
            ContractAuditAction.DOWNLOADED,
            contract_id,
            performed_by,
            {"certificate_id": certificate.certificate_id, "format": "pdf"},
            ip_address,
        )
        return pdf_bytes
