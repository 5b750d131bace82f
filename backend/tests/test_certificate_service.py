"""
Completion certificates: issuance rules, idempotency, integrity refusal and
PDF rendering.
"""
import re
import sys
from pathlib import Path

import pytest

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from econtract.errors import ContractNotCompletedError, IntegrityViolationError
from econtract.models.audit import ContractAuditAction
from econtract.models.certificate import CertificatePartyType
from econtract.models.contract import ContractCreate
from econtract.services.contract_hash import contract_integrity_hash
from econtract.services.certificate_service import (
    compute_certificate_hash,
    generate_completion_certificate_id,
    verify_certificate_hash,
)


async def _completed_contract(services, contract_data):
    contract = await services.contract_service.create_contract(ContractCreate(**contract_data()))
    for party_id in ("party-a", "party-b"):
        request = await services.signing_service.request_signature(contract.contract_id, party_id)
        await services.signing_service.submit_signature(contract.contract_id, request.token, "198.51.100.2", "pytest")
    await services.side_effects.drain()
    return await services.contract_service.get_contract(contract.contract_id)


def test_certificate_id_format():
    assert re.fullmatch(r"[0-9a-f]{16}-\d{8}", generate_completion_certificate_id())


class TestIssueCertificate:
    @pytest.mark.asyncio
    async def test_certificate_contents(self, services, contract_data):
        contract = await _completed_contract(services, contract_data)
        certificate = await services.certificate_service.issue_certificate(contract.contract_id)

        assert certificate.contract_id == contract.contract_id
        assert certificate.contract_management_number == contract.contract_id
        assert certificate.contract_title == contract.title
        assert [p.type for p in certificate.parties] == [CertificatePartyType.SENDER, CertificatePartyType.RECEIVER]
        assert certificate.timestamp_date == max(s.signed_at for s in contract.signatures)
        assert certificate.issued_by == services.settings.certificate_issuer_name
        assert verify_certificate_hash(certificate)

    @pytest.mark.asyncio
    async def test_idempotent(self, services, contract_data):
        contract = await _completed_contract(services, contract_data)
        first = await services.certificate_service.issue_certificate(contract.contract_id)
        second = await services.certificate_service.issue_certificate(contract.contract_id)
        assert first.certificate_id == second.certificate_id

    @pytest.mark.asyncio
    async def test_not_completed(self, services, contract_data):
        contract = await services.contract_service.create_contract(ContractCreate(**contract_data()))
        with pytest.raises(ContractNotCompletedError):
            await services.certificate_service.issue_certificate(contract.contract_id)

    @pytest.mark.asyncio
    async def test_refuses_tampered_signatures(self, services, contract_data):
        from econtract.models.contract import ContractStatus
        from econtract.services.signature_factory import SignatureFactory
        from econtract.services.verification_hash import VerificationHasher

        contract = await services.contract_service.create_contract(ContractCreate(**contract_data()))
        factory = SignatureFactory(VerificationHasher(services.settings.signing_secret))
        signatures = [
            factory.create_signature(contract.contract_id, "party-a", "1.1.1.1", "ua"),
            factory.create_signature(contract.contract_id, "party-b", "1.1.1.1", "ua"),
        ]
        # Written straight to storage so no completion listener runs
        signatures[0] = signatures[0].model_copy(update={"ip_address": "6.6.6.6"})
        await services.contract_repository.update(
            contract.contract_id, {"signatures": signatures, "status": ContractStatus.COMPLETED}
        )

        with pytest.raises(IntegrityViolationError) as exc:
            await services.certificate_service.issue_certificate(contract.contract_id)
        assert exc.value.invalid_party_ids == ["party-a"]
        assert await services.certificate_service.get_certificate(contract.contract_id) is None

    @pytest.mark.asyncio
    async def test_refuses_terms_changed_after_signing(self, services, contract_data):
        contract = await services.contract_service.create_contract(ContractCreate(**contract_data()))
        request = await services.signing_service.request_signature(contract.contract_id, "party-a")
        await services.signing_service.submit_signature(contract.contract_id, request.token, "198.51.100.2", "pytest")
        await services.contract_repository.update(contract.contract_id, {"content": "Altered terms"})
        request = await services.signing_service.request_signature(contract.contract_id, "party-b")
        await services.signing_service.submit_signature(contract.contract_id, request.token, "198.51.100.2", "pytest")
        await services.side_effects.drain()

        assert await services.certificate_service.get_certificate(contract.contract_id) is None
        with pytest.raises(IntegrityViolationError) as exc:
            await services.certificate_service.issue_certificate(contract.contract_id)
        assert exc.value.reason == "Contract terms changed after signing started"
        assert exc.value.invalid_party_ids == []

    @pytest.mark.asyncio
    async def test_certificate_carries_contract_hash(self, services, contract_data):
        contract = await _completed_contract(services, contract_data)
        certificate = await services.certificate_service.get_certificate(contract.contract_id)
        assert certificate.contract_hash == contract.integrity_hash
        assert certificate.contract_hash == contract_integrity_hash(contract)

        altered = certificate.model_copy(update={"contract_hash": "0" * 64})
        assert verify_certificate_hash(altered) is False

    @pytest.mark.asyncio
    async def test_issue_is_audited(self, services, contract_data):
        contract = await _completed_contract(services, contract_data)
        history = await services.audit_service.get_contract_history(contract.contract_id)
        assert sum(1 for e in history if e.action == ContractAuditAction.CERTIFICATE_ISSUED) == 1


class TestCertificateHash:
    @pytest.mark.asyncio
    async def test_hash_binds_parties(self, services, contract_data):
        contract = await _completed_contract(services, contract_data)
        certificate = await services.certificate_service.get_certificate(contract.contract_id)
        altered_party = certificate.parties[0].model_copy(update={"email": "eve@example.com"})
        altered = certificate.model_copy(update={"parties": [altered_party] + certificate.parties[1:]})
        assert verify_certificate_hash(altered) is False

    def test_hash_is_deterministic(self):
        from datetime import datetime, timezone
        ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert compute_certificate_hash("c", "CT-1", ts, []) == compute_certificate_hash("c", "CT-1", ts, [])


class TestCertificatePdf:
    @pytest.mark.asyncio
    async def test_pdf_download(self, services, contract_data):
        contract = await _completed_contract(services, contract_data)
        pdf = await services.certificate_service.download_certificate_pdf(
            contract.contract_id, performed_by="auditor@example.com", ip_address="10.0.0.1"
        )
        assert pdf.startswith(b"%PDF")

        await services.side_effects.drain()
        history = await services.audit_service.get_contract_history(contract.contract_id)
        downloads = [e for e in history if e.action == ContractAuditAction.DOWNLOADED]
        assert len(downloads) == 1
        assert downloads[0].ip_address == "10.0.0.1"
