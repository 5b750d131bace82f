"""
Certificate IDs, contract integrity hashes and QR payloads.
"""
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from econtract.models.contract import Contract, Party
from econtract.models.signature import Signature
from econtract.services.contract_hash import (
    contract_integrity_hash,
    generate_certificate_id,
    generate_qr_payload,
    verify_contract_integrity,
)

CREATED_AT = datetime(2024, 1, 10, 8, 0, 0, tzinfo=timezone.utc)


def _contract(**overrides):
    data = dict(
        contract_id="CT-ABC",
        title="NDA",
        content="Confidential terms",
        parties=[
            Party(id="party-a", name="Alice", email="alice@example.com"),
            Party(id="party-b", name="Bob", email="bob@example.com"),
        ],
        created_at=CREATED_AT,
    )
    data.update(overrides)
    return Contract(**data)


def _signature(**overrides):
    data = dict(
        party_id="party-a",
        signed_at=datetime(2024, 1, 11, 10, 0, 0, 500000, tzinfo=timezone.utc),
        ip_address="198.51.100.1",
        user_agent="pytest",
        verification_hash="f" * 64,
        certificate_id="",
    )
    data.update(overrides)
    return Signature(**data)


class TestCertificateId:
    def test_format(self):
        cert_id = generate_certificate_id(_signature())
        assert cert_id.startswith("CERT-")
        suffix = cert_id[len("CERT-"):]
        assert len(suffix) == 16
        assert suffix == suffix.upper()

    def test_deterministic(self):
        assert generate_certificate_id(_signature()) == generate_certificate_id(_signature())

    def test_depends_on_hash(self):
        assert generate_certificate_id(_signature()) != generate_certificate_id(_signature(verification_hash="e" * 64))


class TestContractIntegrity:
    def test_hash_is_stable(self):
        assert contract_integrity_hash(_contract()) == contract_integrity_hash(_contract())

    def test_content_change_detected(self):
        original = contract_integrity_hash(_contract())
        assert verify_contract_integrity(_contract(content="Altered terms"), original) is False
        assert verify_contract_integrity(_contract(), original) is True

    def test_party_email_change_detected(self):
        original = contract_integrity_hash(_contract())
        altered = _contract(parties=[
            Party(id="party-a", name="Alice", email="mallory@example.com"),
            Party(id="party-b", name="Bob", email="bob@example.com"),
        ])
        assert contract_integrity_hash(altered) != original

    def test_status_is_not_bound(self):
        assert contract_integrity_hash(_contract(status="completed")) == contract_integrity_hash(_contract())

    def test_bad_expected_hash(self):
        assert verify_contract_integrity(_contract(), None) is False


def test_qr_payload_fields():
    signature = _signature(certificate_id="CERT-0123456789ABCDEF")
    payload = json.loads(generate_qr_payload(_contract(), signature, "https://example.com/"))
    assert payload == {
        "url": "https://example.com/verify",
        "contractId": "CT-ABC",
        "certificateId": "CERT-0123456789ABCDEF",
        "hash": "ffffffff",
    }
