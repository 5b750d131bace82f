"""
Certificate IDs and contract integrity hashes.

Signatures bind signer context only; the contract body is protected separately
by `contract_integrity_hash`. Both checks are needed to prove a signed contract
was not altered.
"""

import hashlib
import hmac
import json
from typing import Any, Dict

from utils.timestamps import isoformat_ms


def _sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _canonical_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def generate_certificate_id(signature: Any) -> str:
    """CERT- followed by the first 16 hex chars (upper case) of
    SHA-256(party_id|signed_at|verification_hash)."""
    data = f"{signature.party_id}|{isoformat_ms(signature.signed_at)}|{signature.verification_hash}"
    return f"CERT-{_sha256_hex(data)[:16].upper()}"


def contract_integrity_hash(contract: Any) -> str:
    data = {
        "contractId": contract.contract_id,
        "title": contract.title,
        "content": contract.content,
        "parties": [
            {"id": party.id, "name": party.name, "email": party.email}
            for party in contract.parties
        ],
        "createdAt": isoformat_ms(contract.created_at),
    }
    return _sha256_hex(_canonical_json(data))


def verify_contract_integrity(contract: Any, expected_hash: str) -> bool:
    try:
        return hmac.compare_digest(contract_integrity_hash(contract), expected_hash or "")
    except (AttributeError, TypeError, ValueError):
        return False


def generate_qr_payload(contract: Any, signature: Any, domain: str) -> str:
    """JSON payload encoded into the verification QR code."""
    data = {
        "url": f"{domain.rstrip('/')}/verify",
        "contractId": contract.contract_id,
        "certificateId": signature.certificate_id,
        "hash": signature.verification_hash[:8],
    }
    return _canonical_json(data)
