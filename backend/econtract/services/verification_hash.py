"""
Verification Hash
HMAC-SHA256 binding a signature to its signer and signing context.

hash = HMAC_SHA256(secret, "contract_id|party_id|signed_at|ip_address|user_agent")

signed_at is serialized as YYYY-MM-DDTHH:MM:SS.mmmZ. Any change to a bound field,
including its serialization, produces a different hash.
"""

import hashlib
import hmac
import logging
from datetime import datetime
from typing import Any

from utils.timestamps import isoformat_ms

logger = logging.getLogger(__name__)

HASH_FIELD_SEPARATOR = "|"


def build_hash_message(
    contract_id: str,
    party_id: str,
    signed_at: datetime,
    ip_address: str,
    user_agent: str,
) -> str:
    return HASH_FIELD_SEPARATOR.join(
        [contract_id, party_id, isoformat_ms(signed_at), ip_address, user_agent]
    )


def compute_verification_hash(
    secret: str,
    contract_id: str,
    party_id: str,
    signed_at: datetime,
    ip_address: str,
    user_agent: str,
) -> str:
    """Return the hex HMAC-SHA256 over the five bound fields."""
    message = build_hash_message(contract_id, party_id, signed_at, ip_address, user_agent)
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature_hash(secret: str, signature: Any, contract_id: str) -> bool:
    """Recompute the hash from a stored signature and compare.

    Never raises: malformed signatures are reported as not verified.
    """
    try:
        expected = compute_verification_hash(
            secret,
            contract_id,
            signature.party_id,
            signature.signed_at,
            signature.ip_address,
            signature.user_agent,
        )
        stored = signature.verification_hash
        if not isinstance(stored, str):
            return False
        return hmac.compare_digest(expected, stored)
    except Exception as e:
        logger.warning(f"Signature hash verification failed for contract {contract_id}: {e}")
        return False


class VerificationHasher:
    """Holds the server secret so callers never pass it around."""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Verification secret must not be empty")
        self._secret = secret

    def compute(
        self,
        contract_id: str,
        party_id: str,
        signed_at: datetime,
        ip_address: str,
        user_agent: str,
    ) -> str:
        return compute_verification_hash(
            self._secret, contract_id, party_id, signed_at, ip_address, user_agent
        )

    def verify(self, signature: Any, contract_id: str) -> bool:
        return verify_signature_hash(self._secret, signature, contract_id)
