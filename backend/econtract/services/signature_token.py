"""
Signature Token Service
Time-boxed, encrypted credentials authorising one party to act on one contract.

Two separate mechanisms protect a signing link:

1. Token validity (stateless, cryptographic). The payload
   {contractId, partyId, expiresAt, nonce} is encrypted and authenticated with
   Fernet under a key derived from the server secret. Tampering or a different
   secret makes decryption fail; expiresAt bounds the lifetime.

2. Consumption tracking (stateful). The signing workflow stores a cache entry
   keyed by the token itself and deletes it when the token is used. That
   deletion, not the cryptography, is what stops replay after success.

Tokens use the URL-safe base64 alphabet with the trailing "=" padding removed.
"""

import base64
import hashlib
import json
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel

from utils.timestamps import ensure_utc, isoformat_ms, parse_datetime

logger = logging.getLogger(__name__)

# Lifetimes handed in by callers
SIGNATURE_REQUEST_TTL = timedelta(hours=48)
VIEWER_LINK_TTL = timedelta(hours=24)

NONCE_BYTES = 16


class TokenVerification(BaseModel):
    """Outcome of verifying a token.

    valid=True carries contract_id/party_id. valid=False with expired=True means
    the token was genuine but lapsed; expired=False means it could not be read.
    """
    valid: bool
    contract_id: Optional[str] = None
    party_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    expired: bool = False


def derive_fernet_key(secret: str) -> bytes:
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


def token_fingerprint(token: str) -> str:
    """Short, non-reversible identifier for logs."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:8]


class SignatureTokenService:
    """Issues and verifies signature tokens under a single server secret."""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._fernet = Fernet(derive_fernet_key(secret))

    def issue(
        self,
        contract_id: str,
        party_id: str,
        ttl: timedelta = SIGNATURE_REQUEST_TTL,
        now: Optional[datetime] = None,
    ) -> str:
        now = ensure_utc(now) if now else datetime.now(timezone.utc)
        payload = {
            "contractId": contract_id,
            "partyId": party_id,
            "expiresAt": isoformat_ms(now + ttl),
            "nonce": secrets.token_hex(NONCE_BYTES),
        }
        raw = self._fernet.encrypt(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
        return raw.decode("ascii").rstrip("=")

    def verify(self, token: str, now: Optional[datetime] = None) -> TokenVerification:
        """Decrypt and check expiry. Never raises."""
        if not token or not isinstance(token, str):
            return TokenVerification(valid=False)

        try:
            padded = token + "=" * (-len(token) % 4)
            decrypted = self._fernet.decrypt(padded.encode("ascii"))
            payload = json.loads(decrypted.decode("utf-8"))
            contract_id = payload["contractId"]
            party_id = payload["partyId"]
            expires_at = parse_datetime(payload["expiresAt"])
            if not isinstance(contract_id, str) or not isinstance(party_id, str) or expires_at is None:
                raise ValueError("Malformed token payload")
        except (InvalidToken, ValueError, KeyError, TypeError, UnicodeError) as e:
            logger.debug(f"Token {token_fingerprint(token)} could not be decoded: {type(e).__name__}")
            return TokenVerification(valid=False)

        now = ensure_utc(now) if now else datetime.now(timezone.utc)
        if now > expires_at:
            return TokenVerification(
                valid=False,
                expired=True,
                contract_id=contract_id,
                party_id=party_id,
                expires_at=expires_at,
            )

        return TokenVerification(
            valid=True,
            contract_id=contract_id,
            party_id=party_id,
            expires_at=expires_at,
        )
