"""Signature record models."""

from pydantic import BaseModel, ConfigDict, field_validator
from typing import Optional
from datetime import datetime

from utils.timestamps import ensure_utc


class Signature(BaseModel):
    """Proof that one party agreed to a contract at a specific instant.

    `verification_hash` binds contract_id, party_id, signed_at, ip_address and
    user_agent under the server secret. Records are never mutated after creation.
    """
    party_id: str
    signed_at: datetime
    ip_address: str
    user_agent: str
    verification_hash: str
    certificate_id: str

    # Drawn signature (base64 without data-URL prefix) and its audit hash
    signature_data: Optional[str] = None
    signature_image_hash: Optional[str] = None
    signature_image_url: Optional[str] = None

    model_config = ConfigDict(extra="ignore", frozen=True)

    @field_validator("signed_at")
    @classmethod
    def _normalize_signed_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)
