"""Completion certificate models."""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum

from utils.timestamps import ensure_utc, utc_now


class CertificatePartyType(str, Enum):
    SENDER = "sender"      # First party on the contract
    RECEIVER = "receiver"


class SignatureType(str, Enum):
    ELECTRONIC_SIGNATURE = "electronic_signature"
    ELECTRONIC_SIGN = "electronic_sign"


class AuthType(str, Enum):
    EMAIL_AUTH = "email_auth"
    MAGIC_LINK_AUTH = "magic_link_auth"


class CertificateParty(BaseModel):
    id: str
    type: CertificatePartyType
    name: str
    email: str
    company: Optional[str] = None
    auth_method: str = "email"
    signed_at: datetime

    model_config = {"extra": "ignore"}

    @field_validator("signed_at")
    @classmethod
    def _normalize_signed_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class CompletionCertificate(BaseModel):
    """Derived attestation that every required signature was collected.

    `certificate_hash` binds the certificate to the exact signature set it was
    built from and to `contract_hash`, the integrity hash of the signed terms.
    At most one certificate exists per contract.
    """
    certificate_id: str
    contract_id: str
    contract_title: str
    contract_management_number: str
    signature_type: SignatureType = SignatureType.ELECTRONIC_SIGNATURE
    auth_type: AuthType = AuthType.EMAIL_AUTH
    timestamp_date: datetime
    parties: List[CertificateParty] = Field(default_factory=list)
    issued_at: datetime = Field(default_factory=utc_now)
    issued_by: str
    issuer_company: str
    certificate_hash: str
    contract_hash: Optional[str] = None
    pdf_file_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = {"extra": "ignore"}

    @field_validator("timestamp_date", "issued_at", "created_at", "updated_at")
    @classmethod
    def _normalize_datetimes(cls, value: datetime) -> datetime:
        return ensure_utc(value)
