"""E-Contract Data Models

Contract lifecycle states:
draft -> pending_review -> pending_signature -> partially_signed -> completed
with cancelled/expired side exits (see services/contract_workflow.py).
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum
import uuid

from utils.timestamps import ensure_utc, utc_now
from econtract.models.signature import Signature


class ContractStatus(str, Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    PENDING_SIGNATURE = "pending_signature"
    PARTIALLY_SIGNED = "partially_signed"
    COMPLETED = "completed"          # Terminal - the legal record
    CANCELLED = "cancelled"
    EXPIRED = "expired"              # Signature request lapsed


class ContractType(str, Enum):
    SERVICE_AGREEMENT = "service_agreement"
    DESIGN_AGREEMENT = "design_agreement"
    NDA = "nda"
    EMPLOYMENT = "employment"
    SALES = "sales"
    LEASE = "lease"
    PARTNERSHIP = "partnership"
    OTHER = "other"


class PartyType(str, Enum):
    CONTRACTOR = "contractor"
    CLIENT = "client"


class ContractPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def generate_contract_id() -> str:
    return f"CT-{uuid.uuid4().hex[:12].upper()}"


def generate_party_id() -> str:
    return f"party-{uuid.uuid4().hex[:8]}"


class Party(BaseModel):
    """A person or organisation bound to a contract."""
    id: str = Field(default_factory=generate_party_id)
    type: PartyType = PartyType.CLIENT
    name: str
    email: str
    company: Optional[str] = None
    role: str = ""
    address: Optional[str] = None
    signature_required: bool = True

    model_config = {"extra": "ignore"}


class Contract(BaseModel):
    """Contract record.

    `status` is the single source of truth for workflow state. `version` is the
    optimistic-concurrency token bumped by every repository update.
    """
    contract_id: str = Field(default_factory=generate_contract_id)
    title: str
    description: str = ""
    content: str = ""
    type: ContractType = ContractType.OTHER
    status: ContractStatus = ContractStatus.DRAFT

    parties: List[Party] = Field(default_factory=list)
    signatures: List[Signature] = Field(default_factory=list)

    # Outstanding signature request (cleared once it is used)
    signature_request_token: Optional[str] = None
    signature_expires_at: Optional[datetime] = None

    # sha256 over the signed terms, sealed when signing starts
    integrity_hash: Optional[str] = None

    # Classification
    tags: List[str] = Field(default_factory=list)
    priority: Optional[ContractPriority] = None
    category: Optional[str] = None

    # Bookkeeping-law fields
    transaction_date: Optional[datetime] = None
    transaction_amount: Optional[float] = None
    counterparty_tax_id: Optional[str] = None
    retention_period: int = 7  # Years

    created_by: str = "system"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    version: int = 1

    model_config = {"extra": "ignore"}

    @field_validator(
        "created_at", "updated_at", "completed_at", "signature_expires_at", "transaction_date"
    )
    @classmethod
    def _normalize_datetimes(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        return ensure_utc(value)

    def get_party(self, party_id: str) -> Optional[Party]:
        for party in self.parties:
            if party.id == party_id:
                return party
        return None

    def get_signature(self, party_id: str) -> Optional[Signature]:
        for signature in self.signatures:
            if signature.party_id == party_id:
                return signature
        return None

    def has_signed(self, party_id: str) -> bool:
        return self.get_signature(party_id) is not None

    def required_party_ids(self) -> List[str]:
        return [p.id for p in self.parties if p.signature_required]

    def all_required_signed(self) -> bool:
        """True when every signature-required party has a recorded signature."""
        signed = {s.party_id for s in self.signatures}
        return all(pid in signed for pid in self.required_party_ids())

    def to_document(self) -> dict:
        """Serialize for persistence (enums as values, datetimes kept native)."""
        return self.model_dump(mode="python")


class ContractCreate(BaseModel):
    """Input for creating a contract."""
    contract_id: Optional[str] = None
    title: str = ""
    description: str = ""
    content: str = ""
    type: ContractType = ContractType.OTHER
    parties: List[Party] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    priority: Optional[ContractPriority] = None
    category: Optional[str] = None
    transaction_date: Optional[datetime] = None
    transaction_amount: Optional[float] = None
    counterparty_tax_id: Optional[str] = None
    retention_period: int = 7
    created_by: str = "system"

    model_config = {"extra": "ignore"}


class ContractUpdate(BaseModel):
    """Partial update. Only fields explicitly set are applied."""
    title: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    type: Optional[ContractType] = None
    parties: Optional[List[Party]] = None
    tags: Optional[List[str]] = None
    priority: Optional[ContractPriority] = None
    category: Optional[str] = None
    transaction_date: Optional[datetime] = None
    transaction_amount: Optional[float] = None
    counterparty_tax_id: Optional[str] = None
    retention_period: Optional[int] = None

    model_config = {"extra": "ignore"}


class ContractStats(BaseModel):
    total: int = 0
    draft: int = 0
    pending_signature: int = 0
    completed: int = 0
    expiring_soon: int = 0
    completed_count: int = 0
    total_revenue: float = 0.0
