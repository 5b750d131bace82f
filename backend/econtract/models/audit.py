"""Contract audit trail models.

Entries are append-only: never updated or deleted.
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum
import uuid

from utils.timestamps import utc_now


class ContractAuditAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    STATUS_UPDATED = "status_updated"
    VIEWED = "viewed"
    DOWNLOADED = "downloaded"
    SENT_FOR_SIGNATURE = "sent_for_signature"
    SIGNED = "signed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    DELETED = "deleted"
    CERTIFICATE_ISSUED = "certificate_issued"
    VIEWER_LINK_ISSUED = "viewer_link_issued"


class ContractAuditEntry(BaseModel):
    entry_id: str = Field(default_factory=lambda: f"CAL-{uuid.uuid4().hex[:12].upper()}")
    action: ContractAuditAction
    contract_id: str
    performed_by: str = "system"
    performed_at: datetime = Field(default_factory=utc_now)
    details: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None

    model_config = {"extra": "ignore"}
