"""E-Contract Data Models"""

from .signature import Signature
from .contract import (
    Contract,
    ContractCreate,
    ContractUpdate,
    ContractStatus,
    ContractType,
    ContractPriority,
    ContractStats,
    Party,
    PartyType,
)
from .query import (
    ContractFilter,
    ContractSort,
    SortOrder,
    PaginatedResult,
)
from .certificate import (
    CompletionCertificate,
    CertificateParty,
    CertificatePartyType,
    SignatureType,
    AuthType,
)
from .audit import ContractAuditAction, ContractAuditEntry

__all__ = [
    # Signatures
    "Signature",
    # Contracts
    "Contract",
    "ContractCreate",
    "ContractUpdate",
    "ContractStatus",
    "ContractType",
    "ContractPriority",
    "ContractStats",
    "Party",
    "PartyType",
    # Queries
    "ContractFilter",
    "ContractSort",
    "SortOrder",
    "PaginatedResult",
    # Certificates
    "CompletionCertificate",
    "CertificateParty",
    "CertificatePartyType",
    "SignatureType",
    "AuthType",
    # Audit
    "ContractAuditAction",
    "ContractAuditEntry",
]
