"""Contract and certificate repositories."""

from .base import ContractRepository, DuplicateContractError
from .memory import InMemoryContractRepository
from .kv import KeyValueContractRepository
from .mongo import MongoContractRepository
from .certificates import (
    CertificateRepository,
    InMemoryCertificateRepository,
    KeyValueCertificateRepository,
    MongoCertificateRepository,
)
from .factory import (
    create_kv_store,
    create_contract_repository,
    create_certificate_repository,
)

__all__ = [
    "ContractRepository",
    "DuplicateContractError",
    "InMemoryContractRepository",
    "KeyValueContractRepository",
    "MongoContractRepository",
    "CertificateRepository",
    "InMemoryCertificateRepository",
    "KeyValueCertificateRepository",
    "MongoCertificateRepository",
    "create_kv_store",
    "create_contract_repository",
    "create_certificate_repository",
]
