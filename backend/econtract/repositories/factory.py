"""
Backend selection.
The only place that knows which storage backend is configured; lifecycle and
signing code receive repository interfaces.
"""
import logging

from econtract.cache.kv_store import InMemoryKeyValueStore, KeyValueStore, MongoKeyValueStore
from econtract.repositories.base import ContractRepository
from econtract.repositories.certificates import (
    CertificateRepository,
    InMemoryCertificateRepository,
    KeyValueCertificateRepository,
    MongoCertificateRepository,
)
from econtract.repositories.kv import KeyValueContractRepository
from econtract.repositories.memory import InMemoryContractRepository
from econtract.repositories.mongo import MongoContractRepository

logger = logging.getLogger(__name__)


def create_kv_store(settings, db=None) -> KeyValueStore:
    if settings.cache_backend == "mongo":
        if db is None:
            raise ValueError("CACHE_BACKEND=mongo requires a database connection")
        return MongoKeyValueStore(db)
    return InMemoryKeyValueStore()


def create_contract_repository(settings, kv_store: KeyValueStore, db=None) -> ContractRepository:
    backend = settings.storage_backend
    if backend == "mongo":
        if db is None:
            raise ValueError("STORAGE_BACKEND=mongo requires a database connection")
        repository = MongoContractRepository(db)
    elif backend == "kv":
        repository = KeyValueContractRepository(kv_store)
    else:
        repository = InMemoryContractRepository()
    logger.info(f"Contract repository backend: {backend}")
    return repository


def create_certificate_repository(settings, kv_store: KeyValueStore, db=None) -> CertificateRepository:
    backend = settings.storage_backend
    if backend == "mongo":
        if db is None:
            raise ValueError("STORAGE_BACKEND=mongo requires a database connection")
        return MongoCertificateRepository(db)
    if backend == "kv":
        return KeyValueCertificateRepository(kv_store)
    return InMemoryCertificateRepository()
