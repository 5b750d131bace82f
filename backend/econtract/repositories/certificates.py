"""
Completion certificate storage.
At most one certificate per contract: insert() refuses a second one and the
caller returns the existing record instead.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from pymongo.errors import DuplicateKeyError

from econtract.cache.kv_store import KeyValueStore
from econtract.models.certificate import CompletionCertificate

logger = logging.getLogger(__name__)

CERTIFICATE_KEY_PREFIX = "certificate:"


class CertificateRepository(ABC):
    @abstractmethod
    async def find_by_contract_id(self, contract_id: str) -> Optional[CompletionCertificate]:
        pass

    @abstractmethod
    async def insert(self, certificate: CompletionCertificate) -> bool:
        """Store the certificate. Returns False if the contract already has one."""
        pass


class InMemoryCertificateRepository(CertificateRepository):
    def __init__(self):
        self._certificates: Dict[str, CompletionCertificate] = {}
        self._lock = asyncio.Lock()

    async def find_by_contract_id(self, contract_id: str) -> Optional[CompletionCertificate]:
        certificate = self._certificates.get(contract_id)
        return certificate.model_copy(deep=True) if certificate else None

    async def insert(self, certificate: CompletionCertificate) -> bool:
        async with self._lock:
            if certificate.contract_id in self._certificates:
                return False
            self._certificates[certificate.contract_id] = certificate.model_copy(deep=True)
            return True


class KeyValueCertificateRepository(CertificateRepository):
    def __init__(self, store: KeyValueStore):
        self.store = store

    async def find_by_contract_id(self, contract_id: str) -> Optional[CompletionCertificate]:
        value = await self.store.get(f"{CERTIFICATE_KEY_PREFIX}{contract_id}")
        return CompletionCertificate.model_validate(value) if value else None

    async def insert(self, certificate: CompletionCertificate) -> bool:
        return await self.store.set_if_absent(
            f"{CERTIFICATE_KEY_PREFIX}{certificate.contract_id}",
            certificate.model_dump(mode="json"),
        )


class MongoCertificateRepository(CertificateRepository):
    def __init__(self, db, collection_name: str = "certificates"):
        self.db = db
        self.collection_name = collection_name

    @property
    def _collection(self):
        return self.db[self.collection_name]

    async def find_by_contract_id(self, contract_id: str) -> Optional[CompletionCertificate]:
        doc = await self._collection.find_one({"contract_id": contract_id}, {"_id": 0})
        return CompletionCertificate.model_validate(doc) if doc else None

    async def insert(self, certificate: CompletionCertificate) -> bool:
        try:
            await self._collection.insert_one(certificate.model_dump())
            return True
        except DuplicateKeyError:
            logger.info(f"Certificate already exists for contract {certificate.contract_id}")
            return False
