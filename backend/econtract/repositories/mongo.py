"""
MongoDB contract repository (Motor).
Filters are translated by ContractFilter.to_mongo_query so results match the
in-process predicate used by the other backends.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from econtract.errors import ConflictError, ContractNotFoundError
from econtract.models.contract import Contract
from econtract.models.query import ContractFilter, ContractSort, PaginatedResult, SortOrder
from econtract.repositories.base import (
    DEFAULT_PAGE_LIMIT,
    PROTECTED_FIELDS,
    ContractRepository,
    DuplicateContractError,
    merge_contract,
    normalize_page,
)

logger = logging.getLogger(__name__)

MAX_UNCONDITIONAL_ATTEMPTS = 5


def _mongo_sort(sort: Optional[ContractSort]):
    sort = sort or ContractSort()
    return [(sort.field, -1 if sort.order == SortOrder.DESC else 1)]


class MongoContractRepository(ContractRepository):
    """Contracts stored one document per contract in `contracts`."""

    def __init__(self, db, collection_name: str = "contracts", **kwargs):
        super().__init__(**kwargs)
        self.db = db
        self.collection_name = collection_name

    @property
    def _collection(self):
        return self.db[self.collection_name]

    async def find_by_id(self, contract_id: str) -> Optional[Contract]:
        doc = await self._collection.find_one({"contract_id": contract_id}, {"_id": 0})
        return Contract.model_validate(doc) if doc else None

    async def find_all(self) -> List[Contract]:
        cursor = self._collection.find({}, {"_id": 0}).sort(_mongo_sort(None))
        return [Contract.model_validate(doc) async for doc in cursor]

    async def create(self, contract: Contract) -> Contract:
        try:
            await self._collection.insert_one(contract.to_document())
        except DuplicateKeyError:
            raise DuplicateContractError(contract.contract_id)
        return contract

    async def update(
        self,
        contract_id: str,
        updates: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Contract:
        attempts = 1 if expected_version is not None else MAX_UNCONDITIONAL_ATTEMPTS
        for _ in range(attempts):
            current = await self.find_by_id(contract_id)
            if current is None:
                raise ContractNotFoundError(contract_id)
            if expected_version is not None and current.version != expected_version:
                raise ConflictError(contract_id, expected_version, current.version)

            merged = merge_contract(current, updates, self._clock())
            document = merged.to_document()
            fields = {k: document[k] for k in updates if k not in PROTECTED_FIELDS and k in document}
            fields["updated_at"] = merged.updated_at

            doc = await self._collection.find_one_and_update(
                {"contract_id": contract_id, "version": current.version},
                {"$set": fields, "$inc": {"version": 1}},
                projection={"_id": 0},
                return_document=ReturnDocument.AFTER,
            )
            if doc is not None:
                return Contract.model_validate(doc)

        latest = await self.find_by_id(contract_id)
        if latest is None:
            raise ContractNotFoundError(contract_id)
        raise ConflictError(contract_id, expected_version, latest.version)

    async def delete(self, contract_id: str) -> bool:
        result = await self._collection.delete_one({"contract_id": contract_id})
        return result.deleted_count > 0

    async def search(self, contract_filter: ContractFilter, sort: Optional[ContractSort] = None) -> List[Contract]:
        cursor = self._collection.find(contract_filter.to_mongo_query(), {"_id": 0}).sort(_mongo_sort(sort))
        return [Contract.model_validate(doc) async for doc in cursor]

    async def find_paginated(
        self,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
        contract_filter: Optional[ContractFilter] = None,
        sort: Optional[ContractSort] = None,
    ) -> PaginatedResult[Contract]:
        page, limit = normalize_page(page, limit)
        query = (contract_filter or ContractFilter()).to_mongo_query()
        total = await self._collection.count_documents(query)
        cursor = (
            self._collection.find(query, {"_id": 0})
            .sort(_mongo_sort(sort))
            .skip((page - 1) * limit)
            .limit(limit)
        )
        items = [Contract.model_validate(doc) async for doc in cursor]
        return PaginatedResult[Contract].build(items, page, limit, total)

    async def exists(self, contract_id: str) -> bool:
        return await self._collection.count_documents({"contract_id": contract_id}, limit=1) > 0

    async def count(self, contract_filter: Optional[ContractFilter] = None) -> int:
        query = contract_filter.to_mongo_query() if contract_filter else {}
        return await self._collection.count_documents(query)

    async def delete_many(self, contract_ids: List[str]) -> int:
        result = await self._collection.delete_many({"contract_id": {"$in": list(contract_ids)}})
        return result.deleted_count
