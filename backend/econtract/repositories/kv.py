"""
Key-value contract repository.
Each contract is stored as a JSON document under "contract:<contract_id>".
Conditional writes use the store's compare-and-swap on the version field.
"""
import logging
from typing import Any, Dict, List, Optional

from econtract.cache.kv_store import KeyValueStore
from econtract.errors import ConflictError, ContractNotFoundError
from econtract.models.contract import Contract
from econtract.repositories.base import (
    DuplicateContractError,
    FilteringContractRepository,
    merge_contract,
)

logger = logging.getLogger(__name__)

CONTRACT_KEY_PREFIX = "contract:"

# Unconditional updates re-read and retry when another writer got in first
MAX_UNCONDITIONAL_ATTEMPTS = 5


def _key(contract_id: str) -> str:
    return f"{CONTRACT_KEY_PREFIX}{contract_id}"


def _serialize(contract: Contract) -> Dict[str, Any]:
    return contract.model_dump(mode="json")


class KeyValueContractRepository(FilteringContractRepository):
    def __init__(self, store: KeyValueStore, **kwargs):
        super().__init__(**kwargs)
        self.store = store

    async def _load_all(self) -> List[Contract]:
        entries = await self.store.scan(CONTRACT_KEY_PREFIX)
        return [Contract.model_validate(value) for value in entries.values()]

    async def find_by_id(self, contract_id: str) -> Optional[Contract]:
        value = await self.store.get(_key(contract_id))
        return Contract.model_validate(value) if value else None

    async def create(self, contract: Contract) -> Contract:
        stored = await self.store.set_if_absent(_key(contract.contract_id), _serialize(contract))
        if not stored:
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
            swapped = await self.store.compare_and_swap(
                _key(contract_id), "version", current.version, _serialize(merged)
            )
            if swapped:
                return merged

        latest = await self.find_by_id(contract_id)
        if latest is None:
            raise ContractNotFoundError(contract_id)
        raise ConflictError(contract_id, expected_version, latest.version)

    async def delete(self, contract_id: str) -> bool:
        return await self.store.delete(_key(contract_id))
