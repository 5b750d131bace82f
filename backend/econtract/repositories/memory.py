"""In-memory contract repository (demo mode and tests)."""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from econtract.errors import ConflictError, ContractNotFoundError
from econtract.models.contract import Contract
from econtract.repositories.base import (
    DuplicateContractError,
    FilteringContractRepository,
    merge_contract,
)

logger = logging.getLogger(__name__)


class InMemoryContractRepository(FilteringContractRepository):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._contracts: Dict[str, Contract] = {}
        self._lock = asyncio.Lock()

    async def _load_all(self) -> List[Contract]:
        return [c.model_copy(deep=True) for c in self._contracts.values()]

    async def find_by_id(self, contract_id: str) -> Optional[Contract]:
        contract = self._contracts.get(contract_id)
        return contract.model_copy(deep=True) if contract else None

    async def create(self, contract: Contract) -> Contract:
        async with self._lock:
            if contract.contract_id in self._contracts:
                raise DuplicateContractError(contract.contract_id)
            self._contracts[contract.contract_id] = contract.model_copy(deep=True)
        logger.debug(f"Stored contract {contract.contract_id} in memory")
        return contract.model_copy(deep=True)

    async def update(
        self,
        contract_id: str,
        updates: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Contract:
        async with self._lock:
            current = self._contracts.get(contract_id)
            if current is None:
                raise ContractNotFoundError(contract_id)
            if expected_version is not None and current.version != expected_version:
                raise ConflictError(contract_id, expected_version, current.version)
            merged = merge_contract(current, updates, self._clock())
            self._contracts[contract_id] = merged
        return merged.model_copy(deep=True)

    async def delete(self, contract_id: str) -> bool:
        async with self._lock:
            return self._contracts.pop(contract_id, None) is not None
