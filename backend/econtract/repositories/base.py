"""
Contract Repository interface.

Every backend must give identical semantics:
- update() merges partial fields, always refreshes updated_at and bumps version;
  with expected_version it is conditional and raises ConflictError on mismatch.
- search()/find_paginated() apply ContractFilter's predicate and the same sort.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from utils.timestamps import utc_now
from econtract.errors import ContractValidationError
from econtract.models.contract import Contract
from econtract.models.query import ContractFilter, ContractSort, PaginatedResult

# Fields that callers may never overwrite through update()
PROTECTED_FIELDS = {"contract_id", "created_at", "version", "updated_at"}

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100


class DuplicateContractError(ContractValidationError):
    def __init__(self, contract_id: str):
        super().__init__(f"Contract already exists: {contract_id}", field="contract_id")
        self.contract_id = contract_id


def merge_contract(contract: Contract, updates: Dict[str, Any], now: datetime) -> Contract:
    """Return a validated copy of contract with updates applied."""
    data = contract.model_dump()
    for key, value in updates.items():
        if key in PROTECTED_FIELDS:
            continue
        data[key] = value
    data["updated_at"] = now
    data["version"] = contract.version + 1
    return Contract.model_validate(data)


def normalize_page(page: int, limit: int) -> Tuple[int, int]:
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or DEFAULT_PAGE_LIMIT), 1), MAX_PAGE_LIMIT)
    return page, limit


class ContractRepository(ABC):
    """Abstract base class for contract storage backends."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock

    @abstractmethod
    async def find_by_id(self, contract_id: str) -> Optional[Contract]:
        pass

    @abstractmethod
    async def find_all(self) -> List[Contract]:
        """All contracts, most recently updated first."""
        pass

    @abstractmethod
    async def create(self, contract: Contract) -> Contract:
        """Persist a new contract. Raises DuplicateContractError if the id is taken."""
        pass

    @abstractmethod
    async def update(
        self,
        contract_id: str,
        updates: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Contract:
        """Merge updates. Raises ContractNotFoundError or ConflictError."""
        pass

    @abstractmethod
    async def delete(self, contract_id: str) -> bool:
        pass

    @abstractmethod
    async def search(self, contract_filter: ContractFilter, sort: Optional[ContractSort] = None) -> List[Contract]:
        pass

    @abstractmethod
    async def find_paginated(
        self,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
        contract_filter: Optional[ContractFilter] = None,
        sort: Optional[ContractSort] = None,
    ) -> PaginatedResult[Contract]:
        pass

    @abstractmethod
    async def count(self, contract_filter: Optional[ContractFilter] = None) -> int:
        pass

    async def exists(self, contract_id: str) -> bool:
        return await self.find_by_id(contract_id) is not None

    async def create_many(self, contracts: List[Contract]) -> List[Contract]:
        """All or nothing: a failed insert removes the ones already written."""
        created = []
        try:
            for contract in contracts:
                created.append(await self.create(contract))
        except Exception:
            for contract in created:
                await self.delete(contract.contract_id)
            raise
        return created

    async def update_many(self, updates: List[Tuple[str, Dict[str, Any]]]) -> List[Contract]:
        updated = []
        for contract_id, fields in updates:
            updated.append(await self.update(contract_id, fields))
        return updated

    async def delete_many(self, contract_ids: List[str]) -> int:
        deleted = 0
        for contract_id in contract_ids:
            if await self.delete(contract_id):
                deleted += 1
        return deleted


class FilteringContractRepository(ContractRepository):
    """Base for backends that filter, sort and page in Python."""

    @abstractmethod
    async def _load_all(self) -> List[Contract]:
        pass

    async def find_all(self) -> List[Contract]:
        return ContractSort().apply(await self._load_all())

    async def search(self, contract_filter: ContractFilter, sort: Optional[ContractSort] = None) -> List[Contract]:
        contracts = [c for c in await self._load_all() if contract_filter.matches(c)]
        return (sort or ContractSort()).apply(contracts)

    async def find_paginated(
        self,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
        contract_filter: Optional[ContractFilter] = None,
        sort: Optional[ContractSort] = None,
    ) -> PaginatedResult[Contract]:
        page, limit = normalize_page(page, limit)
        matches = await self.search(contract_filter or ContractFilter(), sort)
        start = (page - 1) * limit
        return PaginatedResult[Contract].build(matches[start:start + limit], page, limit, len(matches))

    async def count(self, contract_filter: Optional[ContractFilter] = None) -> int:
        contracts = await self._load_all()
        if contract_filter is None:
            return len(contracts)
        return sum(1 for c in contracts if contract_filter.matches(c))
