"""Contract search filter, sort and pagination models.

Every repository backend evaluates the same predicate: in-memory and key-value
stores call `ContractFilter.matches`, the Mongo backend translates the filter
with `to_mongo_query` which must stay equivalent.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Generic, TypeVar
from datetime import datetime
from enum import Enum
import math
import re

from utils.timestamps import ensure_utc
from econtract.models.contract import Contract

T = TypeVar("T")


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


SORTABLE_FIELDS = {"updated_at", "created_at", "completed_at", "title", "status", "transaction_amount"}


class ContractSort(BaseModel):
    field: str = "updated_at"
    order: SortOrder = SortOrder.DESC

    def key(self, contract: Contract):
        value = getattr(contract, self.field, None)
        if isinstance(value, Enum):
            value = value.value
        # None sorts first ascending / last descending, as Mongo does
        return (value is not None, value if value is not None else 0)

    def apply(self, contracts: List[Contract]) -> List[Contract]:
        return sorted(contracts, key=self.key, reverse=self.order == SortOrder.DESC)


class ContractFilter(BaseModel):
    """Free text over title/description/id/party name+email, exact matches,
    inclusive created_at range."""
    query: Optional[str] = None
    status: List[str] = Field(default_factory=list)
    type: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    priority: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    model_config = {"extra": "ignore"}

    def matches(self, contract: Contract) -> bool:
        if self.query:
            needle = self.query.lower()
            haystack = [contract.title, contract.description, contract.contract_id]
            for party in contract.parties:
                haystack.extend([party.name, party.email])
            if not any(needle in (value or "").lower() for value in haystack):
                return False

        if self.status and contract.status.value not in self.status:
            return False
        if self.type and contract.type.value not in self.type:
            return False
        if self.tags and not set(self.tags) & set(contract.tags):
            return False
        if self.category and contract.category != self.category:
            return False
        if self.priority and (contract.priority.value if contract.priority else None) != self.priority:
            return False

        if self.date_from and contract.created_at < ensure_utc(self.date_from):
            return False
        if self.date_to and contract.created_at > ensure_utc(self.date_to):
            return False

        return True

    def to_mongo_query(self) -> Dict[str, Any]:
        mongo_query: Dict[str, Any] = {}

        if self.query:
            pattern = {"$regex": re.escape(self.query), "$options": "i"}
            mongo_query["$or"] = [
                {"title": pattern},
                {"description": pattern},
                {"contract_id": pattern},
                {"parties.name": pattern},
                {"parties.email": pattern},
            ]

        if self.status:
            mongo_query["status"] = {"$in": self.status}
        if self.type:
            mongo_query["type"] = {"$in": self.type}
        if self.tags:
            mongo_query["tags"] = {"$in": self.tags}
        if self.category:
            mongo_query["category"] = self.category
        if self.priority:
            mongo_query["priority"] = self.priority

        if self.date_from or self.date_to:
            created: Dict[str, Any] = {}
            if self.date_from:
                created["$gte"] = ensure_utc(self.date_from)
            if self.date_to:
                created["$lte"] = ensure_utc(self.date_to)
            mongo_query["created_at"] = created

        return mongo_query


class PaginatedResult(BaseModel, Generic[T]):
    items: List[T] = Field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0
    total_pages: int = 0
    has_next: bool = False
    has_prev: bool = False

    @classmethod
    def build(cls, items: List[T], page: int, limit: int, total: int) -> "PaginatedResult[T]":
        total_pages = math.ceil(total / limit) if limit > 0 else 0
        return cls(
            items=items,
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )
