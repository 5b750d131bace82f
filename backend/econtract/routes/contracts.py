"""
Contract API Routes - CRUD, search, statistics and status transitions.
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from econtract.errors import ContractError
from econtract.models.contract import ContractCreate, ContractStatus, ContractUpdate
from econtract.models.query import SORTABLE_FIELDS, ContractFilter, ContractSort, SortOrder
from econtract.routes.dependencies import (
    get_client_ip,
    get_services,
    serialize_contract,
    to_http_exception,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/contracts", tags=["contracts"])


class StatusUpdateRequest(BaseModel):
    status: ContractStatus
    performed_by: str = "system"


class BulkCreateRequest(BaseModel):
    contracts: List[ContractCreate] = Field(default_factory=list)
    performed_by: str = "system"


class BulkDeleteRequest(BaseModel):
    contract_ids: List[str] = Field(default_factory=list)
    performed_by: str = "system"


@router.get("")
async def search_contracts(
    request: Request,
    q: Optional[str] = None,
    status: Optional[List[str]] = Query(None),
    type: Optional[List[str]] = Query(None),
    tags: Optional[List[str]] = Query(None),
    category: Optional[str] = None,
    priority: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort: str = "updated_at",
    order: SortOrder = SortOrder.DESC,
):
    """Paginated search over contracts."""
    if sort not in SORTABLE_FIELDS:
        raise HTTPException(status_code=400, detail=f"Cannot sort by {sort}")

    services = get_services(request)
    contract_filter = ContractFilter(
        query=q,
        status=status or [],
        type=type or [],
        tags=tags or [],
        category=category,
        priority=priority,
        date_from=date_from,
        date_to=date_to,
    )
    try:
        result = await services.contract_service.search_contracts(
            contract_filter, page, limit, ContractSort(field=sort, order=order)
        )
    except ContractError as e:
        raise to_http_exception(e)

    return {
        "items": [serialize_contract(c) for c in result.items],
        "page": result.page,
        "limit": result.limit,
        "total": result.total,
        "total_pages": result.total_pages,
        "has_next": result.has_next,
        "has_prev": result.has_prev,
    }


@router.post("", status_code=201)
async def create_contract(request: Request, body: ContractCreate):
    services = get_services(request)
    try:
        contract = await services.contract_service.create_contract(
            body, performed_by=body.created_by, ip_address=get_client_ip(request)
        )
    except ContractError as e:
        raise to_http_exception(e)
    return serialize_contract(contract)


@router.post("/bulk", status_code=201)
async def bulk_create_contracts(request: Request, body: BulkCreateRequest):
    """Create several contracts. Nothing is written if any item is invalid."""
    services = get_services(request)
    try:
        created = await services.contract_service.create_multiple_contracts(
            body.contracts, performed_by=body.performed_by
        )
    except ContractError as e:
        raise to_http_exception(e)
    return {"created": len(created), "contracts": [serialize_contract(c) for c in created]}


@router.post("/bulk-delete")
async def bulk_delete_contracts(request: Request, body: BulkDeleteRequest):
    services = get_services(request)
    try:
        deleted = await services.contract_service.delete_multiple_contracts(
            body.contract_ids, performed_by=body.performed_by
        )
    except ContractError as e:
        raise to_http_exception(e)
    return {"deleted": deleted}


@router.get("/stats")
async def get_contract_stats(request: Request):
    services = get_services(request)
    stats = await services.contract_service.get_contract_stats()
    return stats.model_dump()


@router.get("/recent-completed")
async def get_recent_completed(request: Request, limit: int = Query(10, ge=1, le=100)):
    services = get_services(request)
    contracts = await services.contract_service.get_recent_completed_contracts(limit)
    return {"contracts": [serialize_contract(c) for c in contracts]}


@router.get("/{contract_id}")
async def get_contract(request: Request, contract_id: str):
    services = get_services(request)
    contract = await services.contract_service.get_contract(contract_id)
    if not contract:
        raise HTTPException(status_code=404, detail="Contract not found")
    return serialize_contract(contract)


@router.put("/{contract_id}")
async def update_contract(request: Request, contract_id: str, body: ContractUpdate):
    services = get_services(request)
    try:
        contract = await services.contract_service.update_contract(
            contract_id, body, ip_address=get_client_ip(request)
        )
    except ContractError as e:
        raise to_http_exception(e)
    return serialize_contract(contract)


@router.put("/{contract_id}/status")
async def update_contract_status(request: Request, contract_id: str, body: StatusUpdateRequest):
    services = get_services(request)
    try:
        contract = await services.contract_service.update_contract_status(
            contract_id, body.status, performed_by=body.performed_by, ip_address=get_client_ip(request)
        )
    except ContractError as e:
        raise to_http_exception(e)
    return serialize_contract(contract)


@router.delete("/{contract_id}")
async def delete_contract(request: Request, contract_id: str):
    services = get_services(request)
    try:
        deleted = await services.contract_service.delete_contract(
            contract_id, ip_address=get_client_ip(request)
        )
    except ContractError as e:
        raise to_http_exception(e)
    return {"success": deleted, "contract_id": contract_id}
