"""
Shared route helpers: service lookup, client context and error translation.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request

from econtract.errors import (
    AlreadySignedError,
    ConflictError,
    ContractError,
    ContractNotFoundError,
    ContractStateError,
    ContractValidationError,
    IntegrityViolationError,
    RateLimitedError,
    SignatureTokenError,
)
from econtract.models.contract import Contract
from econtract.services.container import ServiceContainer

logger = logging.getLogger(__name__)

# Never returned to API callers
HIDDEN_CONTRACT_FIELDS = {"signature_request_token"}


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_user_agent(request: Request) -> str:
    return request.headers.get("User-Agent", "")


def serialize_contract(contract: Contract) -> Dict[str, Any]:
    return contract.model_dump(mode="json", exclude=HIDDEN_CONTRACT_FIELDS)


def to_http_exception(error: ContractError) -> HTTPException:
    """Map a domain error to the HTTP status the API documents."""
    if isinstance(error, RateLimitedError):
        return HTTPException(
            status_code=429,
            detail=str(error),
            headers={"Retry-After": str(error.retry_after)},
        )
    if isinstance(error, ContractNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (AlreadySignedError, ConflictError)):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, IntegrityViolationError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, (ContractValidationError, ContractStateError, SignatureTokenError)):
        return HTTPException(status_code=400, detail=str(error))
    logger.error(f"Unmapped contract error: {error}")
    return HTTPException(status_code=500, detail="Internal server error")
