"""
Signing API Routes - signature requests, submissions and verification.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from econtract.errors import ContractError
from econtract.routes.dependencies import (
    get_client_ip,
    get_services,
    get_user_agent,
    to_http_exception,
)
from econtract.services.certificate_service import verify_certificate_hash
from econtract.services.contract_hash import contract_integrity_hash

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/contracts", tags=["signing"])


class SignatureRequestBody(BaseModel):
    party_id: str
    performed_by: str = "system"


class SignatureSubmitBody(BaseModel):
    token: str
    signature_image: Optional[str] = None


@router.post("/{contract_id}/sign")
async def request_signature(request: Request, contract_id: str, body: SignatureRequestBody):
    """Issue a signing link for one party."""
    services = get_services(request)
    try:
        result = await services.signing_service.request_signature(
            contract_id,
            body.party_id,
            client_ip=get_client_ip(request),
            performed_by=body.performed_by,
        )
    except ContractError as e:
        raise to_http_exception(e)

    return {
        "success": True,
        "signature_url": result.signature_url,
        "token": result.token,
        "expires_at": result.expires_at.isoformat(),
        "contract_status": result.contract_status.value,
        "warnings": result.warnings,
    }


@router.put("/{contract_id}/sign")
async def submit_signature(request: Request, contract_id: str, body: SignatureSubmitBody):
    """
    Record a signature with a signing-link token.
    A token is usable once; a concurrent second submission is rejected.
    """
    services = get_services(request)
    try:
        result = await services.signing_service.submit_signature(
            contract_id,
            body.token,
            ip_address=get_client_ip(request) or "unknown",
            user_agent=get_user_agent(request),
            signature_image=body.signature_image,
        )
    except ContractError as e:
        raise to_http_exception(e)

    return {
        "success": True,
        "certificate_id": result.certificate_id,
        "signed_at": result.signed_at.isoformat(),
        "contract_status": result.contract_status.value,
        "all_signed": result.all_signed,
        "certificate_queued": result.certificate_queued,
        "qr_code_data": result.qr_code_data,
        "warnings": result.warnings,
    }


@router.get("/{contract_id}/verify")
async def verify_contract(request: Request, contract_id: str):
    """Recompute signature hashes and report the contract's integrity state."""
    services = get_services(request)
    try:
        contract = await services.contract_service.require_contract(contract_id)
    except ContractError as e:
        raise to_http_exception(e)

    report = services.signing_service.verify_contract_signatures(contract)
    certificate = await services.certificate_service.get_certificate(contract_id)

    return {
        "contract_id": contract_id,
        "status": contract.status.value,
        "valid": report.valid,
        "results": [r.model_dump() for r in report.results],
        "integrity_hash": contract.integrity_hash,
        "current_integrity_hash": contract_integrity_hash(contract),
        "integrity_valid": report.integrity_valid,
        "integrity_error": report.integrity_error,
        "certificate": {
            "certificate_id": certificate.certificate_id,
            "hash_valid": verify_certificate_hash(certificate),
            "contract_hash_matches": certificate.contract_hash == contract.integrity_hash,
        } if certificate else None,
    }
