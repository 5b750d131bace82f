"""
Certificate API Routes - completion certificate issue, lookup and PDF download.
"""
import io
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from econtract.errors import ContractError, RateLimitedError
from econtract.routes.dependencies import get_client_ip, get_services, to_http_exception

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/contracts", tags=["certificates"])


@router.post("/{contract_id}/certificate")
async def issue_certificate(request: Request, contract_id: str):
    """Issue the completion certificate. Returns the existing one if already issued."""
    services = get_services(request)
    try:
        certificate = await services.certificate_service.issue_certificate(contract_id)
    except ContractError as e:
        raise to_http_exception(e)
    return certificate.model_dump(mode="json")


@router.get("/{contract_id}/certificate")
async def get_certificate(request: Request, contract_id: str):
    services = get_services(request)
    certificate = await services.certificate_service.get_certificate(contract_id)
    if not certificate:
        raise HTTPException(status_code=404, detail="Certificate not found")
    return certificate.model_dump(mode="json")


@router.get("/{contract_id}/certificate/pdf")
async def download_certificate_pdf(request: Request, contract_id: str):
    services = get_services(request)
    settings = services.settings
    client_ip = get_client_ip(request)

    limit = await services.rate_limiter.check_limit(
        f"certificate-pdf:{client_ip or 'unknown'}",
        settings.pdf_rate_limit,
        settings.rate_limit_window_seconds,
    )
    if not limit.allowed:
        raise to_http_exception(RateLimitedError(limit.retry_after))

    try:
        pdf_bytes = await services.certificate_service.download_certificate_pdf(
            contract_id, performed_by=client_ip or "anonymous", ip_address=client_ip
        )
    except ContractError as e:
        raise to_http_exception(e)

    return StreamingResponse(
        io.BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename=certificate_{contract_id}.pdf"},
    )
