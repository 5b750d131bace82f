"""
Viewer API Routes - magic links and read-only viewer sessions.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Cookie, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from econtract.errors import ContractError, TokenInvalidOrExpiredError
from econtract.routes.dependencies import (
    get_client_ip,
    get_services,
    serialize_contract,
    to_http_exception,
)
from econtract.services.viewer_access import SESSION_COOKIE_NAME

logger = logging.getLogger(__name__)
router = APIRouter(tags=["viewer"])


class ViewerLinkRequest(BaseModel):
    party_id: str
    performed_by: str = "system"


class ViewerSessionRequest(BaseModel):
    token: str


@router.post("/api/contracts/{contract_id}/viewer-link")
async def issue_viewer_link(request: Request, contract_id: str, body: ViewerLinkRequest):
    services = get_services(request)
    try:
        link = await services.viewer_service.issue_link(
            contract_id, body.party_id, performed_by=body.performed_by, ip_address=get_client_ip(request)
        )
    except ContractError as e:
        raise to_http_exception(e)
    return {"success": True, "url": link.url, "token": link.token, "expires_at": link.expires_at.isoformat()}


@router.post("/api/viewer/session")
async def open_viewer_session(request: Request, body: ViewerSessionRequest):
    """Exchange a magic link token for a viewer session (cookie + body)."""
    services = get_services(request)
    try:
        session = await services.viewer_service.exchange_link(body.token, ip_address=get_client_ip(request))
    except ContractError as e:
        raise to_http_exception(e)

    response = JSONResponse({
        "success": True,
        "contract_id": session.contract_id,
        "session_token": session.session_token,
        "expires_at": session.expires_at.isoformat(),
        "redirect": session.redirect,
    })
    response.set_cookie(
        SESSION_COOKIE_NAME,
        session.session_token,
        max_age=int(services.viewer_service.session_ttl.total_seconds()),
        httponly=True,
        secure=services.settings.environment == "production",
        samesite="lax",
    )
    return response


@router.get("/api/viewer/contracts/{contract_id}")
async def view_contract(
    request: Request,
    contract_id: str,
    session_cookie: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
):
    session_token = session_cookie
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        session_token = auth_header[len("Bearer "):]
    if not session_token:
        raise HTTPException(status_code=401, detail="Viewer session required")

    services = get_services(request)
    try:
        contract = await services.viewer_service.get_contract_for_session(
            session_token, contract_id, ip_address=get_client_ip(request)
        )
    except TokenInvalidOrExpiredError:
        raise HTTPException(status_code=401, detail="Viewer session is invalid or has expired")
    except ContractError as e:
        raise to_http_exception(e)
    return serialize_contract(contract)
