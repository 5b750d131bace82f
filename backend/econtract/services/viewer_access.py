"""
Viewer Access Service
Read-only access to a contract for one of its parties.

A magic link carries a signature-style token (same Fernet token module, 24h)
registered under "view:<token>". The link is exchanged exactly once for a
viewer session JWT; the session is what the viewer presents afterwards.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from pydantic import BaseModel

from utils.timestamps import truncate_to_millis, utc_now
from econtract.cache.kv_store import KeyValueStore
from econtract.errors import (
    ContractMismatchError,
    PartyNotFoundError,
    TokenInvalidOrExpiredError,
)
from econtract.models.audit import ContractAuditAction
from econtract.models.contract import Contract
from econtract.services.contract_service import ContractService
from econtract.services.signature_token import VIEWER_LINK_TTL, SignatureTokenService, token_fingerprint

logger = logging.getLogger(__name__)

VIEW_KEY_PREFIX = "view:"
SESSION_TOKEN_TYPE = "contract_viewer"
SESSION_ALGORITHM = "HS256"
SESSION_COOKIE_NAME = "contract-viewer-session"
DEFAULT_SESSION_TTL = timedelta(hours=24)


class ViewerLink(BaseModel):
    token: str
    url: str
    expires_at: datetime


class ViewerSession(BaseModel):
    session_token: str
    contract_id: str
    party_id: str
    expires_at: datetime
    redirect: str


def build_viewer_url(domain: str, token: str) -> str:
    return f"{domain.rstrip('/')}/contracts/view?token={token}"


class ViewerAccessService:
    def __init__(
        self,
        contract_service: ContractService,
        token_service: SignatureTokenService,
        kv_store: KeyValueStore,
        session_secret: str,
        contract_domain: str,
        link_ttl: timedelta = VIEWER_LINK_TTL,
        session_ttl: timedelta = DEFAULT_SESSION_TTL,
    ):
        self.contract_service = contract_service
        self.token_service = token_service
        self.kv_store = kv_store
        self.session_secret = session_secret
        self.contract_domain = contract_domain.rstrip("/")
        self.link_ttl = link_ttl
        self.session_ttl = session_ttl

    async def issue_link(
        self,
        contract_id: str,
        party_id: str,
        performed_by: str = "system",
        ip_address: Optional[str] = None,
    ) -> ViewerLink:
        contract = await self.contract_service.require_contract(contract_id)
        if contract.get_party(party_id) is None:
            raise PartyNotFoundError(party_id)

        now = utc_now()
        token = self.token_service.issue(contract_id, party_id, self.link_ttl, now=now)
        await self.kv_store.set(
            f"{VIEW_KEY_PREFIX}{token}",
            {"contract_id": contract_id, "party_id": party_id},
            ttl_seconds=self.link_ttl.total_seconds(),
        )

        self.contract_service.audit(
            ContractAuditAction.VIEWER_LINK_ISSUED,
            contract_id,
            performed_by,
            {"party_id": party_id},
            ip_address,
        )
        logger.info(f"Viewer link issued for contract {contract_id}, party {party_id}")
        return ViewerLink(
            token=token,
            url=build_viewer_url(self.contract_domain, token),
            expires_at=truncate_to_millis(now + self.link_ttl),
        )

    async def exchange_link(self, token: str, ip_address: Optional[str] = None) -> ViewerSession:
        """Consume a magic link and open a viewer session. A link works once."""
        verification = self.token_service.verify(token)
        if not verification.valid:
            logger.info(f"Rejected viewer link {token_fingerprint(token or '')} (expired={verification.expired})")
            raise TokenInvalidOrExpiredError()

        entry = await self.kv_store.pop(f"{VIEW_KEY_PREFIX}{token}")
        if entry is None or entry.get("contract_id") != verification.contract_id:
            logger.info(f"Viewer link {token_fingerprint(token)} already used or unknown")
            raise TokenInvalidOrExpiredError()

        contract = await self.contract_service.require_contract(verification.contract_id)
        party = contract.get_party(verification.party_id)
        if party is None:
            raise PartyNotFoundError(verification.party_id)

        now = datetime.now(timezone.utc)
        expires_at = now + self.session_ttl
        payload = {
            "type": SESSION_TOKEN_TYPE,
            "contract_id": contract.contract_id,
            "party_id": party.id,
            "email": party.email,
            "name": party.name,
            "company": party.company,
            "role": party.role,
            "exp": expires_at,
            "iat": now,
        }
        session_token = jwt.encode(payload, self.session_secret, algorithm=SESSION_ALGORITHM)

        self.contract_service.audit(
            ContractAuditAction.VIEWED,
            contract.contract_id,
            party.email,
            {"party_id": party.id, "via": "magic_link"},
            ip_address,
        )
        return ViewerSession(
            session_token=session_token,
            contract_id=contract.contract_id,
            party_id=party.id,
            expires_at=truncate_to_millis(expires_at),
            redirect=f"/contracts/view/{contract.contract_id}",
        )

    def validate_session(self, session_token: str) -> Optional[Dict[str, Any]]:
        """Decoded session payload, or None when invalid or expired."""
        try:
            payload = jwt.decode(session_token, self.session_secret, algorithms=[SESSION_ALGORITHM])
        except jwt.ExpiredSignatureError:
            logger.debug("Viewer session expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid viewer session: {e}")
            return None

        if payload.get("type") != SESSION_TOKEN_TYPE:
            logger.warning("Invalid viewer session type")
            return None
        for field in ("contract_id", "party_id"):
            if field not in payload:
                logger.warning(f"Viewer session missing field: {field}")
                return None
        return payload

    async def get_contract_for_session(
        self,
        session_token: str,
        contract_id: str,
        ip_address: Optional[str] = None,
    ) -> Contract:
        payload = self.validate_session(session_token)
        if payload is None:
            raise TokenInvalidOrExpiredError()
        if payload["contract_id"] != contract_id:
            raise ContractMismatchError()

        contract = await self.contract_service.require_contract(contract_id)
        self.contract_service.audit(
            ContractAuditAction.VIEWED,
            contract_id,
            payload.get("email") or payload["party_id"],
            {"party_id": payload["party_id"], "via": "session"},
            ip_address,
        )
        return contract
