"""
Viewer magic links and sessions.
"""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import jwt
import pytest

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from econtract.errors import ContractMismatchError, PartyNotFoundError, TokenInvalidOrExpiredError
from econtract.models.audit import ContractAuditAction
from econtract.models.contract import ContractCreate
from econtract.services.viewer_access import SESSION_ALGORITHM, SESSION_TOKEN_TYPE, build_viewer_url


async def _contract(services, contract_data):
    return await services.contract_service.create_contract(ContractCreate(**contract_data()))


def test_viewer_url():
    assert build_viewer_url("https://x.test/", "abc") == "https://x.test/contracts/view?token=abc"


class TestMagicLink:
    @pytest.mark.asyncio
    async def test_issue_link(self, services, contract_data):
        contract = await _contract(services, contract_data)
        link = await services.viewer_service.issue_link(contract.contract_id, "party-b")

        assert link.url.startswith(f"{services.settings.contract_domain}/contracts/view?token=")
        assert parse_qs(urlparse(link.url).query)["token"] == [link.token]
        remaining = link.expires_at - datetime.now(timezone.utc)
        assert timedelta(hours=23) < remaining <= timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_unknown_party(self, services, contract_data):
        contract = await _contract(services, contract_data)
        with pytest.raises(PartyNotFoundError):
            await services.viewer_service.issue_link(contract.contract_id, "party-z")

    @pytest.mark.asyncio
    async def test_link_exchanges_once(self, services, contract_data):
        contract = await _contract(services, contract_data)
        link = await services.viewer_service.issue_link(contract.contract_id, "party-b")

        session = await services.viewer_service.exchange_link(link.token, ip_address="203.0.113.5")
        assert session.contract_id == contract.contract_id
        assert session.party_id == "party-b"
        assert session.redirect == f"/contracts/view/{contract.contract_id}"

        with pytest.raises(TokenInvalidOrExpiredError):
            await services.viewer_service.exchange_link(link.token)

    @pytest.mark.asyncio
    async def test_signing_token_is_not_a_viewer_link(self, services, contract_data):
        contract = await _contract(services, contract_data)
        request = await services.signing_service.request_signature(contract.contract_id, "party-a")
        with pytest.raises(TokenInvalidOrExpiredError):
            await services.viewer_service.exchange_link(request.token)

    @pytest.mark.asyncio
    async def test_garbage_token(self, services):
        with pytest.raises(TokenInvalidOrExpiredError):
            await services.viewer_service.exchange_link("not-a-token")


class TestViewerSession:
    @pytest.mark.asyncio
    async def test_session_payload(self, services, contract_data):
        contract = await _contract(services, contract_data)
        link = await services.viewer_service.issue_link(contract.contract_id, "party-b")
        session = await services.viewer_service.exchange_link(link.token)

        payload = services.viewer_service.validate_session(session.session_token)
        assert payload["type"] == SESSION_TOKEN_TYPE
        assert payload["email"] == "bob@example.com"
        assert payload["company"] == "Bob Ltd"

    @pytest.mark.asyncio
    async def test_session_reads_contract_and_audits(self, services, contract_data):
        contract = await _contract(services, contract_data)
        link = await services.viewer_service.issue_link(contract.contract_id, "party-b")
        session = await services.viewer_service.exchange_link(link.token)

        viewed = await services.viewer_service.get_contract_for_session(
            session.session_token, contract.contract_id
        )
        assert viewed.contract_id == contract.contract_id

        await services.side_effects.drain()
        history = await services.audit_service.get_contract_history(contract.contract_id)
        actions = [e.action for e in history]
        assert ContractAuditAction.VIEWER_LINK_ISSUED in actions
        assert actions.count(ContractAuditAction.VIEWED) == 2

    @pytest.mark.asyncio
    async def test_session_bound_to_contract(self, services, contract_data):
        first = await _contract(services, contract_data)
        second = await _contract(services, contract_data)
        link = await services.viewer_service.issue_link(first.contract_id, "party-a")
        session = await services.viewer_service.exchange_link(link.token)

        with pytest.raises(ContractMismatchError):
            await services.viewer_service.get_contract_for_session(session.session_token, second.contract_id)

    def test_expired_session(self, services):
        token = jwt.encode(
            {
                "type": SESSION_TOKEN_TYPE,
                "contract_id": "CT-1",
                "party_id": "p1",
                "exp": datetime.now(timezone.utc) - timedelta(minutes=1),
            },
            services.settings.signing_secret,
            algorithm=SESSION_ALGORITHM,
        )
        assert services.viewer_service.validate_session(token) is None

    def test_wrong_token_type(self, services):
        token = jwt.encode(
            {"type": "portal", "contract_id": "CT-1", "party_id": "p1"},
            services.settings.signing_secret,
            algorithm=SESSION_ALGORITHM,
        )
        assert services.viewer_service.validate_session(token) is None

    def test_foreign_secret(self, services):
        token = jwt.encode(
            {"type": SESSION_TOKEN_TYPE, "contract_id": "CT-1", "party_id": "p1"},
            "someone-elses-secret",
            algorithm=SESSION_ALGORITHM,
        )
        assert services.viewer_service.validate_session(token) is None
