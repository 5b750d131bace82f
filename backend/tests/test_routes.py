"""
HTTP API: contract CRUD, signing flow, certificates, viewer access and the
mapping of domain errors to status codes.
"""
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from econtract.services.viewer_access import SESSION_COOKIE_NAME


def _create(client, contract_data, **overrides):
    response = client.post("/api/contracts", json=contract_data(**overrides))
    assert response.status_code == 201, response.text
    return response.json()


def _sign(client, contract_id, party_id, ip="198.51.100.7"):
    request = client.post(f"/api/contracts/{contract_id}/sign", json={"party_id": party_id})
    assert request.status_code == 200, request.text
    token = request.json()["token"]
    return client.put(
        f"/api/contracts/{contract_id}/sign",
        json={"token": token},
        headers={"X-Forwarded-For": ip, "User-Agent": "pytest-browser"},
    )


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["storage_backend"] == "memory"


class TestContractEndpoints:
    def test_create_and_get(self, client, contract_data):
        created = _create(client, contract_data)
        assert created["status"] == "draft"
        assert "signature_request_token" not in created

        response = client.get(f"/api/contracts/{created['contract_id']}")
        assert response.status_code == 200
        assert response.json()["title"] == "Website Design Agreement"

    def test_validation_error_is_400(self, client, contract_data):
        response = client.post("/api/contracts", json=contract_data(title=""))
        assert response.status_code == 400

    def test_missing_contract_is_404(self, client):
        assert client.get("/api/contracts/CT-MISSING").status_code == 404
        assert client.put("/api/contracts/CT-MISSING/status", json={"status": "cancelled"}).status_code == 404

    def test_invalid_transition_is_400(self, client, contract_data):
        created = _create(client, contract_data)
        response = client.put(f"/api/contracts/{created['contract_id']}/status", json={"status": "completed"})
        assert response.status_code == 400
        assert "Invalid status transition" in response.json()["detail"]

    def test_update(self, client, contract_data):
        created = _create(client, contract_data)
        response = client.put(f"/api/contracts/{created['contract_id']}", json={"description": "Revised"})
        assert response.status_code == 200
        assert response.json()["description"] == "Revised"
        assert response.json()["version"] == created["version"] + 1

    def test_search_and_paging(self, client, contract_data):
        for i in range(3):
            _create(client, contract_data, title=f"Lease {i}", type="lease")
        _create(client, contract_data, title="Other")

        response = client.get("/api/contracts", params={"type": "lease", "limit": 2, "sort": "title", "order": "asc"})
        data = response.json()
        assert data["total"] == 3
        assert [c["title"] for c in data["items"]] == ["Lease 0", "Lease 1"]
        assert data["has_next"] is True

    def test_unknown_sort_field(self, client):
        assert client.get("/api/contracts", params={"sort": "password"}).status_code == 400

    def test_bulk_create_and_delete(self, client, contract_data):
        response = client.post(
            "/api/contracts/bulk",
            json={"contracts": [contract_data(title="A"), contract_data(title="B")]},
        )
        assert response.status_code == 201
        ids = [c["contract_id"] for c in response.json()["contracts"]]

        response = client.post("/api/contracts/bulk-delete", json={"contract_ids": ids})
        assert response.json() == {"deleted": 2}

    def test_delete_completed_is_refused(self, client, contract_data):
        created = _create(client, contract_data)
        contract_id = created["contract_id"]
        _sign(client, contract_id, "party-a")
        _sign(client, contract_id, "party-b")

        response = client.delete(f"/api/contracts/{contract_id}")
        assert response.status_code == 400
        assert response.json()["detail"] == "Cannot delete completed contracts"

    def test_stats(self, client, contract_data):
        _create(client, contract_data)
        stats = client.get("/api/contracts/stats").json()
        assert stats["total"] == 1
        assert stats["draft"] == 1


class TestSigningEndpoints:
    def test_full_signing_flow(self, client, contract_data):
        contract_id = _create(client, contract_data)["contract_id"]

        first = _sign(client, contract_id, "party-a")
        assert first.status_code == 200, first.text
        assert first.json()["contract_status"] == "partially_signed"
        assert first.json()["certificate_id"].startswith("CERT-")

        second = _sign(client, contract_id, "party-b")
        assert second.json()["contract_status"] == "completed"
        assert second.json()["all_signed"] is True

        contract = client.get(f"/api/contracts/{contract_id}").json()
        assert contract["completed_at"] is not None
        assert {s["ip_address"] for s in contract["signatures"]} == {"198.51.100.7"}

        report = client.get(f"/api/contracts/{contract_id}/verify").json()
        assert report["valid"] is True
        assert report["integrity_valid"] is True
        assert len(report["integrity_hash"]) == 64
        assert report["integrity_hash"] == report["current_integrity_hash"]

        edit = client.put(f"/api/contracts/{contract_id}", json={"content": "Altered terms"})
        assert edit.status_code == 400
        assert client.get(f"/api/contracts/{contract_id}").json()["content"] == contract_data()["content"]

    def test_token_is_single_use(self, client, contract_data):
        contract_id = _create(client, contract_data)["contract_id"]
        token = client.post(f"/api/contracts/{contract_id}/sign", json={"party_id": "party-a"}).json()["token"]

        assert client.put(f"/api/contracts/{contract_id}/sign", json={"token": token}).status_code == 200
        replay = client.put(f"/api/contracts/{contract_id}/sign", json={"token": token})
        assert replay.status_code == 400

    def test_token_for_other_contract(self, client, contract_data):
        first = _create(client, contract_data)["contract_id"]
        second = _create(client, contract_data)["contract_id"]
        token = client.post(f"/api/contracts/{first}/sign", json={"party_id": "party-a"}).json()["token"]

        response = client.put(f"/api/contracts/{second}/sign", json={"token": token})
        assert response.status_code == 400

    def test_already_signed_is_409(self, client, contract_data):
        contract_id = _create(client, contract_data)["contract_id"]
        _sign(client, contract_id, "party-a")
        response = client.post(f"/api/contracts/{contract_id}/sign", json={"party_id": "party-a"})
        assert response.status_code == 409

    def test_submit_rate_limited(self, client, contract_data):
        contract_id = _create(client, contract_data)["contract_id"]
        headers = {"X-Forwarded-For": "192.0.2.77"}
        limit = client.app.state.services.settings.sign_submit_rate_limit

        for _ in range(limit):
            response = client.put(f"/api/contracts/{contract_id}/sign", json={"token": "bogus"}, headers=headers)
            assert response.status_code == 400

        blocked = client.put(f"/api/contracts/{contract_id}/sign", json={"token": "bogus"}, headers=headers)
        assert blocked.status_code == 429
        assert int(blocked.headers["Retry-After"]) >= 1


class TestCertificateEndpoints:
    def test_certificate_and_pdf(self, client, contract_data):
        contract_id = _create(client, contract_data)["contract_id"]
        _sign(client, contract_id, "party-a")
        _sign(client, contract_id, "party-b")

        issued = client.post(f"/api/contracts/{contract_id}/certificate")
        assert issued.status_code == 200
        certificate = issued.json()
        assert certificate["contract_id"] == contract_id

        fetched = client.get(f"/api/contracts/{contract_id}/certificate").json()
        assert fetched["certificate_id"] == certificate["certificate_id"]

        pdf = client.get(f"/api/contracts/{contract_id}/certificate/pdf")
        assert pdf.status_code == 200
        assert pdf.headers["content-type"] == "application/pdf"
        assert pdf.content.startswith(b"%PDF")

    def test_certificate_for_draft(self, client, contract_data):
        contract_id = _create(client, contract_data)["contract_id"]
        assert client.get(f"/api/contracts/{contract_id}/certificate").status_code == 404
        assert client.post(f"/api/contracts/{contract_id}/certificate").status_code == 400


class TestViewerEndpoints:
    def test_magic_link_session(self, client, contract_data):
        contract_id = _create(client, contract_data)["contract_id"]
        link = client.post(f"/api/contracts/{contract_id}/viewer-link", json={"party_id": "party-b"}).json()

        session = client.post("/api/viewer/session", json={"token": link["token"]})
        assert session.status_code == 200
        assert session.cookies.get(SESSION_COOKIE_NAME)
        session_token = session.json()["session_token"]

        response = client.get(
            f"/api/viewer/contracts/{contract_id}",
            headers={"Authorization": f"Bearer {session_token}"},
        )
        assert response.status_code == 200
        assert response.json()["contract_id"] == contract_id

        assert client.post("/api/viewer/session", json={"token": link["token"]}).status_code == 400

    def test_viewer_requires_session(self, client, contract_data):
        contract_id = _create(client, contract_data)["contract_id"]
        assert client.get(f"/api/viewer/contracts/{contract_id}").status_code == 401
        response = client.get(
            f"/api/viewer/contracts/{contract_id}",
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401
