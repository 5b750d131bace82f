"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from pathlib import Path

# In-memory backends, no scheduler, deterministic secret.
os.environ.setdefault("ENV", "test")
os.environ.setdefault("CONTRACT_SIGNING_SECRET", "test-signing-secret")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("POSTMARK_SERVER_TOKEN", "")

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import pytest
from fastapi.testclient import TestClient

from config import Settings

TEST_SECRET = "test-signing-secret"
TEST_DOMAIN = "https://contracts.example.com"


def make_settings(**overrides) -> Settings:
    values = dict(
        environment="test",
        signing_secret=TEST_SECRET,
        contract_domain=TEST_DOMAIN,
        storage_backend="memory",
        cache_backend="memory",
        scheduler_enabled=False,
    )
    values.update(overrides)
    return Settings(**values)


def party_payload(party_id: str, name: str, email: str, **extra) -> dict:
    data = {"id": party_id, "name": name, "email": email}
    data.update(extra)
    return data


def contract_payload(**overrides) -> dict:
    data = {
        "title": "Website Design Agreement",
        "description": "Design and build of the marketing site",
        "content": "The contractor agrees to deliver...",
        "type": "design_agreement",
        "parties": [
            party_payload("party-a", "Alice Contractor", "alice@example.com", type="contractor"),
            party_payload("party-b", "Bob Client", "bob@example.com", company="Bob Ltd"),
        ],
        "transaction_amount": 1200.0,
    }
    data.update(overrides)
    return data


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def services(settings):
    """Fresh service container on in-memory backends."""
    from econtract.services.container import build_services
    container = build_services(settings)
    container.side_effects.retry_delay_seconds = 0
    return container


@pytest.fixture
def client():
    """TestClient for the main FastAPI app (server:app), with lifespan started."""
    from server import app
    with TestClient(app) as test_client:
        app.state.services.side_effects.retry_delay_seconds = 0
        yield test_client


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def contract_data():
    """Factory for contract creation payloads."""
    return contract_payload
