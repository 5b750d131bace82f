"""
Signature tokens: issue/verify, expiry, tampering and secret isolation.
"""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from econtract.services.signature_token import (
    SIGNATURE_REQUEST_TTL,
    SignatureTokenService,
    token_fingerprint,
)

NOW = datetime(2024, 5, 1, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def tokens():
    return SignatureTokenService("token-secret")


class TestIssueAndVerify:
    def test_round_trip(self, tokens):
        token = tokens.issue("CT-1", "party-a", now=NOW)
        result = tokens.verify(token, now=NOW + timedelta(hours=1))
        assert result.valid is True
        assert result.contract_id == "CT-1"
        assert result.party_id == "party-a"
        assert result.expires_at == NOW + SIGNATURE_REQUEST_TTL

    def test_token_is_url_safe_without_padding(self, tokens):
        token = tokens.issue("CT-1", "party-a", now=NOW)
        assert "=" not in token
        assert "+" not in token and "/" not in token

    def test_each_issue_is_unique(self, tokens):
        assert tokens.issue("CT-1", "party-a", now=NOW) != tokens.issue("CT-1", "party-a", now=NOW)

    def test_custom_ttl(self, tokens):
        token = tokens.issue("CT-1", "party-a", ttl=timedelta(hours=24), now=NOW)
        assert tokens.verify(token, now=NOW + timedelta(hours=23)).valid is True
        assert tokens.verify(token, now=NOW + timedelta(hours=25)).valid is False


class TestRejection:
    def test_expired_token_reports_expired(self, tokens):
        token = tokens.issue("CT-1", "party-a", now=NOW)
        result = tokens.verify(token, now=NOW + timedelta(hours=49))
        assert result.valid is False
        assert result.expired is True

    def test_wrong_secret_is_invalid(self, tokens):
        token = tokens.issue("CT-1", "party-a", now=NOW)
        result = SignatureTokenService("another-secret").verify(token, now=NOW)
        assert result.valid is False
        assert result.expired is False
        assert result.contract_id is None

    def test_tampered_token_is_invalid(self, tokens):
        token = tokens.issue("CT-1", "party-a", now=NOW)
        flipped = token[:-5] + ("A" if token[-5] != "A" else "B") + token[-4:]
        assert tokens.verify(flipped, now=NOW).valid is False

    @pytest.mark.parametrize("garbage", ["", "not-a-token", "abc$%^", None])
    def test_garbage_never_raises(self, tokens, garbage):
        assert tokens.verify(garbage, now=NOW).valid is False

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            SignatureTokenService("")


def test_fingerprint_is_short_and_stable():
    assert token_fingerprint("abc") == token_fingerprint("abc")
    assert len(token_fingerprint("abc")) == 8
