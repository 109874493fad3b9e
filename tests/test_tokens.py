"""Unit tests for access and renewal token issuance."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from vidtube.service.errors import InvalidTokenError
from vidtube.service.tokens import TokenIssuer

ACCESS_SECRET = "access-secret-for-token-tests-0123456789"
REFRESH_SECRET = "refresh-secret-for-token-tests-0123456789"


def _issuer(clock=None) -> TokenIssuer:
    return TokenIssuer(
        access_secret=ACCESS_SECRET,
        refresh_secret=REFRESH_SECRET,
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=10),
        clock=clock,
    )


class TestAccessTokens:
    def test_access_token_carries_profile_claims(self):
        token = _issuer().issue_access_token("acc-1", "alice@example.com", "alice", "Alice A")
        payload = _issuer().verify_access_token(token)
        assert payload["sub"] == "acc-1"
        assert payload["email"] == "alice@example.com"
        assert payload["username"] == "alice"
        assert payload["fullName"] == "Alice A"
        assert payload["type"] == "access"
        assert payload["exp"] - payload["iat"] == 15 * 60

    def test_expired_access_token_rejected(self):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = _issuer(clock=lambda: past).issue_access_token("acc-1", "a@b.co", "a", "A")
        with pytest.raises(InvalidTokenError):
            _issuer().verify_access_token(token)

    def test_clock_ahead_of_expiry_rejects(self):
        issuer = _issuer()
        token = issuer.issue_access_token("acc-1", "a@b.co", "a", "A")
        later = datetime.now(timezone.utc) + timedelta(minutes=16)
        with pytest.raises(InvalidTokenError):
            _issuer(clock=lambda: later).verify_access_token(token)

    def test_tampered_signature_rejected(self):
        token = _issuer().issue_access_token("acc-1", "a@b.co", "a", "A")
        forged = jwt.encode(
            jwt.decode(token, options={"verify_signature": False}),
            "some-other-secret-that-is-long-enough",
            algorithm="HS256",
        )
        with pytest.raises(InvalidTokenError):
            _issuer().verify_access_token(forged)

    def test_garbage_rejected(self):
        with pytest.raises(InvalidTokenError):
            _issuer().verify_access_token("not-a-jwt")


class TestRenewalTokens:
    def test_renewal_token_only_carries_subject(self):
        token = _issuer().issue_renewal_token("acc-1")
        payload = _issuer().verify_renewal_token(token)
        assert payload["sub"] == "acc-1"
        assert payload["type"] == "refresh"
        assert "email" not in payload

    def test_tokens_minted_in_same_second_differ(self):
        fixed = datetime(2026, 1, 1, tzinfo=timezone.utc)
        issuer = _issuer(clock=lambda: fixed)
        assert issuer.issue_renewal_token("acc-1") != issuer.issue_renewal_token("acc-1")

    def test_renewal_token_not_accepted_as_access(self):
        token = _issuer().issue_renewal_token("acc-1")
        with pytest.raises(InvalidTokenError):
            _issuer().verify_access_token(token)

    def test_access_token_not_accepted_as_renewal(self):
        token = _issuer().issue_access_token("acc-1", "a@b.co", "a", "A")
        with pytest.raises(InvalidTokenError):
            _issuer().verify_renewal_token(token)

    def test_type_claim_checked_even_with_matching_secret(self):
        issuer = _issuer()
        token = issuer.issue_renewal_token("acc-1")
        with pytest.raises(InvalidTokenError):
            issuer.verify(token, REFRESH_SECRET, "access")
