"""Unit tests for auth/tokens.py -- session token issuance and validation.

Covers:
- Issued claims round-trip through validate()
- Expiry boundary: valid one second before exp, rejected at exp and at +61 minutes
- Expiry is judged against the supplied clock, never the wall clock
- Wrong secret, issuer or audience, tampering and garbage are rejected
- validate() never raises
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.models import Subject
from auth.tokens import SessionIssuer

SECRET = "unit-test-jwt-secret-0123456789abcdef"
T0 = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def issuer() -> SessionIssuer:
    return SessionIssuer(SECRET, issuer="securecms", audience="securecms-clients", expire_minutes=60)


@pytest.fixture
def subject() -> Subject:
    return Subject(username="alice", email="alice@example.com", id=7)


class TestIssue:
    def test_claims_round_trip(self, issuer: SessionIssuer, subject: Subject) -> None:
        token, expires_at = issuer.issue(subject, ["Author", "Editor"], now=T0)
        claims = issuer.validate(token, now=T0)
        assert claims is not None
        assert claims.subject_id == 7
        assert claims.username == "alice"
        assert claims.email == "alice@example.com"
        assert claims.roles == ("Author", "Editor")
        assert claims.issued_at == int(T0.timestamp())
        assert claims.expires_at == int(expires_at.timestamp())

    def test_expiry_is_issue_time_plus_lifetime(self, issuer: SessionIssuer, subject: Subject) -> None:
        _token, expires_at = issuer.issue(subject, [], now=T0)
        assert expires_at == T0 + timedelta(minutes=60)

    def test_payload_carries_issuer_and_audience(self, issuer: SessionIssuer, subject: Subject) -> None:
        token, _ = issuer.issue(subject, [], now=T0)
        claims = jwt.get_unverified_claims(token)
        assert claims["iss"] == "securecms"
        assert claims["aud"] == "securecms-clients"
        assert claims["sub"] == "7"


class TestExpiry:
    def test_valid_one_second_before_expiry(self, issuer: SessionIssuer, subject: Subject) -> None:
        token, expires_at = issuer.issue(subject, [], now=T0)
        assert issuer.validate(token, now=expires_at - timedelta(seconds=1)) is not None

    def test_rejected_at_expiry(self, issuer: SessionIssuer, subject: Subject) -> None:
        token, expires_at = issuer.issue(subject, [], now=T0)
        assert issuer.validate(token, now=expires_at) is None

    def test_rejected_after_expiry(self, issuer: SessionIssuer, subject: Subject) -> None:
        token, expires_at = issuer.issue(subject, [], now=T0)
        assert issuer.validate(token, now=expires_at + timedelta(days=1)) is None

    def test_valid_just_after_issue_rejected_sixty_one_minutes_later(
        self, issuer: SessionIssuer, subject: Subject
    ) -> None:
        token, _ = issuer.issue(subject, [], now=T0)
        assert issuer.validate(token, now=T0) is not None
        assert issuer.validate(token, now=T0 + timedelta(minutes=61)) is None

    def test_expiry_uses_supplied_clock(self, issuer: SessionIssuer, subject: Subject) -> None:
        # T0 is long past on the wall clock; only the supplied now may decide.
        token, _ = issuer.issue(subject, [], now=T0)
        assert issuer.validate(token, now=T0 + timedelta(minutes=30)) is not None


class TestRejection:
    def test_wrong_secret(self, issuer: SessionIssuer, subject: Subject) -> None:
        token, _ = issuer.issue(subject, [], now=T0)
        other = SessionIssuer("another-secret-0123456789abcdefghij", "securecms", "securecms-clients")
        assert other.validate(token, now=T0) is None

    def test_wrong_audience(self, issuer: SessionIssuer, subject: Subject) -> None:
        token, _ = issuer.issue(subject, [], now=T0)
        other = SessionIssuer(SECRET, "securecms", "some-other-audience")
        assert other.validate(token, now=T0) is None

    def test_wrong_issuer(self, issuer: SessionIssuer, subject: Subject) -> None:
        token, _ = issuer.issue(subject, [], now=T0)
        other = SessionIssuer(SECRET, "someone-else", "securecms-clients")
        assert other.validate(token, now=T0) is None

    def test_tampered_payload(self, issuer: SessionIssuer, subject: Subject) -> None:
        token, _ = issuer.issue(subject, ["Author"], now=T0)
        header, _payload, signature = token.split(".")
        forged_claims = jwt.get_unverified_claims(token) | {"roles": ["Admin"]}
        forged_payload = jwt.encode(forged_claims, "guess", algorithm="HS256").split(".")[1]
        assert issuer.validate(f"{header}.{forged_payload}.{signature}", now=T0) is None

    def test_missing_exp_claim(self, issuer: SessionIssuer) -> None:
        token = jwt.encode(
            {"sub": "7", "username": "a", "email": "a@example.com", "iat": int(T0.timestamp()),
             "iss": "securecms", "aud": "securecms-clients"},
            SECRET,
            algorithm="HS256",
        )
        assert issuer.validate(token, now=T0) is None

    def test_non_numeric_subject(self, issuer: SessionIssuer) -> None:
        token = jwt.encode(
            {"sub": "alice", "username": "a", "email": "a@example.com", "iat": int(T0.timestamp()),
             "exp": int(T0.timestamp()) + 60, "iss": "securecms", "aud": "securecms-clients"},
            SECRET,
            algorithm="HS256",
        )
        assert issuer.validate(token, now=T0) is None

    @pytest.mark.parametrize("garbage", ["", None, "not-a-jwt", "a.b.c"])
    def test_garbage_returns_none(self, issuer: SessionIssuer, garbage) -> None:
        assert issuer.validate(garbage, now=T0) is None
