from datetime import UTC, datetime, timedelta

import jwt
import pytest

from stepunity.application.services.token_issuer import JWTTokenIssuer
from stepunity.domain.users.exceptions import InvalidProofError, UnauthorizedError

from .conftest import TEST_JWT_SECRET


@pytest.fixture()
def issuer() -> JWTTokenIssuer:
    return JWTTokenIssuer(TEST_JWT_SECRET)


def test_access_token_round_trip(issuer: JWTTokenIssuer) -> None:
    token = issuer.issue_access_token(42)
    assert issuer.verify_access_token(token) == 42

    claims = jwt.decode(token, TEST_JWT_SECRET, algorithms=["HS256"])
    assert claims["type"] == "access"
    assert claims["exp"] - claims["iat"] == 15 * 60


def test_access_token_rejects_other_secret(issuer: JWTTokenIssuer) -> None:
    other = JWTTokenIssuer("another-secret-that-is-long-enough-for-hs256-0000")
    with pytest.raises(UnauthorizedError):
        issuer.verify_access_token(other.issue_access_token(1))


def test_expired_access_token(issuer: JWTTokenIssuer) -> None:
    stale = JWTTokenIssuer(TEST_JWT_SECRET, access_ttl=timedelta(seconds=-5))
    with pytest.raises(UnauthorizedError):
        issuer.verify_access_token(stale.issue_access_token(1))


@pytest.mark.parametrize("token", ["", "abc", "a.b.c"])
def test_garbage_access_token(issuer: JWTTokenIssuer, token: str) -> None:
    with pytest.raises(UnauthorizedError):
        issuer.verify_access_token(token)


def test_non_numeric_subject(issuer: JWTTokenIssuer) -> None:
    now = datetime.now(UTC)
    token = jwt.encode(
        {"sub": "alice", "type": "access", "iat": now, "exp": now + timedelta(minutes=1)},
        TEST_JWT_SECRET,
        algorithm="HS256",
    )
    with pytest.raises(UnauthorizedError):
        issuer.verify_access_token(token)


def test_proof_is_not_an_access_token(issuer: JWTTokenIssuer) -> None:
    proof = issuer.issue_email_change_proof(5)

    assert issuer.verify_email_change_proof(proof) == 5
    with pytest.raises(UnauthorizedError):
        issuer.verify_access_token(proof)
    with pytest.raises(InvalidProofError):
        issuer.verify_email_change_proof(issuer.issue_access_token(5))


def test_expired_proof(issuer: JWTTokenIssuer) -> None:
    stale = JWTTokenIssuer(TEST_JWT_SECRET, proof_ttl=timedelta(seconds=-5))
    with pytest.raises(InvalidProofError):
        issuer.verify_email_change_proof(stale.issue_email_change_proof(5))


def test_empty_secret_is_refused() -> None:
    with pytest.raises(ValueError):
        JWTTokenIssuer("")


def test_one_time_values(issuer: JWTTokenIssuer) -> None:
    codes = {issuer.new_verification_code() for _ in range(50)}
    assert all(len(code) == 6 and code.isdigit() and code[0] != "0" for code in codes)

    refresh = issuer.new_refresh_value()
    assert refresh != issuer.new_refresh_value()
    assert len(issuer.new_reset_token()) >= 60


def test_hashes_match(issuer: JWTTokenIssuer) -> None:
    digest = issuer.hash_value("123456")

    assert len(digest) == 64
    assert issuer.hashes_match(digest, "123456") is True
    assert issuer.hashes_match(digest, "654321") is False
