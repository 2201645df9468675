# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Access tokens, opaque refresh values and other one-time secrets.

Access tokens are stateless HS256 JWTs and are never persisted. Refresh
values, reset tokens and verification codes are random; only their SHA-256
digests are stored. None of the raw values are ever passed to the logger.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import uuid
from datetime import UTC, datetime, timedelta

import jwt

from stepunity.domain.users.exceptions import InvalidProofError, UnauthorizedError
from stepunity.shared.logging import logger

_EMAIL_CHANGE_PURPOSE = "change-email"


class JWTTokenIssuer:
    ALGORITHM = "HS256"

    def __init__(
        self,
        secret_key: str,
        *,
        access_ttl: timedelta = timedelta(minutes=15),
        proof_ttl: timedelta = timedelta(minutes=10),
    ) -> None:
        if not secret_key:
            msg = "JWT secret key cannot be empty"
            raise ValueError(msg)
        self._secret_key = secret_key
        self._access_ttl = access_ttl
        self._proof_ttl = proof_ttl

    @property
    def access_ttl(self) -> timedelta:
        return self._access_ttl

    def issue_access_token(self, user_id: int) -> str:
        return self._encode({"sub": str(user_id), "type": "access"}, self._access_ttl)

    def verify_access_token(self, token: str) -> int:
        payload = self._decode(token)
        if payload.get("type") != "access":
            logger.debug("Access token rejected: wrong token type")
            raise UnauthorizedError()
        return self._subject(payload, UnauthorizedError)

    def issue_email_change_proof(self, user_id: int) -> str:
        return self._encode(
            {"sub": str(user_id), "type": "proof", "purpose": _EMAIL_CHANGE_PURPOSE},
            self._proof_ttl,
        )

    def verify_email_change_proof(self, token: str) -> int:
        try:
            payload = self._decode(token)
        except UnauthorizedError as exc:
            raise InvalidProofError() from exc
        if payload.get("purpose") != _EMAIL_CHANGE_PURPOSE:
            logger.debug("Proof token rejected: wrong purpose")
            raise InvalidProofError()
        return self._subject(payload, InvalidProofError)

    @staticmethod
    def new_refresh_value() -> str:
        return f"{uuid.uuid4()}.{uuid.uuid4()}"

    @staticmethod
    def new_reset_token() -> str:
        return secrets.token_urlsafe(48)

    @staticmethod
    def new_verification_code() -> str:
        return str(100000 + secrets.randbelow(900000))

    @staticmethod
    def hash_value(value: str) -> str:
        return hashlib.sha256(value.encode("utf-8")).hexdigest()

    @staticmethod
    def hashes_match(expected_hash: str, value: str) -> bool:
        return hmac.compare_digest(expected_hash, JWTTokenIssuer.hash_value(value))

    def _encode(self, claims: dict, ttl: timedelta) -> str:
        now = datetime.now(UTC)
        payload = {**claims, "iat": now, "exp": now + ttl}
        return jwt.encode(payload, self._secret_key, algorithm=self.ALGORITHM)

    def _decode(self, token: str) -> dict:
        try:
            return jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.ALGORITHM],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            logger.debug("Token rejected: expired")
            raise UnauthorizedError() from exc
        except jwt.InvalidTokenError as exc:
            logger.debug(f"Token rejected: {type(exc).__name__}")
            raise UnauthorizedError() from exc

    @staticmethod
    def _subject(payload: dict, error: type[UnauthorizedError] | type[InvalidProofError]) -> int:
        try:
            user_id = int(payload["sub"])
        except (KeyError, TypeError, ValueError) as exc:
            logger.debug("Token rejected: malformed subject")
            raise error() from exc
        if user_id < 1:
            raise error()
        return user_id


__all__ = ["JWTTokenIssuer"]
