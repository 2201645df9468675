# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Change the account email: password proof, code to the new address, verify."""

from __future__ import annotations

from datetime import timedelta

from stepunity.application.interfaces import AuditAction, AuditTrail, Mailer, RequestMeta
from stepunity.application.services.token_issuer import JWTTokenIssuer
from stepunity.application.services.verification import CodeVerifier
from stepunity.domain.users.drafts import EmailChangePayload
from stepunity.domain.users.entities import User
from stepunity.domain.users.exceptions import (
    DraftPayloadError,
    EmailAlreadyInUseError,
    ForbiddenError,
    InvalidPasswordError,
    InvalidProofError,
    UserNotFoundError,
)
from stepunity.domain.users.repositories import (
    PasswordHasher,
    UserRepository,
    VerificationDraftRepository,
)
from stepunity.domain.users.values import normalize_email
from stepunity.shared.logging import logger
from stepunity.shared.utils.time import Clock


class IssueEmailChangeProofUseCase:
    def __init__(
        self,
        *,
        users: UserRepository,
        password_hasher: PasswordHasher,
        tokens: JWTTokenIssuer,
    ) -> None:
        self._users = users
        self._password_hasher = password_hasher
        self._tokens = tokens

    def execute(self, user_id: int, password: str) -> str:
        user = self._users.find_by_id(user_id)
        if user is None:
            raise UserNotFoundError()
        if not self._password_hasher.verify(password, user.password_hash):
            raise InvalidPasswordError()
        return self._tokens.issue_email_change_proof(user.id)


class StartEmailChangeUseCase:
    def __init__(
        self,
        *,
        users: UserRepository,
        drafts: VerificationDraftRepository,
        tokens: JWTTokenIssuer,
        mailer: Mailer,
        audit: AuditTrail,
        clock: Clock,
        code_ttl: timedelta,
        max_attempts: int,
    ) -> None:
        self._users = users
        self._drafts = drafts
        self._tokens = tokens
        self._mailer = mailer
        self._audit = audit
        self._clock = clock
        self._code_ttl = code_ttl
        self._max_attempts = max_attempts

    def execute(self, user_id: int, new_email: str, proof: str, meta: RequestMeta) -> None:
        if self._tokens.verify_email_change_proof(proof) != user_id:
            raise InvalidProofError()

        new_email = normalize_email(new_email)
        if self._users.find_by_email(new_email) is not None:
            raise EmailAlreadyInUseError()

        code = self._tokens.new_verification_code()
        now = self._clock()
        self._drafts.upsert_draft(
            email=new_email,
            code_hash=self._tokens.hash_value(code),
            expires_at=now + self._code_ttl,
            max_attempts=self._max_attempts,
            payload=EmailChangePayload(user_id=user_id),
            now=now,
        )
        self._mailer.send_verification_code(new_email, code, purpose="change_email")
        self._audit.record(AuditAction.EMAIL_CHANGE_STARTED, user_id=user_id, ip_address=meta.ip)


class VerifyEmailChangeUseCase:
    def __init__(
        self,
        *,
        users: UserRepository,
        drafts: VerificationDraftRepository,
        audit: AuditTrail,
        clock: Clock,
    ) -> None:
        self._users = users
        self._drafts = drafts
        self._verifier = CodeVerifier(drafts)
        self._audit = audit
        self._clock = clock

    def execute(self, user_id: int, new_email: str, code: str, meta: RequestMeta) -> User:
        new_email = normalize_email(new_email)
        now = self._clock()

        draft = self._verifier.load_usable(new_email, now)
        payload = draft.payload
        if not isinstance(payload, EmailChangePayload):
            raise DraftPayloadError()
        if payload.user_id != user_id:
            raise ForbiddenError()

        self._verifier.confirm_code(draft, code)

        taken = self._users.find_by_email(new_email)
        if taken is not None:
            raise EmailAlreadyInUseError()

        user = self._users.change_email(user_id, new_email, now=now)
        self._drafts.delete_draft(new_email)
        self._audit.record(AuditAction.EMAIL_CHANGED, user_id=user_id, ip_address=meta.ip)
        logger.info(f"email changed for user_id={user_id}")
        return user


__all__ = [
    "IssueEmailChangeProofUseCase",
    "StartEmailChangeUseCase",
    "VerifyEmailChangeUseCase",
]
