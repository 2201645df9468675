# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from stepunity.application.interfaces import (
    AuditAction,
    AuditTrail,
    AvatarStorage,
    BreachChecker,
    CaptchaVerifier,
    Mailer,
    RequestMeta,
    UploadedFile,
)
from stepunity.application.services.session_issuer import SessionIssuer
from stepunity.application.services.token_issuer import JWTTokenIssuer
from stepunity.application.services.verification import CodeVerifier
from stepunity.domain.users.drafts import RegistrationPayload
from stepunity.domain.users.entities import IssuedSession, VerificationDraft
from stepunity.domain.users.exceptions import (
    BreachedPasswordError,
    CaptchaFailedError,
    DraftPayloadError,
    EmailAlreadyInUseError,
    IncorrectCodeError,
    InvalidUsernameError,
    UserAlreadyExistsError,
    UsernameAlreadyInUseError,
    VerificationAttemptsExceededError,
    VerificationInvalidError,
)
from stepunity.domain.users.repositories import (
    PasswordHasher,
    UserRepository,
    VerificationDraftRepository,
)
from stepunity.domain.users.values import is_valid_handle, normalize_email, username_handle
from stepunity.shared.logging import logger
from stepunity.shared.utils.time import Clock


@dataclass(slots=True, frozen=True)
class RegistrationRequest:
    email: str
    username: str
    password: str
    avatar: UploadedFile | None = None
    captcha_token: str | None = None


class RegisterStartUseCase:
    """Validate a sign-up, park it in a draft and mail a one-time code.

    No credential record is created here. If the email cannot be sent the
    draft stays behind and a retry simply overwrites it.
    """

    def __init__(
        self,
        *,
        users: UserRepository,
        drafts: VerificationDraftRepository,
        password_hasher: PasswordHasher,
        tokens: JWTTokenIssuer,
        mailer: Mailer,
        breach_checker: BreachChecker,
        captcha: CaptchaVerifier,
        avatars: AvatarStorage,
        audit: AuditTrail,
        clock: Clock,
        code_ttl: timedelta,
        max_attempts: int,
    ) -> None:
        self._users = users
        self._drafts = drafts
        self._password_hasher = password_hasher
        self._tokens = tokens
        self._mailer = mailer
        self._breach_checker = breach_checker
        self._captcha = captcha
        self._avatars = avatars
        self._audit = audit
        self._clock = clock
        self._code_ttl = code_ttl
        self._max_attempts = max_attempts

    def execute(self, request: RegistrationRequest, meta: RequestMeta) -> None:
        if not self._captcha.verify(request.captcha_token, meta.ip):
            raise CaptchaFailedError()

        email = normalize_email(request.email)
        display_name = request.username.strip()
        handle = username_handle(display_name)
        if not is_valid_handle(handle):
            raise InvalidUsernameError()

        if self._users.find_by_email(email) is not None:
            raise EmailAlreadyInUseError()
        if self._users.find_by_username(handle) is not None:
            raise UsernameAlreadyInUseError()

        leaks = self._breach_checker.pwned_count(request.password)
        if leaks > 0:
            raise BreachedPasswordError(pwned_count=leaks)

        password_hash = self._password_hasher.hash(request.password)
        avatar_url = self._avatars.save(request.avatar) if request.avatar else None

        previous = self._drafts.get_draft(email)
        code = self._tokens.new_verification_code()
        now = self._clock()
        self._drafts.upsert_draft(
            email=email,
            code_hash=self._tokens.hash_value(code),
            expires_at=now + self._code_ttl,
            max_attempts=self._max_attempts,
            payload=RegistrationPayload(
                username=handle,
                display_name=display_name,
                password_hash=password_hash,
                avatar_url=avatar_url,
            ),
            now=now,
        )
        self._discard_replaced_avatar(previous, avatar_url)

        self._mailer.send_verification_code(email, code, purpose="register")
        self._audit.record(AuditAction.REGISTER_STARTED, ip_address=meta.ip)
        logger.info("register: verification code issued")

    def _discard_replaced_avatar(
        self, previous: VerificationDraft | None, current_url: str | None
    ) -> None:
        if previous is None or not isinstance(previous.payload, RegistrationPayload):
            return
        old_url = previous.payload.avatar_url
        if old_url and old_url != current_url:
            self._avatars.delete(old_url)


class RegisterVerifyUseCase:
    """Promote a confirmed draft into a verified account and sign it in."""

    def __init__(
        self,
        *,
        users: UserRepository,
        drafts: VerificationDraftRepository,
        sessions: SessionIssuer,
        audit: AuditTrail,
        clock: Clock,
        default_avatar_url: str | None,
    ) -> None:
        self._users = users
        self._drafts = drafts
        self._verifier = CodeVerifier(drafts)
        self._sessions = sessions
        self._audit = audit
        self._clock = clock
        self._default_avatar_url = default_avatar_url

    def execute(self, email: str, code: str, meta: RequestMeta) -> IssuedSession:
        email = normalize_email(email)
        now = self._clock()

        try:
            draft = self._verifier.load_usable(email, now)
            self._verifier.confirm_code(draft, code)
        except (
            VerificationInvalidError,
            VerificationAttemptsExceededError,
            IncorrectCodeError,
        ) as exc:
            self._audit.record(
                AuditAction.VERIFICATION_FAILED,
                ip_address=meta.ip,
                success=False,
                details={"reason": exc.code},
            )
            raise

        payload = draft.payload
        if not isinstance(payload, RegistrationPayload):
            raise DraftPayloadError()

        # The draft may be minutes old; someone else could have taken these since
        if (
            self._users.find_by_email(email) is not None
            or self._users.find_by_username(payload.username) is not None
        ):
            raise UserAlreadyExistsError()

        try:
            user = self._users.create_verified_user(
                email=email,
                username=payload.username,
                password_hash=payload.password_hash,
                display_name=payload.display_name or payload.username,
                avatar_url=payload.avatar_url or self._default_avatar_url,
                now=now,
            )
        except (EmailAlreadyInUseError, UsernameAlreadyInUseError) as exc:
            raise UserAlreadyExistsError() from exc

        self._drafts.delete_draft(email)
        self._audit.record(AuditAction.REGISTER_VERIFIED, user_id=user.id, ip_address=meta.ip)
        return self._sessions.open(user, remember_me=True, meta=meta)


__all__ = ["RegisterStartUseCase", "RegisterVerifyUseCase", "RegistrationRequest"]
