# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Forgot / reset password and the signed-in "change password" link."""

from __future__ import annotations

from datetime import timedelta
from urllib.parse import quote

from stepunity.application.interfaces import (
    AuditAction,
    AuditTrail,
    BackgroundRunner,
    BreachChecker,
    CaptchaVerifier,
    Mailer,
    RequestMeta,
)
from stepunity.application.services.token_issuer import JWTTokenIssuer
from stepunity.domain.users.entities import User
from stepunity.domain.users.exceptions import (
    BreachedPasswordError,
    CaptchaFailedError,
    InvalidResetTokenError,
    PasswordReuseError,
    UserNotFoundError,
)
from stepunity.domain.users.repositories import (
    PasswordHasher,
    PasswordResetRepository,
    UserRepository,
)
from stepunity.domain.users.values import normalize_email
from stepunity.shared.logging import logger
from stepunity.shared.utils.time import Clock


class _ResetLinkSender:
    """Create a reset ticket and mail its link."""

    def __init__(
        self,
        *,
        resets: PasswordResetRepository,
        tokens: JWTTokenIssuer,
        mailer: Mailer,
        audit: AuditTrail,
        clock: Clock,
        ttl: timedelta,
        frontend_origin: str,
    ) -> None:
        self._resets = resets
        self._tokens = tokens
        self._mailer = mailer
        self._audit = audit
        self._clock = clock
        self._ttl = ttl
        self._frontend_origin = frontend_origin.rstrip("/")

    def send(self, user: User, meta: RequestMeta) -> None:
        token = self._tokens.new_reset_token()
        now = self._clock()
        self._resets.create(
            user_id=user.id,
            token_hash=self._tokens.hash_value(token),
            expires_at=now + self._ttl,
            ip=meta.ip,
            user_agent=meta.user_agent,
            now=now,
        )
        self._audit.record(
            AuditAction.PASSWORD_RESET_REQUESTED, user_id=user.id, ip_address=meta.ip
        )
        self._mailer.send_password_reset(user.email, self.reset_url(token))

    def reset_url(self, token: str) -> str:
        return f"{self._frontend_origin}/reset?token={quote(token, safe='')}"


class RequestPasswordResetUseCase:
    """Handle ``/forgot``.

    The caller always gets the same answer. Looking the account up, creating
    the ticket and sending the email all happen on the background runner so
    known and unknown addresses take the same time to respond.
    """

    def __init__(
        self,
        *,
        users: UserRepository,
        resets: PasswordResetRepository,
        tokens: JWTTokenIssuer,
        mailer: Mailer,
        captcha: CaptchaVerifier,
        audit: AuditTrail,
        runner: BackgroundRunner,
        clock: Clock,
        ttl: timedelta,
        frontend_origin: str,
    ) -> None:
        self._users = users
        self._captcha = captcha
        self._runner = runner
        self._sender = _ResetLinkSender(
            resets=resets,
            tokens=tokens,
            mailer=mailer,
            audit=audit,
            clock=clock,
            ttl=ttl,
            frontend_origin=frontend_origin,
        )

    def execute(self, email: str, meta: RequestMeta, captcha_token: str | None = None) -> None:
        if not self._captcha.verify(captcha_token, meta.ip):
            raise CaptchaFailedError()
        self._runner.submit(self._dispatch, normalize_email(email), meta)

    def _dispatch(self, email: str, meta: RequestMeta) -> None:
        try:
            user = self._users.find_by_email(email)
            if user is None:
                logger.debug("forgot: no account for address")
                return
            self._sender.send(user, meta)
        except Exception as exc:
            # Nothing is waiting on this task; the failure is only logged
            logger.error(f"forgot: reset dispatch failed: {type(exc).__name__}")


class RequestPasswordChangeUseCase:
    """Mail a reset link to the signed-in user's own address."""

    def __init__(
        self,
        *,
        users: UserRepository,
        resets: PasswordResetRepository,
        tokens: JWTTokenIssuer,
        mailer: Mailer,
        audit: AuditTrail,
        clock: Clock,
        ttl: timedelta,
        frontend_origin: str,
    ) -> None:
        self._users = users
        self._sender = _ResetLinkSender(
            resets=resets,
            tokens=tokens,
            mailer=mailer,
            audit=audit,
            clock=clock,
            ttl=ttl,
            frontend_origin=frontend_origin,
        )

    def execute(self, user_id: int, meta: RequestMeta) -> None:
        user = self._users.find_by_id(user_id)
        if user is None:
            raise UserNotFoundError()
        self._sender.send(user, meta)


class ResetPasswordUseCase:
    def __init__(
        self,
        *,
        users: UserRepository,
        resets: PasswordResetRepository,
        tokens: JWTTokenIssuer,
        password_hasher: PasswordHasher,
        breach_checker: BreachChecker,
        audit: AuditTrail,
        clock: Clock,
    ) -> None:
        self._users = users
        self._resets = resets
        self._tokens = tokens
        self._password_hasher = password_hasher
        self._breach_checker = breach_checker
        self._audit = audit
        self._clock = clock

    def execute(self, token: str, new_password: str, meta: RequestMeta) -> None:
        """Set a new password from a reset ticket.

        Unknown, used and expired tickets are indistinguishable to the caller.
        On success every refresh session of the account is revoked.
        """
        now = self._clock()
        token_hash = self._tokens.hash_value(token)
        ticket = self._resets.find_by_hash(token_hash)
        if ticket is None or not ticket.is_usable(now):
            raise InvalidResetTokenError()

        user = self._users.find_by_id(ticket.user_id)
        if user is None:
            raise InvalidResetTokenError()

        if self._password_hasher.verify(new_password, user.password_hash):
            raise PasswordReuseError()

        leaks = self._breach_checker.pwned_count(new_password)
        if leaks > 0:
            raise BreachedPasswordError(pwned_count=leaks)

        user_id = self._resets.consume(
            token_hash,
            new_password_hash=self._password_hasher.hash(new_password),
            now=now,
        )
        if user_id is None:
            # Used or expired between the lookup and the update
            raise InvalidResetTokenError()

        self._audit.record(AuditAction.PASSWORD_RESET, user_id=user_id, ip_address=meta.ip)
        logger.info(f"password reset completed for user_id={user_id}")


__all__ = [
    "RequestPasswordChangeUseCase",
    "RequestPasswordResetUseCase",
    "ResetPasswordUseCase",
]
