# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Mint and rotate access/refresh session pairs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from stepunity.application.interfaces import AuditAction, AuditTrail, RequestMeta
from stepunity.application.services.token_issuer import JWTTokenIssuer
from stepunity.domain.users.entities import IssuedSession, User
from stepunity.domain.users.exceptions import InvalidRefreshTokenError
from stepunity.domain.users.repositories import RefreshTokenRepository
from stepunity.shared.utils.time import Clock


@dataclass(slots=True, frozen=True)
class RotatedSession:
    user_id: int
    access_token: str
    refresh_value: str
    refresh_max_age: timedelta


class SessionIssuer:
    def __init__(
        self,
        *,
        refresh_tokens: RefreshTokenRepository,
        tokens: JWTTokenIssuer,
        audit: AuditTrail,
        clock: Clock,
        long_lifetime: timedelta,
        short_lifetime: timedelta,
    ) -> None:
        self._refresh_tokens = refresh_tokens
        self._tokens = tokens
        self._audit = audit
        self._clock = clock
        self._long_lifetime = long_lifetime
        self._short_lifetime = short_lifetime

    def open(self, user: User, *, remember_me: bool, meta: RequestMeta) -> IssuedSession:
        now = self._clock()
        lifetime = self._long_lifetime if remember_me else self._short_lifetime
        refresh_value = self._tokens.new_refresh_value()
        session = self._refresh_tokens.create(
            user_id=user.id,
            token_hash=self._tokens.hash_value(refresh_value),
            expires_at=now + lifetime,
            ip=meta.ip,
            user_agent=meta.user_agent,
            now=now,
        )
        return IssuedSession(
            user=user,
            access_token=self._tokens.issue_access_token(user.id),
            refresh_value=refresh_value,
            refresh_expires_at=session.expires_at,
        )

    def rotate(self, refresh_value: str | None, *, meta: RequestMeta) -> RotatedSession:
        """Exchange a live refresh value for a new pair.

        Missing, expired and revoked values all fail with the same error.
        Presenting an already revoked value is recorded as reuse.
        """
        if not refresh_value:
            raise InvalidRefreshTokenError()

        now = self._clock()
        old_hash = self._tokens.hash_value(refresh_value)
        current = self._refresh_tokens.find_by_hash(old_hash)
        if current is None or current.expires_at <= now:
            self._audit.record(AuditAction.REFRESH_REJECTED, ip_address=meta.ip, success=False)
            raise InvalidRefreshTokenError()
        if current.revoked_at is not None:
            self._report_reuse(current.user_id, meta)
            raise InvalidRefreshTokenError()

        # Keep the lifetime class (remember-me or short) of the session being replaced
        lifetime = current.lifetime
        next_value = self._tokens.new_refresh_value()
        rotated = self._refresh_tokens.rotate(
            old_hash,
            new_hash=self._tokens.hash_value(next_value),
            new_expires_at=now + lifetime,
            ip=meta.ip,
            user_agent=meta.user_agent,
            now=now,
        )
        if rotated is None:
            # Another request consumed this value first
            self._report_reuse(current.user_id, meta)
            raise InvalidRefreshTokenError()

        self._audit.record(AuditAction.REFRESH_ROTATED, user_id=rotated.user_id, ip_address=meta.ip)
        return RotatedSession(
            user_id=rotated.user_id,
            access_token=self._tokens.issue_access_token(rotated.user_id),
            refresh_value=next_value,
            refresh_max_age=lifetime,
        )

    def _report_reuse(self, user_id: int, meta: RequestMeta) -> None:
        self._audit.record(
            AuditAction.REFRESH_REUSED,
            user_id=user_id,
            ip_address=meta.ip,
            success=False,
            details={"user_agent": meta.user_agent},
        )


__all__ = ["RotatedSession", "SessionIssuer"]
