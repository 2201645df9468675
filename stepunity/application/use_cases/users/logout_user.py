# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Use-cases for revoking refresh sessions."""

from __future__ import annotations

from stepunity.application.interfaces import AuditAction, AuditTrail, RequestMeta
from stepunity.application.services.token_issuer import JWTTokenIssuer
from stepunity.domain.users.repositories import RefreshTokenRepository
from stepunity.shared.utils.time import Clock


class LogoutUserUseCase:
    """Revoke the presented refresh value. Unknown or missing values are a no-op."""

    def __init__(
        self,
        *,
        refresh_tokens: RefreshTokenRepository,
        tokens: JWTTokenIssuer,
        audit: AuditTrail,
        clock: Clock,
    ) -> None:
        self._refresh_tokens = refresh_tokens
        self._tokens = tokens
        self._audit = audit
        self._clock = clock

    def execute(self, refresh_value: str | None, meta: RequestMeta) -> None:
        if not refresh_value:
            return
        token_hash = self._tokens.hash_value(refresh_value)
        session = self._refresh_tokens.find_by_hash(token_hash)
        if self._refresh_tokens.revoke(token_hash, now=self._clock()):
            self._audit.record(
                AuditAction.LOGOUT,
                user_id=session.user_id if session else None,
                ip_address=meta.ip,
            )


class LogoutAllUseCase:
    def __init__(
        self,
        *,
        refresh_tokens: RefreshTokenRepository,
        audit: AuditTrail,
        clock: Clock,
    ) -> None:
        self._refresh_tokens = refresh_tokens
        self._audit = audit
        self._clock = clock

    def execute(self, user_id: int, meta: RequestMeta) -> int:
        revoked = self._refresh_tokens.revoke_all(user_id, now=self._clock())
        self._audit.record(
            AuditAction.LOGOUT_ALL,
            user_id=user_id,
            ip_address=meta.ip,
            details={"revoked": revoked},
        )
        return revoked


__all__ = ["LogoutAllUseCase", "LogoutUserUseCase"]
