# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from datetime import datetime, timedelta
from typing import NoReturn

from stepunity.application.interfaces import AuditAction, AuditTrail, RequestMeta
from stepunity.application.services.session_issuer import SessionIssuer
from stepunity.domain.users.entities import FailedLoginOutcome, IssuedSession
from stepunity.domain.users.exceptions import AccountLockedError, InvalidCredentialsError
from stepunity.domain.users.repositories import PasswordHasher, UserRepository
from stepunity.domain.users.values import normalize_email
from stepunity.infrastructure.auth.login_attempts import LoginAttemptsTracker
from stepunity.shared.utils.time import Clock

_LOCKED_MESSAGE = "Account is temporarily locked due to multiple failed attempts"
_JUST_LOCKED_MESSAGE = "Too many failed attempts. Account locked for a short period."


def _locked(unlock_at: datetime, now: datetime, message: str) -> AccountLockedError:
    remaining = unlock_at - now
    return AccountLockedError(unlock_at, int(remaining.total_seconds() * 1000), message=message)


class LoginUserUseCase:
    """Password login with a per-account lockout.

    Unknown emails go through the same hash cost, the same counter shape
    and the same lock responses as real accounts.
    """

    def __init__(
        self,
        *,
        users: UserRepository,
        password_hasher: PasswordHasher,
        sessions: SessionIssuer,
        shadow_attempts: LoginAttemptsTracker,
        audit: AuditTrail,
        clock: Clock,
        max_attempts: int,
        lock_duration: timedelta,
    ) -> None:
        self._users = users
        self._password_hasher = password_hasher
        self._sessions = sessions
        self._shadow_attempts = shadow_attempts
        self._audit = audit
        self._clock = clock
        self._max_attempts = max_attempts
        self._lock_duration = lock_duration

    def execute(
        self, email: str, password: str, *, remember_me: bool, meta: RequestMeta
    ) -> IssuedSession:
        email = normalize_email(email)
        now = self._clock()
        user = self._users.find_by_email(email)

        if user is None:
            self._fail_unknown(email, password, now, meta)

        if user.is_locked(now):
            assert user.lock_until is not None
            self._audit.record(
                AuditAction.LOGIN_LOCKED, user_id=user.id, ip_address=meta.ip, success=False
            )
            raise _locked(user.lock_until, now, _LOCKED_MESSAGE)
        if user.lock_until is not None:
            # Lock ran out since the last attempt; start counting afresh
            self._users.clear_expired_lock(user.id)

        if not self._password_hasher.verify(password, user.password_hash):
            outcome = self._users.record_failed_login(
                user.id, threshold=self._max_attempts, lock_duration=self._lock_duration, now=now
            )
            self._audit.record(
                AuditAction.LOGIN_FAILED,
                user_id=user.id,
                ip_address=meta.ip,
                success=False,
                details={"locked": outcome.locked},
            )
            raise self._failure(outcome, now)

        self._users.record_successful_login(user.id, now=now)
        self._audit.record(AuditAction.LOGIN_SUCCESS, user_id=user.id, ip_address=meta.ip)
        return self._sessions.open(user, remember_me=remember_me, meta=meta)

    def _fail_unknown(
        self, email: str, password: str, now: datetime, meta: RequestMeta
    ) -> NoReturn:
        unlock_at = self._shadow_attempts.locked_until(email, now)
        if unlock_at is not None:
            raise _locked(unlock_at, now, _LOCKED_MESSAGE)
        self._password_hasher.burn(password)
        outcome = self._shadow_attempts.record_failure(email, now)
        self._audit.record(
            AuditAction.LOGIN_FAILED,
            ip_address=meta.ip,
            success=False,
            details={"known_account": False},
        )
        raise self._failure(outcome, now)

    @staticmethod
    def _failure(
        outcome: FailedLoginOutcome, now: datetime
    ) -> AccountLockedError | InvalidCredentialsError:
        if outcome.locked and outcome.unlock_at is not None:
            return _locked(outcome.unlock_at, now, _JUST_LOCKED_MESSAGE)
        return InvalidCredentialsError(attempts_left=outcome.attempts_left)


__all__ = ["LoginUserUseCase"]
