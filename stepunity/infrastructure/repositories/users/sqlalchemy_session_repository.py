# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from stepunity.domain.users.entities import RefreshSession, ResetTicket
from stepunity.domain.users.repositories import PasswordResetRepository, RefreshTokenRepository
from stepunity.infrastructure.db.models import PasswordReset, RefreshToken, User
from stepunity.infrastructure.unit_of_work import SqlAlchemyUnitOfWork, unit_of_work_scope
from stepunity.shared.logging import logger


def _session_to_domain(row: RefreshToken) -> RefreshSession:
    return RefreshSession(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        created_at=row.created_at,
        revoked_at=row.revoked_at,
        ip=row.ip,
        user_agent=row.user_agent,
    )


def _ticket_to_domain(row: PasswordReset) -> ResetTicket:
    return ResetTicket(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        created_at=row.created_at,
        used_at=row.used_at,
    )


def _revoke_all_stmt(user_id: int, now: datetime):
    return (
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=now)
    )


class SqlAlchemyRefreshTokenRepository(RefreshTokenRepository):
    """Refresh sessions keyed by the SHA-256 of the opaque cookie value."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def create(
        self,
        *,
        user_id: int,
        token_hash: str,
        expires_at: datetime,
        ip: str | None,
        user_agent: str | None,
        now: datetime,
    ) -> RefreshSession:
        with unit_of_work_scope(self._session_factory) as session:
            row = RefreshToken(
                user_id=user_id,
                token_hash=token_hash,
                expires_at=expires_at,
                ip=ip,
                user_agent=user_agent,
                created_at=now,
            )
            session.add(row)
            session.flush()
            return _session_to_domain(row)

    def find_by_hash(self, token_hash: str) -> RefreshSession | None:
        with unit_of_work_scope(self._session_factory) as session:
            row = session.execute(
                select(RefreshToken).where(RefreshToken.token_hash == token_hash)
            ).scalar_one_or_none()
            return _session_to_domain(row) if row else None

    def revoke(self, token_hash: str, *, now: datetime) -> bool:
        with unit_of_work_scope(self._session_factory) as session:
            result = session.execute(
                update(RefreshToken)
                .where(RefreshToken.token_hash == token_hash, RefreshToken.revoked_at.is_(None))
                .values(revoked_at=now)
            )
            return bool(result.rowcount)

    def revoke_all(self, user_id: int, *, now: datetime) -> int:
        with unit_of_work_scope(self._session_factory) as session:
            result = session.execute(_revoke_all_stmt(user_id, now))
            return result.rowcount or 0

    def rotate(
        self,
        old_hash: str,
        *,
        new_hash: str,
        new_expires_at: datetime,
        ip: str | None,
        user_agent: str | None,
        now: datetime,
    ) -> RefreshSession | None:
        """Revoke ``old_hash`` and insert its successor in one transaction.

        The revoke is conditional on the old session still being live, so of
        several concurrent callers presenting the same value exactly one
        gets a new session; the rest get None.
        """
        with SqlAlchemyUnitOfWork(self._session_factory) as uow:
            session = uow.session
            result = session.execute(
                update(RefreshToken)
                .where(
                    RefreshToken.token_hash == old_hash,
                    RefreshToken.revoked_at.is_(None),
                    RefreshToken.expires_at > now,
                )
                .values(revoked_at=now)
            )
            if result.rowcount != 1:
                uow.rollback()
                return None
            user_id = session.execute(
                select(RefreshToken.user_id).where(RefreshToken.token_hash == old_hash)
            ).scalar_one()
            row = RefreshToken(
                user_id=user_id,
                token_hash=new_hash,
                expires_at=new_expires_at,
                ip=ip,
                user_agent=user_agent,
                created_at=now,
            )
            session.add(row)
            session.flush()
            return _session_to_domain(row)

    def purge(self, before: datetime) -> int:
        with unit_of_work_scope(self._session_factory) as session:
            result = session.execute(
                delete(RefreshToken).where(
                    or_(RefreshToken.expires_at < before, RefreshToken.revoked_at < before)
                )
            )
            return result.rowcount or 0


class SqlAlchemyPasswordResetRepository(PasswordResetRepository):
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def create(
        self,
        *,
        user_id: int,
        token_hash: str,
        expires_at: datetime,
        ip: str | None,
        user_agent: str | None,
        now: datetime,
    ) -> ResetTicket:
        with unit_of_work_scope(self._session_factory) as session:
            row = PasswordReset(
                user_id=user_id,
                token_hash=token_hash,
                expires_at=expires_at,
                ip=ip,
                user_agent=user_agent,
                created_at=now,
            )
            session.add(row)
            session.flush()
            return _ticket_to_domain(row)

    def find_by_hash(self, token_hash: str) -> ResetTicket | None:
        with unit_of_work_scope(self._session_factory) as session:
            row = session.execute(
                select(PasswordReset).where(PasswordReset.token_hash == token_hash)
            ).scalar_one_or_none()
            return _ticket_to_domain(row) if row else None

    def consume(self, token_hash: str, *, new_password_hash: str, now: datetime) -> int | None:
        """Use the ticket: mark it used, set the password, revoke every session.

        All three writes commit together or not at all. Returns the owning
        user id, or None when the ticket is unknown, used or expired.
        """
        with SqlAlchemyUnitOfWork(self._session_factory) as uow:
            session = uow.session
            result = session.execute(
                update(PasswordReset)
                .where(
                    PasswordReset.token_hash == token_hash,
                    PasswordReset.used_at.is_(None),
                    PasswordReset.expires_at > now,
                )
                .values(used_at=now)
            )
            if result.rowcount != 1:
                uow.rollback()
                return None
            user_id = session.execute(
                select(PasswordReset.user_id).where(PasswordReset.token_hash == token_hash)
            ).scalar_one()
            session.execute(
                update(User)
                .where(User.id == user_id)
                .values(password_hash=new_password_hash, updated_at=now)
            )
            revoked = session.execute(_revoke_all_stmt(user_id, now)).rowcount or 0
        logger.info(f"password_resets: ticket consumed for user {user_id}, {revoked} sessions revoked")
        return user_id

    def purge(self, before: datetime) -> int:
        with unit_of_work_scope(self._session_factory) as session:
            result = session.execute(
                delete(PasswordReset).where(
                    or_(PasswordReset.expires_at < before, PasswordReset.used_at < before)
                )
            )
            return result.rowcount or 0


__all__ = ["SqlAlchemyPasswordResetRepository", "SqlAlchemyRefreshTokenRepository"]
