# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stepunity.domain.users.drafts import (
    EmailChangePayload,
    RegistrationPayload,
    dump_payload,
    parse_payload,
)
from stepunity.domain.users.entities import FailedLoginOutcome, PurgedDrafts, VerificationDraft
from stepunity.domain.users.entities import User as DomainUser
from stepunity.domain.users.exceptions import (
    DraftPayloadError,
    EmailAlreadyInUseError,
    UsernameAlreadyInUseError,
)
from stepunity.domain.users.repositories import UserRepository, VerificationDraftRepository
from stepunity.infrastructure.db.models import EmailVerification, User
from stepunity.infrastructure.unit_of_work import SqlAlchemyUnitOfWork, unit_of_work_scope
from stepunity.shared.logging import logger


def _to_domain(row: User) -> DomainUser:
    return DomainUser(
        id=row.id,
        email=row.email,
        username=row.username,
        password_hash=row.password_hash,
        created_at=row.created_at,
        display_name=row.display_name,
        avatar_url=row.avatar_url,
        failed_login_count=row.failed_login_count or 0,
        lock_until=row.lock_until,
        email_verified_at=row.email_verified_at,
    )


class SqlAlchemyUserRepository(UserRepository):
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def find_by_email(self, email: str) -> DomainUser | None:
        with unit_of_work_scope(self._session_factory) as session:
            row = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
            return _to_domain(row) if row else None

    def find_by_username(self, username: str) -> DomainUser | None:
        with unit_of_work_scope(self._session_factory) as session:
            row = session.execute(
                select(User).where(User.username == username)
            ).scalar_one_or_none()
            return _to_domain(row) if row else None

    def find_by_id(self, user_id: int) -> DomainUser | None:
        with unit_of_work_scope(self._session_factory) as session:
            row = session.get(User, user_id)
            return _to_domain(row) if row else None

    def create_verified_user(
        self,
        *,
        email: str,
        username: str,
        password_hash: str,
        display_name: str | None,
        avatar_url: str | None,
        now: datetime,
    ) -> DomainUser:
        try:
            with unit_of_work_scope(self._session_factory) as session:
                row = User(
                    email=email,
                    username=username,
                    password_hash=password_hash,
                    display_name=display_name,
                    avatar_url=avatar_url,
                    failed_login_count=0,
                    email_verified_at=now,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                session.flush()
                user = _to_domain(row)
        except IntegrityError as exc:
            # Lost a uniqueness race since the pre-insert check
            logger.info("users: duplicate key on create, reporting conflict")
            raise self._conflict_for(email) from exc
        logger.info(f"users: created user id={user.id}")
        return user

    def _conflict_for(self, email: str) -> EmailAlreadyInUseError | UsernameAlreadyInUseError:
        if self.find_by_email(email) is not None:
            return EmailAlreadyInUseError()
        return UsernameAlreadyInUseError()

    def record_failed_login(
        self, user_id: int, *, threshold: int, lock_duration: timedelta, now: datetime
    ) -> FailedLoginOutcome:
        with unit_of_work_scope(self._session_factory) as session:
            # Increment in SQL so concurrent failures are all counted
            session.execute(
                update(User)
                .where(User.id == user_id)
                .values(failed_login_count=User.failed_login_count + 1)
            )
            count = session.execute(
                select(User.failed_login_count).where(User.id == user_id)
            ).scalar_one_or_none()
            if count is None:
                return FailedLoginOutcome(locked=False, attempts_left=threshold)
            if count >= threshold:
                unlock_at = now + lock_duration
                session.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(failed_login_count=0, lock_until=unlock_at)
                )
                logger.warning(f"users: account {user_id} locked until {unlock_at.isoformat()}")
                return FailedLoginOutcome(locked=True, attempts_left=0, unlock_at=unlock_at)
            return FailedLoginOutcome(locked=False, attempts_left=threshold - count)

    def clear_expired_lock(self, user_id: int) -> None:
        with unit_of_work_scope(self._session_factory) as session:
            session.execute(
                update(User)
                .where(User.id == user_id, User.lock_until.is_not(None))
                .values(failed_login_count=0, lock_until=None)
            )

    def record_successful_login(self, user_id: int, *, now: datetime) -> None:
        with unit_of_work_scope(self._session_factory) as session:
            session.execute(
                update(User)
                .where(User.id == user_id)
                .values(failed_login_count=0, lock_until=None, updated_at=now)
            )

    def change_password(self, user_id: int, password_hash: str) -> None:
        with unit_of_work_scope(self._session_factory) as session:
            session.execute(
                update(User).where(User.id == user_id).values(password_hash=password_hash)
            )

    def change_email(self, user_id: int, email: str, *, now: datetime) -> DomainUser:
        try:
            with unit_of_work_scope(self._session_factory) as session:
                row = session.get(User, user_id)
                if row is None:
                    msg = f"user {user_id} vanished during email change"
                    raise LookupError(msg)
                row.email = email
                row.email_verified_at = now
                row.updated_at = now
                session.flush()
                user = _to_domain(row)
        except IntegrityError as exc:
            raise EmailAlreadyInUseError() from exc
        return user


class SqlAlchemyVerificationDraftRepository(VerificationDraftRepository):
    """One draft per email; upserting replaces the code and resets attempts."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def upsert_draft(
        self,
        *,
        email: str,
        code_hash: str,
        expires_at: datetime,
        max_attempts: int,
        payload: RegistrationPayload | EmailChangePayload,
        now: datetime,
    ) -> None:
        values = {
            "code_hash": code_hash,
            "expires_at": expires_at,
            "attempts": 0,
            "max_attempts": max_attempts,
            "payload_json": dump_payload(payload),
            "created_at": now,
        }
        try:
            self._write_draft(email, values)
        except IntegrityError:
            # A concurrent insert for the same email won; overwrite it
            self._write_draft(email, values)

    def _write_draft(self, email: str, values: dict) -> None:
        with unit_of_work_scope(self._session_factory) as session:
            row = session.get(EmailVerification, email)
            if row is None:
                session.add(EmailVerification(email=email, **values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)

    def get_draft(self, email: str) -> VerificationDraft | None:
        with unit_of_work_scope(self._session_factory) as session:
            row = session.get(EmailVerification, email)
            if row is None:
                return None
            try:
                payload = parse_payload(row.payload_json)
            except DraftPayloadError:
                logger.warning("drafts: stored payload failed to parse")
                payload = None
            return VerificationDraft(
                email=row.email,
                code_hash=row.code_hash,
                expires_at=row.expires_at,
                attempts=row.attempts,
                max_attempts=row.max_attempts,
                payload=payload,
            )

    def increment_attempt(self, email: str) -> int | None:
        """Count one wrong guess. Returns the new count, or None at the ceiling."""
        with SqlAlchemyUnitOfWork(self._session_factory) as uow:
            result = uow.session.execute(
                update(EmailVerification)
                .where(
                    EmailVerification.email == email,
                    EmailVerification.attempts < EmailVerification.max_attempts,
                )
                .values(attempts=EmailVerification.attempts + 1)
            )
            if result.rowcount != 1:
                return None
            return uow.session.execute(
                select(EmailVerification.attempts).where(EmailVerification.email == email)
            ).scalar_one()

    def delete_draft(self, email: str) -> None:
        with unit_of_work_scope(self._session_factory) as session:
            session.execute(delete(EmailVerification).where(EmailVerification.email == email))

    def purge(self, before: datetime) -> PurgedDrafts:
        """Delete drafts that expired before ``before``.

        Avatar URLs carried by the removed registration drafts are returned
        so the caller can drop the uploaded files as well.
        """
        with unit_of_work_scope(self._session_factory) as session:
            rows = session.execute(
                select(EmailVerification.email, EmailVerification.payload_json).where(
                    EmailVerification.expires_at < before
                )
            ).all()
            if not rows:
                return PurgedDrafts(0)
            avatar_urls = []
            for _, payload_json in rows:
                try:
                    payload = parse_payload(payload_json)
                except DraftPayloadError:
                    continue
                if isinstance(payload, RegistrationPayload) and payload.avatar_url:
                    avatar_urls.append(payload.avatar_url)
            result = session.execute(
                delete(EmailVerification).where(
                    EmailVerification.email.in_([email for email, _ in rows]),
                    EmailVerification.expires_at < before,
                )
            )
            return PurgedDrafts(result.rowcount or 0, tuple(avatar_urls))


__all__ = ["SqlAlchemyUserRepository", "SqlAlchemyVerificationDraftRepository"]
