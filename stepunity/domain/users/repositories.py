# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol

from .drafts import EmailChangePayload, RegistrationPayload
from .entities import (
    FailedLoginOutcome,
    PurgedDrafts,
    RefreshSession,
    ResetTicket,
    User,
    VerificationDraft,
)


class UserRepository(Protocol):
    """Credential store."""

    def find_by_email(self, email: str) -> User | None: ...
    def find_by_username(self, username: str) -> User | None: ...
    def find_by_id(self, user_id: int) -> User | None: ...
    def create_verified_user(
        self,
        *,
        email: str,
        username: str,
        password_hash: str,
        display_name: str | None,
        avatar_url: str | None,
        now: datetime,
    ) -> User: ...
    def record_failed_login(
        self, user_id: int, *, threshold: int, lock_duration: timedelta, now: datetime
    ) -> FailedLoginOutcome: ...
    def clear_expired_lock(self, user_id: int) -> None: ...
    def record_successful_login(self, user_id: int, *, now: datetime) -> None: ...
    def change_password(self, user_id: int, password_hash: str) -> None: ...
    def change_email(self, user_id: int, email: str, *, now: datetime) -> User: ...


class VerificationDraftRepository(Protocol):
    def upsert_draft(
        self,
        *,
        email: str,
        code_hash: str,
        expires_at: datetime,
        max_attempts: int,
        payload: RegistrationPayload | EmailChangePayload,
        now: datetime,
    ) -> None: ...
    def get_draft(self, email: str) -> VerificationDraft | None: ...
    def increment_attempt(self, email: str) -> int | None: ...
    def delete_draft(self, email: str) -> None: ...
    def purge(self, before: datetime) -> PurgedDrafts: ...


class RefreshTokenRepository(Protocol):
    def create(
        self,
        *,
        user_id: int,
        token_hash: str,
        expires_at: datetime,
        ip: str | None,
        user_agent: str | None,
        now: datetime,
    ) -> RefreshSession: ...
    def find_by_hash(self, token_hash: str) -> RefreshSession | None: ...
    def revoke(self, token_hash: str, *, now: datetime) -> bool: ...
    def revoke_all(self, user_id: int, *, now: datetime) -> int: ...
    def rotate(
        self,
        old_hash: str,
        *,
        new_hash: str,
        new_expires_at: datetime,
        ip: str | None,
        user_agent: str | None,
        now: datetime,
    ) -> RefreshSession | None: ...
    def purge(self, before: datetime) -> int: ...


class PasswordResetRepository(Protocol):
    def create(
        self,
        *,
        user_id: int,
        token_hash: str,
        expires_at: datetime,
        ip: str | None,
        user_agent: str | None,
        now: datetime,
    ) -> ResetTicket: ...
    def find_by_hash(self, token_hash: str) -> ResetTicket | None: ...
    def consume(self, token_hash: str, *, new_password_hash: str, now: datetime) -> int | None: ...
    def purge(self, before: datetime) -> int: ...


class PasswordHasher(Protocol):
    def hash(self, password: str) -> str: ...
    def verify(self, password: str, hashed: str) -> bool: ...
    def burn(self, password: str) -> None: ...