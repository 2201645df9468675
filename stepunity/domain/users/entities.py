# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum

from .drafts import DraftPayload


@dataclass(slots=True, frozen=True)
class User:
    """Credential record. ``password_hash`` stays inside the service."""

    id: int
    email: str
    username: str
    password_hash: str
    created_at: datetime
    display_name: str | None = None
    avatar_url: str | None = None
    failed_login_count: int = 0
    lock_until: datetime | None = None
    email_verified_at: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.lock_until is not None and self.lock_until > now

    def lock_remaining(self, now: datetime) -> timedelta:
        if self.lock_until is None:
            return timedelta(0)
        return max(timedelta(0), self.lock_until - now)


@dataclass(slots=True, frozen=True)
class FailedLoginOutcome:
    locked: bool
    attempts_left: int
    unlock_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class VerificationDraft:
    email: str
    code_hash: str
    expires_at: datetime
    attempts: int
    max_attempts: int
    payload: DraftPayload | None

    @property
    def attempts_left(self) -> int:
        return max(0, self.max_attempts - self.attempts)


class DraftCheck(StrEnum):
    OK = "ok"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ATTEMPTS_EXCEEDED = "attempts_exceeded"


@dataclass(slots=True, frozen=True)
class PurgedDrafts:
    """Expired drafts removed in one sweep and the avatars they had uploaded."""

    count: int
    avatar_urls: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class RefreshSession:
    id: int
    user_id: int
    token_hash: str
    expires_at: datetime
    created_at: datetime
    revoked_at: datetime | None = None
    ip: str | None = None
    user_agent: str | None = None

    def is_active(self, now: datetime) -> bool:
        return self.revoked_at is None and self.expires_at > now

    @property
    def lifetime(self) -> timedelta:
        return self.expires_at - self.created_at


@dataclass(slots=True, frozen=True)
class IssuedSession:
    """A freshly minted session. ``refresh_value`` is the raw cookie value."""

    user: User
    access_token: str
    refresh_value: str
    refresh_expires_at: datetime


@dataclass(slots=True, frozen=True)
class ResetTicket:
    id: int
    user_id: int
    token_hash: str
    expires_at: datetime
    created_at: datetime
    used_at: datetime | None = None

    def is_usable(self, now: datetime) -> bool:
        return self.used_at is None and self.expires_at > now


@dataclass(slots=True, frozen=True)
class PurgeReport:
    refresh_tokens: int
    email_verifications: int
    password_resets: int
