# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol


class AuditAction(str, Enum):
    # Registration
    REGISTER_STARTED = "register_started"
    REGISTER_VERIFIED = "register_verified"
    VERIFICATION_FAILED = "verification_failed"

    # Authentication
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGIN_LOCKED = "login_locked"
    LOGOUT = "logout"
    LOGOUT_ALL = "logout_all"

    # Sessions
    REFRESH_ROTATED = "refresh_rotated"
    REFRESH_REJECTED = "refresh_rejected"
    REFRESH_REUSED = "refresh_reused"

    # Security
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET = "password_reset"
    EMAIL_CHANGE_STARTED = "email_change_started"
    EMAIL_CHANGED = "email_changed"


@dataclass(slots=True, frozen=True)
class UploadedFile:
    filename: str
    content_type: str
    data: bytes


@dataclass(slots=True, frozen=True)
class RequestMeta:
    ip: str | None = None
    user_agent: str | None = None


class Mailer(Protocol):
    def send_verification_code(self, to: str, code: str, *, purpose: str) -> None: ...

    def send_password_reset(self, to: str, reset_url: str) -> None: ...


class BreachChecker(Protocol):
    def pwned_count(self, password: str) -> int: ...


class CaptchaVerifier(Protocol):
    def verify(self, token: str | None, remote_ip: str | None = None) -> bool: ...


class AvatarStorage(Protocol):
    def save(self, upload: UploadedFile) -> str: ...

    def delete(self, url: str) -> None: ...


class AuditTrail(Protocol):
    def record(
        self,
        action: AuditAction,
        *,
        user_id: int | None = None,
        ip_address: str | None = None,
        success: bool = True,
        details: Mapping[str, Any] | None = None,
    ) -> None: ...


class BackgroundRunner(Protocol):
    def submit(self, fn, /, *args, **kwargs) -> Any: ...
