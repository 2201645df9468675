# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from http import HTTPStatus
from typing import Any

from stepunity.shared.errors.base import DomainError
from stepunity.shared.utils.time import isoformat_z


class EmailAlreadyInUseError(DomainError):
    code = "email_in_use"
    status = HTTPStatus.CONFLICT
    message = "Email already in use"


class UsernameAlreadyInUseError(DomainError):
    code = "username_in_use"
    status = HTTPStatus.CONFLICT
    message = "Username already in use"


class UserAlreadyExistsError(DomainError):
    code = "user_already_exists"
    status = HTTPStatus.CONFLICT
    message = "User already exists"


class InvalidUsernameError(DomainError):
    code = "invalid_username"
    message = "Username must be at least 3 characters (letters, digits, underscore)"


class InvalidCredentialsError(DomainError):
    code = "invalid_credentials"
    status = HTTPStatus.UNAUTHORIZED
    message = "Invalid email or password"

    def __init__(self, attempts_left: int | None = None) -> None:
        context = {"attemptsLeft": attempts_left} if attempts_left is not None else None
        super().__init__(context=context)


class AccountLockedError(DomainError):
    code = "account_locked"
    status = HTTPStatus.TOO_MANY_REQUESTS
    message = "Too many attempts. Try again later."

    def __init__(
        self, unlock_at: datetime, remaining_ms: int, *, message: str | None = None
    ) -> None:
        super().__init__(
            message=message,
            context={
                "unlockAt": isoformat_z(unlock_at),
                "lockRemainingMs": max(0, int(remaining_ms)),
                "attemptsLeft": 0,
            },
        )


class VerificationInvalidError(DomainError):
    """No usable draft: missing or past its expiry. One public shape for both."""

    code = "verification_invalid"
    message = "Invalid or expired code"


class VerificationAttemptsExceededError(DomainError):
    code = "verification_attempts_exceeded"
    status = HTTPStatus.TOO_MANY_REQUESTS
    message = "Too many attempts"

    def __init__(self) -> None:
        super().__init__(context={"attemptsLeft": 0})


class IncorrectCodeError(DomainError):
    code = "incorrect_code"
    message = "Incorrect code"

    def __init__(self, attempts_left: int) -> None:
        super().__init__(context={"attemptsLeft": max(0, attempts_left)})


class DraftPayloadError(DomainError):
    code = "draft_invalid"
    message = "Draft is missing data"


class UnauthorizedError(DomainError):
    code = "unauthorized"
    status = HTTPStatus.UNAUTHORIZED
    message = "Unauthorized"


class InvalidRefreshTokenError(DomainError):
    code = "invalid_refresh"
    status = HTTPStatus.UNAUTHORIZED
    message = "Invalid refresh token"


class InvalidResetTokenError(DomainError):
    code = "invalid_reset_token"
    message = "Invalid or expired token."


class PasswordReuseError(DomainError):
    code = "password_reuse"
    message = "Your new password must be different from the current password."


class BreachedPasswordError(DomainError):
    code = "password_breached"
    message = "This password has appeared in a data breach. Please choose a different one."

    def __init__(self, pwned_count: int) -> None:
        super().__init__(context={"pwnedCount": pwned_count})


class CaptchaFailedError(DomainError):
    code = "captcha_failed"
    message = "captcha_failed"


class DeliveryFailedError(DomainError):
    code = "delivery_failed"
    status = HTTPStatus.INTERNAL_SERVER_ERROR
    message = "Failed to send email. Please try again later."


class ServiceUnavailableError(DomainError):
    code = "service_unavailable"
    status = HTTPStatus.SERVICE_UNAVAILABLE
    message = "Service temporarily unavailable. Please try again later."

    def __init__(self, service: str, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(context={"service": service, **(context or {})})


class UserNotFoundError(DomainError):
    code = "user_not_found"
    status = HTTPStatus.NOT_FOUND
    message = "User not found"


class ForbiddenError(DomainError):
    code = "forbidden"
    status = HTTPStatus.FORBIDDEN
    message = "Forbidden"


class InvalidPasswordError(DomainError):
    code = "invalid_password"
    status = HTTPStatus.UNAUTHORIZED
    message = "Invalid password"


class InvalidProofError(DomainError):
    code = "invalid_proof"
    status = HTTPStatus.UNAUTHORIZED
    message = "Invalid or expired confirmation. Please re-enter your password."


class InvalidAvatarError(DomainError):
    code = "invalid_avatar"
    message = "Avatar must be a PNG, JPEG, GIF or WEBP image within the size limit"


__all__ = [
    "AccountLockedError",
    "BreachedPasswordError",
    "CaptchaFailedError",
    "DeliveryFailedError",
    "DraftPayloadError",
    "EmailAlreadyInUseError",
    "ForbiddenError",
    "IncorrectCodeError",
    "InvalidAvatarError",
    "InvalidCredentialsError",
    "InvalidPasswordError",
    "InvalidProofError",
    "InvalidRefreshTokenError",
    "InvalidResetTokenError",
    "InvalidUsernameError",
    "PasswordReuseError",
    "ServiceUnavailableError",
    "UnauthorizedError",
    "UserAlreadyExistsError",
    "UserNotFoundError",
    "UsernameAlreadyInUseError",
    "VerificationAttemptsExceededError",
    "VerificationInvalidError",
]
