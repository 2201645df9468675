# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from .interfaces import (
    AuditAction,
    AuditTrail,
    AvatarStorage,
    BackgroundRunner,
    BreachChecker,
    CaptchaVerifier,
    Mailer,
    RequestMeta,
    UploadedFile,
)

__all__ = [
    "AuditAction",
    "AuditTrail",
    "AvatarStorage",
    "BackgroundRunner",
    "BreachChecker",
    "CaptchaVerifier",
    "Mailer",
    "RequestMeta",
    "UploadedFile",
]
