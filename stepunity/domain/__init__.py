# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from .users.drafts import EmailChangePayload, RegistrationPayload
from .users.entities import (
    IssuedSession,
    RefreshSession,
    ResetTicket,
    User,
    VerificationDraft,
)
from .users.exceptions import DraftPayloadError

__all__ = [
    "EmailChangePayload",
    "RegistrationPayload",
    "IssuedSession",
    "RefreshSession",
    "ResetTicket",
    "User",
    "VerificationDraft",
    "DraftPayloadError",
]
