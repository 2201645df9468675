# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""One-time email code checks shared by registration and email change."""

from __future__ import annotations

from datetime import datetime

from stepunity.application.services.token_issuer import JWTTokenIssuer
from stepunity.domain.users.entities import DraftCheck, VerificationDraft
from stepunity.domain.users.exceptions import (
    IncorrectCodeError,
    VerificationAttemptsExceededError,
    VerificationInvalidError,
)
from stepunity.domain.users.repositories import VerificationDraftRepository


def draft_usability(draft: VerificationDraft | None, now: datetime) -> DraftCheck:
    if draft is None:
        return DraftCheck.NOT_FOUND
    if draft.expires_at < now:
        return DraftCheck.EXPIRED
    if draft.attempts >= draft.max_attempts:
        return DraftCheck.ATTEMPTS_EXCEEDED
    return DraftCheck.OK


class CodeVerifier:
    def __init__(self, drafts: VerificationDraftRepository) -> None:
        self._drafts = drafts

    def load_usable(self, email: str, now: datetime) -> VerificationDraft:
        draft = self._drafts.get_draft(email)
        usability = draft_usability(draft, now)
        if usability in (DraftCheck.NOT_FOUND, DraftCheck.EXPIRED):
            raise VerificationInvalidError()
        if usability is DraftCheck.ATTEMPTS_EXCEEDED:
            raise VerificationAttemptsExceededError()
        assert draft is not None
        return draft

    def confirm_code(self, draft: VerificationDraft, code: str) -> None:
        """Raise IncorrectCodeError (after counting the attempt) on a mismatch."""
        if JWTTokenIssuer.hashes_match(draft.code_hash, code):
            return
        attempts = self._drafts.increment_attempt(draft.email)
        if attempts is None:
            raise VerificationAttemptsExceededError()
        raise IncorrectCodeError(attempts_left=draft.max_attempts - attempts)


__all__ = ["CodeVerifier", "draft_usability"]
