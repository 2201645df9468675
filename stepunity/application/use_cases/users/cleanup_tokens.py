# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from datetime import timedelta

from stepunity.application.interfaces import AvatarStorage
from stepunity.domain.users.entities import PurgeReport
from stepunity.domain.users.repositories import (
    PasswordResetRepository,
    RefreshTokenRepository,
    VerificationDraftRepository,
)
from stepunity.shared.logging import logger
from stepunity.shared.utils.time import Clock


class PurgeExpiredTokensUseCase:
    """Delete sessions, drafts and reset tickets that ended before the retention window."""

    def __init__(
        self,
        *,
        refresh_tokens: RefreshTokenRepository,
        drafts: VerificationDraftRepository,
        resets: PasswordResetRepository,
        avatars: AvatarStorage,
        clock: Clock,
    ) -> None:
        self._refresh_tokens = refresh_tokens
        self._drafts = drafts
        self._resets = resets
        self._avatars = avatars
        self._clock = clock

    def execute(self, retention: timedelta) -> PurgeReport:
        if retention < timedelta(0):
            msg = "retention must not be negative"
            raise ValueError(msg)
        threshold = self._clock() - retention
        drafts = self._drafts.purge(threshold)
        # Avatars of drafts that were never verified are not referenced anywhere else
        for url in drafts.avatar_urls:
            self._avatars.delete(url)
        report = PurgeReport(
            refresh_tokens=self._refresh_tokens.purge(threshold),
            email_verifications=drafts.count,
            password_resets=self._resets.purge(threshold),
        )
        logger.info(
            f"cleanup: removed {report.refresh_tokens} refresh tokens, "
            f"{report.email_verifications} verifications, "
            f"{len(drafts.avatar_urls)} draft avatars, "
            f"{report.password_resets} password resets"
        )
        return report


__all__ = ["PurgeExpiredTokensUseCase"]
