# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from stepunity.application.interfaces import RequestMeta
from stepunity.application.services.session_issuer import RotatedSession, SessionIssuer


class RefreshSessionUseCase:
    def __init__(self, *, sessions: SessionIssuer) -> None:
        self._sessions = sessions

    def execute(self, refresh_value: str | None, meta: RequestMeta) -> RotatedSession:
        return self._sessions.rotate(refresh_value, meta=meta)


__all__ = ["RefreshSessionUseCase"]
