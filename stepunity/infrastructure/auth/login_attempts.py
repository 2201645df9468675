# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""In-process failed-login tracking for emails that have no account.

Known accounts keep their counter in the database. Unknown emails get the
same counter and lock behaviour here, so a caller cannot tell the two apart
from the ``attemptsLeft`` / lock fields of the response.
"""

from __future__ import annotations

import hashlib
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock

from stepunity.domain.users.entities import FailedLoginOutcome
from stepunity.shared.logging import logger


@dataclass
class _ShadowState:
    failures: int = 0
    lock_until: datetime | None = None


class LoginAttemptsTracker:
    def __init__(
        self,
        *,
        threshold: int = 4,
        lock_duration: timedelta = timedelta(minutes=5),
        max_entries: int = 10_000,
    ) -> None:
        self._threshold = max(1, threshold)
        self._lock_duration = lock_duration
        self._max_entries = max_entries
        self._states: OrderedDict[str, _ShadowState] = OrderedDict()
        self._lock = Lock()

    @staticmethod
    def _key(email: str) -> str:
        return hashlib.sha256(email.encode("utf-8")).hexdigest()

    def locked_until(self, email: str, now: datetime) -> datetime | None:
        with self._lock:
            state = self._states.get(self._key(email))
            if state is None or state.lock_until is None:
                return None
            if state.lock_until <= now:
                state.lock_until = None
                state.failures = 0
                return None
            return state.lock_until

    def record_failure(self, email: str, now: datetime) -> FailedLoginOutcome:
        key = self._key(email)
        with self._lock:
            state = self._states.pop(key, None) or _ShadowState()
            self._states[key] = state
            while len(self._states) > self._max_entries:
                self._states.popitem(last=False)

            state.failures += 1
            if state.failures >= self._threshold:
                state.failures = 0
                state.lock_until = now + self._lock_duration
                logger.warning("login_attempts: shadow lock engaged for unknown email")
                return FailedLoginOutcome(locked=True, attempts_left=0, unlock_at=state.lock_until)
            return FailedLoginOutcome(locked=False, attempts_left=self._threshold - state.failures)

    def clear(self) -> None:
        with self._lock:
            self._states.clear()


__all__ = ["LoginAttemptsTracker"]
