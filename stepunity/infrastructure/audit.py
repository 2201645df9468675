# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stepunity.application.interfaces import AuditAction, AuditTrail
from stepunity.infrastructure.db.models import AuditLog
from stepunity.infrastructure.observability import (
    LOGIN_COUNTER,
    REFRESH_COUNTER,
    VERIFICATION_COUNTER,
)
from stepunity.shared.logging import logger
from stepunity.shared.utils.time import Clock, utc_now

_METRICS = {
    AuditAction.LOGIN_SUCCESS: (LOGIN_COUNTER, "success"),
    AuditAction.LOGIN_FAILED: (LOGIN_COUNTER, "failed"),
    AuditAction.LOGIN_LOCKED: (LOGIN_COUNTER, "locked"),
    AuditAction.REFRESH_ROTATED: (REFRESH_COUNTER, "rotated"),
    AuditAction.REFRESH_REJECTED: (REFRESH_COUNTER, "rejected"),
    AuditAction.REFRESH_REUSED: (REFRESH_COUNTER, "reused"),
    AuditAction.REGISTER_VERIFIED: (VERIFICATION_COUNTER, "success"),
    AuditAction.EMAIL_CHANGED: (VERIFICATION_COUNTER, "success"),
    AuditAction.VERIFICATION_FAILED: (VERIFICATION_COUNTER, "failed"),
}

_SENSITIVE_KEYS = {"password", "token", "refresh", "code", "hash", "secret", "key", "proof"}


def _sanitize_details(details: Mapping[str, Any]) -> dict[str, Any]:
    sanitized = {}
    for key, value in details.items():
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS):
            sanitized[key] = "***REDACTED***"
        else:
            sanitized[key] = value
    return sanitized


class SqlAlchemyAuditTrail(AuditTrail):
    """Writes security events to the log and to ``audit_logs``.

    Storage failures are logged and do not fail the request that produced
    the event.
    """

    def __init__(self, session_factory: Callable[[], Session], *, clock: Clock = utc_now) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def record(
        self,
        action: AuditAction,
        *,
        user_id: int | None = None,
        ip_address: str | None = None,
        success: bool = True,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        action_value = AuditAction(action).value
        metric = _METRICS.get(action)
        if metric is not None:
            counter, result = metric
            counter.labels(result=result).inc()
        safe_details = _sanitize_details(details) if details else {}

        log_message = (
            f"AUDIT: {action_value} | user_id={user_id} | ip={ip_address} | success={success}"
        )
        if safe_details:
            log_message += f" | details={safe_details}"
        if success:
            logger.info(log_message)
        else:
            logger.warning(log_message)

        self._store(self._clock(), action_value, user_id, ip_address, success, safe_details)

    def _store(
        self,
        timestamp: datetime,
        action: str,
        user_id: int | None,
        ip_address: str | None,
        success: bool,
        details: dict[str, Any],
    ) -> None:
        session = self._session_factory()
        try:
            session.add(
                AuditLog(
                    timestamp=timestamp,
                    action=action,
                    user_id=user_id,
                    ip_address=ip_address,
                    success=success,
                    details_json=json.dumps(details, default=str)[:2048] if details else None,
                )
            )
            session.commit()
        except SQLAlchemyError as db_error:
            session.rollback()
            logger.warning(f"Failed to store audit log in database: {type(db_error).__name__}")
        finally:
            session.close()


__all__ = ["AuditAction", "SqlAlchemyAuditTrail"]
