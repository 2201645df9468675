# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from collections.abc import Callable
from functools import wraps

from flask import g, request

from stepunity.application.services.token_issuer import JWTTokenIssuer
from stepunity.domain.users.exceptions import UnauthorizedError
from stepunity.shared.logging import logger
from stepunity.shared.utils.http import client_ip


def bearer_token() -> str:
    auth = request.headers.get("Authorization", "")
    if auth[:7].lower() == "bearer ":
        return auth[7:].strip()
    return ""


def current_user_id() -> int:
    return int(g.user_id)


class BearerAuth:
    """Verifies the access JWT on protected routes and stores ``g.user_id``."""

    def __init__(self, tokens: JWTTokenIssuer) -> None:
        self._tokens = tokens

    def required(self, f: Callable):
        @wraps(f)
        def inner(*a, **kw):
            token = bearer_token()
            if not token:
                logger.warning(
                    f"No Authorization header on {request.method} {request.path} "
                    f"from {client_ip()}"
                )
                raise UnauthorizedError()
            g.user_id = self._tokens.verify_access_token(token)
            return f(*a, **kw)

        return inner


__all__ = ["BearerAuth", "bearer_token", "current_user_id"]
