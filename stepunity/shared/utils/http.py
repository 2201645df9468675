# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from flask import request

# Matches the width of the ip columns in refresh_tokens and audit_logs
MAX_IP_LENGTH = 64


def client_ip() -> str:
    """Peer address of the request.

    Forwarded headers are only honoured through ``ProxyFix``, which
    rewrites ``remote_addr`` for the configured number of trusted hops.
    """
    return (request.remote_addr or "unknown")[:MAX_IP_LENGTH]


def user_agent() -> str:
    return request.headers.get("User-Agent", "")[:512]


__all__ = ["MAX_IP_LENGTH", "client_ip", "user_agent"]
