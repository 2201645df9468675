# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

import re

MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 32

_WHITESPACE = re.compile(r"\s+")
_HANDLE_DISALLOWED = re.compile(r"[^a-z0-9_]")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def username_handle(raw: str) -> str:
    """Reduce a submitted username to its immutable handle: ``[a-z0-9_]``."""
    handle = _WHITESPACE.sub("", raw.strip().lower())
    return _HANDLE_DISALLOWED.sub("", handle)


def is_valid_handle(handle: str) -> bool:
    return MIN_USERNAME_LENGTH <= len(handle) <= MAX_USERNAME_LENGTH


__all__ = [
    "MAX_USERNAME_LENGTH",
    "MIN_USERNAME_LENGTH",
    "is_valid_handle",
    "normalize_email",
    "username_handle",
]
