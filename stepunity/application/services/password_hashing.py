# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Password hashing strategies."""

from __future__ import annotations

from werkzeug.security import check_password_hash, generate_password_hash

from stepunity.domain.users.repositories import PasswordHasher


class WerkzeugPasswordHasher(PasswordHasher):
    """Salted slow hash via werkzeug (``scrypt`` unless configured otherwise)."""

    def __init__(self, method: str = "scrypt") -> None:
        self._method = method
        # Unknown emails are verified against this so both login paths pay the hash cost
        self._dummy_hash = str(generate_password_hash("stepunity-dummy-password", method=method))

    def hash(self, password: str) -> str:
        return str(generate_password_hash(password, method=self._method))

    def verify(self, password: str, hashed: str) -> bool:
        try:
            return bool(check_password_hash(hashed, password))
        except ValueError:
            return False

    def burn(self, password: str) -> None:
        check_password_hash(self._dummy_hash, password)
