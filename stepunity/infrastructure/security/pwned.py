# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Breached-password lookup against the Pwned Passwords range API.

Only the first five hex characters of the SHA-1 digest leave the process
(k-anonymity); the response is padded so its size says nothing either.
"""

from __future__ import annotations

import hashlib

import httpx

from stepunity.application.interfaces import BreachChecker
from stepunity.domain.users.exceptions import ServiceUnavailableError
from stepunity.infrastructure.resilience import CircuitBreaker, CircuitOpenError, resilient_call
from stepunity.shared.config.settings import IntegrationsConfig, ResilienceConfig
from stepunity.shared.logging import logger


class PwnedPasswordsClient(BreachChecker):
    def __init__(
        self,
        config: IntegrationsConfig,
        resilience: ResilienceConfig,
        *,
        breaker: CircuitBreaker | None = None,
        http: httpx.Client | None = None,
    ) -> None:
        self._config = config
        self._resilience = resilience
        self._breaker = breaker
        self._http = http or httpx.Client(
            base_url=config.pwned_base_url, timeout=config.pwned_timeout
        )

    def _fetch_range(self, prefix: str) -> str:
        response = self._http.get(f"/range/{prefix}", headers={"Add-Padding": "true"})
        response.raise_for_status()
        return response.text

    def pwned_count(self, password: str) -> int:
        if not self._config.pwned_enabled:
            return 0

        digest = hashlib.sha1(password.encode("utf-8"), usedforsecurity=False).hexdigest().upper()
        prefix, suffix = digest[:5], digest[5:]

        try:
            body = resilient_call(
                self._fetch_range,
                prefix,
                config=self._resilience,
                breaker=self._breaker,
                retry_on=(httpx.HTTPError,),
            )
        except (httpx.HTTPError, CircuitOpenError) as exc:
            logger.error(f"pwned: range lookup failed ({type(exc).__name__})")
            raise ServiceUnavailableError("pwned_passwords") from exc

        for line in body.splitlines():
            candidate, _, count = line.strip().partition(":")
            if candidate == suffix:
                try:
                    return int(count)
                except ValueError:
                    return 0
        return 0


__all__ = ["PwnedPasswordsClient"]
