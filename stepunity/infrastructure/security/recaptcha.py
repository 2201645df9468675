# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

import httpx

from stepunity.application.interfaces import CaptchaVerifier
from stepunity.shared.config.settings import IntegrationsConfig
from stepunity.shared.logging import logger


class RecaptchaVerifier(CaptchaVerifier):
    def __init__(self, config: IntegrationsConfig, *, http: httpx.Client | None = None) -> None:
        self._config = config
        self._http = http or httpx.Client(timeout=config.recaptcha_timeout)

    def verify(self, token: str | None, remote_ip: str | None = None) -> bool:
        if not self._config.recaptcha_enabled:
            return True
        if self._config.recaptcha_secret is None:
            logger.warning("recaptcha: RECAPTCHA_SECRET missing, skipping check")
            return True
        if not token:
            return False

        form = {"secret": self._config.recaptcha_secret.get_secret_value(), "response": token}
        if remote_ip:
            form["remoteip"] = remote_ip

        try:
            response = self._http.post(self._config.recaptcha_verify_url, data=form)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"recaptcha: verification request failed ({type(exc).__name__})")
            return False

        if data.get("success") is not True:
            logger.info(f"recaptcha: rejected, errors={data.get('error-codes')}")
            return False
        return True


__all__ = ["RecaptchaVerifier"]
