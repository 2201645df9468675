# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Outbound email over SMTP."""

from __future__ import annotations

import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from stepunity.application.interfaces import Mailer
from stepunity.domain.users.exceptions import DeliveryFailedError
from stepunity.infrastructure.observability import EMAIL_COUNTER
from stepunity.infrastructure.resilience import CircuitBreaker, CircuitOpenError, resilient_call
from stepunity.shared.config.settings import MailConfig, ResilienceConfig
from stepunity.shared.logging import logger

VERIFICATION_TEXT = """Your verification code: {code} (valid for {ttl} minutes).

If you did not request this, simply ignore this email.
"""

VERIFICATION_HTML = """
<p style="font-size:16px;">
  Your verification code:
  <b style="font-size:24px;">{code}</b>
</p>
<p>The code is valid for {ttl} minutes.</p>
<p>If you did not request this, simply ignore this email.</p>
"""

RESET_TEXT = """You requested a password reset.
If this wasn't you, simply ignore this email.

Password reset link (valid for a limited time):
{reset_url}
"""

RESET_HTML = """
<p>You requested a password reset.</p>
<p>If this wasn't you, simply ignore this email.</p>
<p>
  <a href="{reset_url}" style="font-size:18px;">Reset password</a>
  <br />
  (The link is valid for a limited time)
</p>
"""

_SUBJECTS = {
    "register": "{app}: Your verification code",
    "change_email": "{app}: Confirm your new email address",
}


class SmtpMailer(Mailer):
    def __init__(
        self,
        config: MailConfig,
        resilience: ResilienceConfig,
        *,
        breaker: CircuitBreaker | None = None,
        code_ttl_minutes: int = 10,
    ) -> None:
        self._config = config
        self._resilience = resilience
        self._breaker = breaker
        self._code_ttl_minutes = code_ttl_minutes

    def _create_message(
        self, to_email: str, subject: str, text_body: str, html_body: str
    ) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._config.from_address
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))
        return msg

    def _deliver(self, message: MIMEMultipart) -> None:
        config = self._config
        password = config.password.get_secret_value() if config.password else ""

        if config.use_tls and not config.starttls:
            # Implicit TLS (port 465)
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(
                config.host, config.port, context=context, timeout=config.timeout
            ) as server:
                if config.user:
                    server.login(config.user, password)
                server.send_message(message)
            return

        # STARTTLS (port 587) or plain
        with smtplib.SMTP(config.host, config.port, timeout=config.timeout) as server:
            if config.starttls:
                server.starttls(context=ssl.create_default_context())
            if config.user:
                server.login(config.user, password)
            server.send_message(message)

    def _send(self, kind: str, to_email: str, message: MIMEMultipart) -> None:
        if not self._config.enabled:
            logger.warning(f"mailer: SMTP disabled, {kind} email not sent")
            EMAIL_COUNTER.labels(kind=kind, result="skipped").inc()
            return
        if not self._config.host:
            logger.error("mailer: SMTP host not configured")
            EMAIL_COUNTER.labels(kind=kind, result="failed").inc()
            raise DeliveryFailedError()

        try:
            resilient_call(
                self._deliver,
                message,
                config=self._resilience,
                breaker=self._breaker,
                retry_on=(smtplib.SMTPException, OSError),
            )
        except (smtplib.SMTPException, OSError, CircuitOpenError) as exc:
            # Exception text can echo server responses; log the type only
            logger.error(f"mailer: failed to send {kind} email ({type(exc).__name__})")
            EMAIL_COUNTER.labels(kind=kind, result="failed").inc()
            raise DeliveryFailedError() from exc

        EMAIL_COUNTER.labels(kind=kind, result="sent").inc()
        logger.info(f"mailer: {kind} email sent to {to_email}")

    def send_verification_code(self, to: str, code: str, *, purpose: str = "register") -> None:
        subject = _SUBJECTS.get(purpose, _SUBJECTS["register"]).format(app=self._config.app_name)
        ttl = self._code_ttl_minutes
        message = self._create_message(
            to,
            subject,
            VERIFICATION_TEXT.format(code=code, ttl=ttl),
            VERIFICATION_HTML.format(code=escape(code), ttl=ttl),
        )
        self._send("verification", to, message)

    def send_password_reset(self, to: str, reset_url: str) -> None:
        message = self._create_message(
            to,
            f"{self._config.app_name}: Reset your password",
            RESET_TEXT.format(reset_url=reset_url),
            RESET_HTML.format(reset_url=escape(reset_url, quote=True)),
        )
        self._send("password_reset", to, message)


__all__ = ["SmtpMailer"]
