from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import pytest
from flask import Flask
from flask.testing import FlaskClient

from stepunity.app import create_app
from stepunity.domain.users.exceptions import DeliveryFailedError
from stepunity.infrastructure.container import Container
from stepunity.infrastructure.db import init_db
from stepunity.shared.config.settings import (
    AppConfig,
    AuthConfig,
    DatabaseConfig,
    IntegrationsConfig,
    MailConfig,
    SecurityConfig,
    StorageConfig,
)
from stepunity.shared.utils.time import utc_now

TEST_JWT_SECRET = "test-only-jwt-secret-with-enough-bytes-0123456789"
STRONG_PASSWORD = "Str0ngP@ss!"


class RecordingMailer:
    def __init__(self) -> None:
        self.codes: list[tuple[str, str, str]] = []
        self.resets: list[tuple[str, str]] = []
        self.fail = False

    def send_verification_code(self, to: str, code: str, *, purpose: str = "register") -> None:
        if self.fail:
            raise DeliveryFailedError()
        self.codes.append((to, code, purpose))

    def send_password_reset(self, to: str, reset_url: str) -> None:
        if self.fail:
            raise DeliveryFailedError()
        self.resets.append((to, reset_url))

    def last_code(self, to: str) -> str:
        return [code for email, code, _ in self.codes if email == to][-1]

    def last_reset_token(self, to: str) -> str:
        url = [link for email, link in self.resets if email == to][-1]
        return parse_qs(urlparse(url).query)["token"][0]


class FakeBreachChecker:
    def __init__(self) -> None:
        self.leaked: dict[str, int] = {}

    def pwned_count(self, password: str) -> int:
        return self.leaked.get(password, 0)


class FakeCaptcha:
    def __init__(self) -> None:
        self.accept = True

    def verify(self, token: str | None, remote_ip: str | None = None) -> bool:
        return self.accept


class InlineRunner:
    def submit(self, fn, /, *args, **kwargs):
        return fn(*args, **kwargs)


class MutableClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utc_now()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_config(tmp_path: Path, *, rate_limit: bool = False, proxy_hops: int = 0) -> AppConfig:
    return AppConfig(
        APP_ENV="test",
        SECRET_KEY="test-secret",
        database=DatabaseConfig(DATABASE_URL=f"sqlite:///{tmp_path / 'stepunity.db'}"),
        auth=AuthConfig(
            JWT_SECRET=TEST_JWT_SECRET,
            PASSWORD_HASH_METHOD="pbkdf2:sha256:1000",
            FRONTEND_ORIGIN="http://app.test",
        ),
        security=SecurityConfig(ENABLE_RATE_LIMIT=rate_limit, TRUSTED_PROXY_HOPS=proxy_hops),
        mail=MailConfig(SMTP_ENABLED=False),
        integrations=IntegrationsConfig(PWNED_CHECK_ENABLED=False, RECAPTCHA_ENABLED=False),
        storage=StorageConfig(UPLOADS_DIR=tmp_path / "uploads"),
    )


@pytest.fixture()
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture()
def breach_checker() -> FakeBreachChecker:
    return FakeBreachChecker()


@pytest.fixture()
def captcha() -> FakeCaptcha:
    return FakeCaptcha()


@pytest.fixture()
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture()
def container(
    tmp_path: Path,
    mailer: RecordingMailer,
    breach_checker: FakeBreachChecker,
    captcha: FakeCaptcha,
    clock: MutableClock,
) -> Iterator[Container]:
    container = Container(
        make_config(tmp_path),
        clock=clock,
        mailer=mailer,
        breach_checker=breach_checker,
        captcha=captcha,
        background_runner=InlineRunner(),
    )
    init_db(container.engine)
    yield container
    container.engine.dispose()


@pytest.fixture()
def app(container: Container) -> Flask:
    flask_app = create_app(container)
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture()
def client(app: Flask) -> FlaskClient:
    return app.test_client()
