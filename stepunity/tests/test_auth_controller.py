from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from flask import Flask

from stepunity.application.services.session_issuer import RotatedSession
from stepunity.application.services.token_issuer import JWTTokenIssuer
from stepunity.domain.users.entities import IssuedSession, User
from stepunity.domain.users.exceptions import InvalidRefreshTokenError
from stepunity.interfaces.http.auth_guard import BearerAuth
from stepunity.interfaces.http.controllers.auth_controller import AuthController
from stepunity.shared.config.settings import RateLimitConfig, SecurityConfig
from stepunity.shared.middleware.error_handler import configure_error_handling
from stepunity.shared.middleware.rate_limit import RateLimiterRegistry

from .conftest import TEST_JWT_SECRET

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def _user() -> User:
    return User(
        id=7,
        email="alice@example.com",
        username="alice",
        password_hash="hash",
        created_at=NOW,
        display_name="Alice",
        avatar_url="/uploads/defaults/default-avatar.png",
    )


def _build(**overrides) -> tuple[Flask, dict[str, MagicMock], JWTTokenIssuer]:
    tokens = JWTTokenIssuer(TEST_JWT_SECRET)
    use_cases = {
        name: MagicMock()
        for name in (
            "register_start_use_case",
            "register_verify_use_case",
            "login_use_case",
            "refresh_use_case",
            "logout_use_case",
            "logout_all_use_case",
            "current_user_use_case",
            "forgot_use_case",
            "reset_use_case",
            "change_password_use_case",
            "email_proof_use_case",
            "email_start_use_case",
            "email_verify_use_case",
        )
    }
    settings = {"COOKIE_SECURE": True, "COOKIE_SAMESITE": "strict", "COOKIE_DOMAIN": ""}
    settings.update(overrides)
    security = SecurityConfig(**settings)
    controller = AuthController(
        **use_cases,
        bearer=BearerAuth(tokens),
        rate_limits=RateLimiterRegistry(RateLimitConfig(), enabled=False),
        security=security,
        clock=lambda: NOW,
    )
    app = Flask(__name__)
    configure_error_handling(app)
    app.register_blueprint(controller.as_blueprint())
    return app, use_cases, tokens


@pytest.fixture()
def built():
    return _build()


def test_login_sets_refresh_cookie_attributes(built) -> None:
    app, use_cases, _ = built
    use_cases["login_use_case"].execute.return_value = IssuedSession(
        user=_user(),
        access_token="access-jwt",
        refresh_value="opaque-refresh",
        refresh_expires_at=NOW + timedelta(days=2),
    )

    with app.test_client() as client:
        response = client.post(
            "/api/auth/login",
            json={"email": "alice@example.com", "password": "secret123", "rememberMe": False},
        )

    assert response.status_code == 200
    assert response.get_json() == {
        "ok": True,
        "accessToken": "access-jwt",
        "user": {
            "id": 7,
            "email": "alice@example.com",
            "username": "alice",
            "displayName": "Alice",
            "avatarUrl": "/uploads/defaults/default-avatar.png",
            "createdAt": "2025-03-01T12:00:00.000Z",
        },
    }
    cookie = response.headers["Set-Cookie"]
    assert cookie.startswith("refresh=opaque-refresh")
    assert "Max-Age=172800" in cookie
    assert "Secure" in cookie
    assert "HttpOnly" in cookie
    assert "SameSite=Strict" in cookie
    assert "Path=/api/auth" in cookie

    args, kwargs = use_cases["login_use_case"].execute.call_args
    assert args == ("alice@example.com", "secret123")
    assert kwargs["remember_me"] is False


def test_login_defaults_to_remember_me(built) -> None:
    app, use_cases, _ = built
    use_cases["login_use_case"].execute.return_value = IssuedSession(
        user=_user(),
        access_token="a",
        refresh_value="r",
        refresh_expires_at=NOW + timedelta(days=30),
    )

    with app.test_client() as client:
        client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret123"})

    assert use_cases["login_use_case"].execute.call_args.kwargs["remember_me"] is True


def test_login_rejects_malformed_body(built) -> None:
    app, use_cases, _ = built

    with app.test_client() as client:
        response = client.post("/api/auth/login", data="not json", content_type="text/plain")

    assert response.status_code == 400
    assert response.get_json()["code"] == "validation_error"
    use_cases["login_use_case"].execute.assert_not_called()


def test_refresh_uses_cookie_and_rotates(built) -> None:
    app, use_cases, _ = built
    use_cases["refresh_use_case"].execute.return_value = RotatedSession(
        user_id=7,
        access_token="new-access",
        refresh_value="next-refresh",
        refresh_max_age=timedelta(days=30),
    )

    with app.test_client() as client:
        client.set_cookie("refresh", "old-refresh", path="/api/auth")
        response = client.post("/api/auth/refresh")

    assert response.get_json() == {"ok": True, "accessToken": "new-access"}
    assert "refresh=next-refresh" in response.headers["Set-Cookie"]
    assert "Max-Age=2592000" in response.headers["Set-Cookie"]
    assert use_cases["refresh_use_case"].execute.call_args.args[0] == "old-refresh"


def test_refresh_failure_clears_cookie(built) -> None:
    app, use_cases, _ = built
    use_cases["refresh_use_case"].execute.side_effect = InvalidRefreshTokenError()

    with app.test_client() as client:
        response = client.post("/api/auth/refresh")

    assert response.status_code == 401
    assert response.get_json()["code"] == "invalid_refresh"
    cookie = response.headers["Set-Cookie"]
    assert cookie.startswith("refresh=;")
    assert "Max-Age=0" in cookie
    assert use_cases["refresh_use_case"].execute.call_args.args[0] is None


def test_logout_clears_cookie_even_without_session(built) -> None:
    app, use_cases, _ = built

    with app.test_client() as client:
        response = client.post("/api/auth/logout")

    assert response.get_json() == {"ok": True}
    assert "Max-Age=0" in response.headers["Set-Cookie"]
    use_cases["logout_use_case"].execute.assert_called_once()


def test_protected_routes_require_bearer(built) -> None:
    app, use_cases, tokens = built
    use_cases["current_user_use_case"].execute.return_value = _user()

    with app.test_client() as client:
        missing = client.get("/api/auth/me")
        proof = client.get(
            "/api/auth/me",
            headers={"Authorization": f"Bearer {tokens.issue_email_change_proof(7)}"},
        )
        ok = client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {tokens.issue_access_token(7)}"}
        )

    assert missing.status_code == 401
    assert missing.get_json()["code"] == "unauthorized"
    assert proof.status_code == 401
    assert ok.status_code == 200
    assert ok.get_json()["user"]["id"] == 7
    use_cases["current_user_use_case"].execute.assert_called_once_with(7)


def test_forgot_always_returns_generic_message(built) -> None:
    app, use_cases, _ = built

    with app.test_client() as client:
        response = client.post(
            "/api/auth/forgot", json={"email": "someone@example.com", "captchaToken": "tok"}
        )

    assert response.status_code == 200
    assert response.get_json()["message"] == "If this email exists, we've sent reset instructions."
    assert use_cases["forgot_use_case"].execute.call_args.kwargs["captcha_token"] == "tok"


def test_cookie_domain_is_applied() -> None:
    app, _, _ = _build(COOKIE_DOMAIN="stepunity.test")

    with app.test_client() as client:
        response = client.post("/api/auth/logout")

    assert "Domain=stepunity.test" in response.headers["Set-Cookie"]
