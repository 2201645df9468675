from __future__ import annotations

import threading
from io import BytesIO
from pathlib import Path

import pytest
from flask.testing import FlaskClient

from stepunity.app import create_app
from stepunity.application.interfaces import RequestMeta
from stepunity.domain.users.exceptions import InvalidRefreshTokenError
from stepunity.infrastructure.container import Container
from stepunity.infrastructure.db import init_db, session_scope
from stepunity.infrastructure.db.models import AuditLog, RefreshToken, User

from .conftest import (
    STRONG_PASSWORD,
    FakeBreachChecker,
    FakeCaptcha,
    InlineRunner,
    RecordingMailer,
    make_config,
)

COOKIE_PATH = "/api/auth"


def _register(client: FlaskClient, mailer: RecordingMailer, email: str = "alice@example.com"):
    start = client.post(
        "/api/auth/register-start",
        json={"email": email, "username": "alice123", "password": STRONG_PASSWORD},
    )
    assert start.status_code == 200
    assert start.get_json() == {"ok": True, "message": "Verification code sent"}
    return client.post(
        "/api/auth/register-verify", json={"email": email, "code": mailer.last_code(email)}
    )


def _refresh_cookie(client: FlaskClient):
    return client.get_cookie("refresh", path=COOKIE_PATH)


def test_register_verify_sets_refresh_cookie(client: FlaskClient, mailer: RecordingMailer) -> None:
    response = _register(client, mailer)

    assert response.status_code == 200
    body = response.get_json()
    assert body["ok"] is True
    assert body["accessToken"]
    assert body["user"]["username"] == "alice123"
    assert body["user"]["email"] == "alice@example.com"
    assert "passwordHash" not in body["user"] and "password_hash" not in body["user"]
    assert body["user"]["createdAt"].endswith("Z")

    set_cookie = response.headers["Set-Cookie"]
    assert "refresh=" in set_cookie
    assert "HttpOnly" in set_cookie
    assert "Path=/api/auth" in set_cookie
    assert "SameSite=Lax" in set_cookie
    assert "Max-Age=2592000" in set_cookie
    assert _refresh_cookie(client) is not None


def test_register_start_multipart_with_avatar(
    client: FlaskClient, mailer: RecordingMailer, container: Container
) -> None:
    png = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
    response = client.post(
        "/api/auth/register-start",
        data={
            "email": "bob@example.com",
            "username": "Bob Dancer",
            "password": STRONG_PASSWORD,
            "avatar": (BytesIO(png), "bob.png", "image/png"),
        },
        content_type="multipart/form-data",
    )
    assert response.status_code == 200

    verify = client.post(
        "/api/auth/register-verify",
        json={"email": "bob@example.com", "code": mailer.last_code("bob@example.com")},
    )
    user = verify.get_json()["user"]
    assert user["username"] == "bobdancer"
    assert user["displayName"] == "Bob Dancer"

    avatar = client.get(user["avatarUrl"])
    assert avatar.status_code == 200
    assert avatar.data == png


def test_register_start_validation_details(client: FlaskClient) -> None:
    response = client.post(
        "/api/auth/register-start",
        json={"email": "not-an-email", "username": "al", "password": "123"},
    )

    assert response.status_code == 400
    body = response.get_json()
    assert body["ok"] is False
    assert body["code"] == "validation_error"
    assert set(body["details"]["fields"]) == {"email", "username", "password"}


def test_register_start_mail_failure_returns_500(
    client: FlaskClient, mailer: RecordingMailer, container: Container
) -> None:
    mailer.fail = True

    response = client.post(
        "/api/auth/register-start",
        json={"email": "alice@example.com", "username": "alice123", "password": STRONG_PASSWORD},
    )

    assert response.status_code == 500
    assert response.get_json()["ok"] is False
    assert container.user_repository.find_by_email("alice@example.com") is None


def test_register_verify_incorrect_code(client: FlaskClient, mailer: RecordingMailer) -> None:
    client.post(
        "/api/auth/register-start",
        json={"email": "alice@example.com", "username": "alice123", "password": STRONG_PASSWORD},
    )
    code = mailer.last_code("alice@example.com")
    wrong = "000000" if code != "000000" else "111111"

    response = client.post(
        "/api/auth/register-verify", json={"email": "alice@example.com", "code": wrong}
    )

    assert response.status_code == 400
    assert response.get_json()["error"] == "Incorrect code"
    assert response.get_json()["attemptsLeft"] == 4


def test_login_me_and_logout(client: FlaskClient, mailer: RecordingMailer) -> None:
    _register(client, mailer)
    client.delete_cookie("refresh", path=COOKIE_PATH)

    login = client.post(
        "/api/auth/login", json={"email": "alice@example.com", "password": STRONG_PASSWORD}
    )
    assert login.status_code == 200
    token = login.get_json()["accessToken"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.get_json()["user"]["email"] == "alice@example.com"

    assert client.get("/api/auth/me").status_code == 401
    bad = client.get("/api/auth/me", headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401

    logout = client.post("/api/auth/logout")
    assert logout.status_code == 200
    assert logout.get_json() == {"ok": True}
    assert _refresh_cookie(client) is None
    assert client.post("/api/auth/refresh").status_code == 401


def test_login_short_session_cookie(client: FlaskClient, mailer: RecordingMailer) -> None:
    _register(client, mailer)

    login = client.post(
        "/api/auth/login",
        json={"email": "alice@example.com", "password": STRONG_PASSWORD, "rememberMe": False},
    )

    assert "Max-Age=172800" in login.headers["Set-Cookie"]


def test_login_failures_are_generic_then_locked(
    client: FlaskClient, mailer: RecordingMailer
) -> None:
    _register(client, mailer)

    known = client.post(
        "/api/auth/login", json={"email": "alice@example.com", "password": "wrong-pass"}
    )
    unknown = client.post(
        "/api/auth/login", json={"email": "ghost@example.com", "password": "wrong-pass"}
    )
    assert known.status_code == unknown.status_code == 401
    assert known.get_json() == unknown.get_json()
    assert known.get_json()["attemptsLeft"] == 3

    for _ in range(3):
        last = client.post(
            "/api/auth/login", json={"email": "alice@example.com", "password": "wrong-pass"}
        )
    assert last.status_code == 429
    body = last.get_json()
    assert body["attemptsLeft"] == 0
    assert body["lockRemainingMs"] > 0
    assert body["unlockAt"].endswith("Z")


def test_refresh_rotates_cookie(client: FlaskClient, mailer: RecordingMailer) -> None:
    _register(client, mailer)
    first_value = _refresh_cookie(client).value

    response = client.post("/api/auth/refresh")

    assert response.status_code == 200
    assert response.get_json()["accessToken"]
    second_value = _refresh_cookie(client).value
    assert second_value != first_value

    # Replaying the old value is refused and clears the cookie
    client.set_cookie("refresh", first_value, path=COOKIE_PATH)
    replay = client.post("/api/auth/refresh")
    assert replay.status_code == 401
    assert replay.get_json()["code"] == "invalid_refresh"
    assert _refresh_cookie(client) is None


def test_refresh_without_cookie(client: FlaskClient) -> None:
    response = client.post("/api/auth/refresh")
    assert response.status_code == 401
    assert "refresh=;" in response.headers["Set-Cookie"]


def test_concurrent_refresh_has_single_winner(
    client: FlaskClient, mailer: RecordingMailer, container: Container
) -> None:
    _register(client, mailer)
    value = _refresh_cookie(client).value
    barrier = threading.Barrier(4)
    outcomes: list[str] = []
    lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        try:
            container.refresh_session_use_case.execute(value, RequestMeta(ip="198.51.100.1"))
            result = "ok"
        except InvalidRefreshTokenError:
            result = "rejected"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes) == ["ok", "rejected", "rejected", "rejected"]
    with session_scope(container.session_factory) as session:
        assert session.query(RefreshToken).filter(RefreshToken.revoked_at.is_(None)).count() == 1


def test_logout_all_requires_bearer(client: FlaskClient, mailer: RecordingMailer) -> None:
    token = _register(client, mailer).get_json()["accessToken"]
    assert client.post("/api/auth/logout-all").status_code == 401

    response = client.post("/api/auth/logout-all", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert _refresh_cookie(client) is None


def test_forgot_is_generic(client: FlaskClient, mailer: RecordingMailer) -> None:
    _register(client, mailer)

    known = client.post("/api/auth/forgot", json={"email": "alice@example.com"})
    unknown = client.post("/api/auth/forgot", json={"email": "ghost@example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.get_json() == unknown.get_json()
    assert known.get_json()["message"] == "If this email exists, we've sent reset instructions."
    assert [to for to, _ in mailer.resets] == ["alice@example.com"]


def test_forgot_rejects_failed_captcha(client: FlaskClient, captcha: FakeCaptcha) -> None:
    captcha.accept = False
    response = client.post("/api/auth/forgot", json={"email": "alice@example.com"})
    assert response.status_code == 400
    assert response.get_json()["error"] == "captcha_failed"


def test_reset_flow_revokes_sessions(client: FlaskClient, mailer: RecordingMailer) -> None:
    _register(client, mailer)
    client.post("/api/auth/forgot", json={"email": "alice@example.com"})
    token = mailer.last_reset_token("alice@example.com")

    short = client.post("/api/auth/reset", json={"token": token, "newPassword": "short"})
    assert short.status_code == 400

    response = client.post("/api/auth/reset", json={"token": token, "newPassword": "N3w-Passw0rd!"})
    assert response.status_code == 200
    assert response.get_json() == {"ok": True}
    assert client.post("/api/auth/refresh").status_code == 401

    again = client.post("/api/auth/reset", json={"token": token, "newPassword": "N3w-Passw0rd!2"})
    assert again.status_code == 400
    assert again.get_json()["error"] == "Invalid or expired token."


def test_reset_breached_password(
    client: FlaskClient, mailer: RecordingMailer, breach_checker: FakeBreachChecker
) -> None:
    _register(client, mailer)
    client.post("/api/auth/forgot", json={"email": "alice@example.com"})
    token = mailer.last_reset_token("alice@example.com")
    breach_checker.leaked["Leaked-Passw0rd"] = 3

    response = client.post("/api/auth/reset", json={"token": token, "newPassword": "Leaked-Passw0rd"})

    assert response.status_code == 400
    assert response.get_json()["pwnedCount"] == 3


def test_change_email_endpoints(client: FlaskClient, mailer: RecordingMailer) -> None:
    token = _register(client, mailer).get_json()["accessToken"]
    auth = {"Authorization": f"Bearer {token}"}

    wrong = client.post("/api/auth/change-email/proof", json={"password": "wrong-pass"}, headers=auth)
    assert wrong.status_code == 401
    assert wrong.get_json()["error"] == "Invalid password"

    proof = client.post(
        "/api/auth/change-email/proof", json={"password": STRONG_PASSWORD}, headers=auth
    ).get_json()["proof"]
    start = client.post(
        "/api/auth/change-email/start",
        json={"newEmail": "alice.new@example.com", "proof": proof},
        headers=auth,
    )
    assert start.status_code == 200

    verify = client.post(
        "/api/auth/change-email/verify",
        json={"newEmail": "alice.new@example.com", "code": mailer.last_code("alice.new@example.com")},
        headers=auth,
    )
    assert verify.status_code == 200
    assert verify.get_json()["user"]["email"] == "alice.new@example.com"


def test_change_password_request(client: FlaskClient, mailer: RecordingMailer) -> None:
    token = _register(client, mailer).get_json()["accessToken"]

    response = client.post(
        "/api/auth/change-password/request", headers={"Authorization": f"Bearer {token}"}
    )

    assert response.get_json() == {"ok": True, "message": "Password change link sent"}
    assert mailer.resets[-1][0] == "alice@example.com"

    mailer.fail = True
    failed = client.post(
        "/api/auth/change-password/request", headers={"Authorization": f"Bearer {token}"}
    )
    assert failed.status_code == 500


def test_audit_trail_has_no_secrets(
    client: FlaskClient, mailer: RecordingMailer, container: Container
) -> None:
    _register(client, mailer)
    client.post("/api/auth/login", json={"email": "alice@example.com", "password": "wrong-pass"})

    with session_scope(container.session_factory) as session:
        rows = session.query(AuditLog).all()
        actions = {row.action for row in rows}
        blob = " ".join(str(row.details_json) for row in rows)
        assert session.query(User).count() == 1

    assert {"register_started", "register_verified", "login_failed"} <= actions
    assert STRONG_PASSWORD not in blob
    assert mailer.last_code("alice@example.com") not in blob


def test_health_metrics_and_headers(client: FlaskClient) -> None:
    health = client.get("/api/health")
    assert health.status_code == 200
    assert health.get_json() == {"ok": True, "database": "ok"}
    assert health.headers["X-Content-Type-Options"] == "nosniff"
    assert health.headers["X-Frame-Options"] == "DENY"

    metrics = client.get("/api/metrics")
    assert metrics.status_code == 200
    assert b"stepunity_requests_total" in metrics.data


def _limited_client(tmp_path: Path, *, proxy_hops: int = 0) -> FlaskClient:
    container = Container(
        make_config(tmp_path, rate_limit=True, proxy_hops=proxy_hops),
        mailer=RecordingMailer(),
        breach_checker=FakeBreachChecker(),
        captcha=FakeCaptcha(),
        background_runner=InlineRunner(),
    )
    init_db(container.engine)
    return create_app(container).test_client()


@pytest.fixture()
def limited_client(tmp_path: Path) -> FlaskClient:
    return _limited_client(tmp_path)


def test_forgot_rate_limit(limited_client: FlaskClient) -> None:
    statuses = [
        limited_client.post("/api/auth/forgot", json={"email": f"u{i}@example.com"}).status_code
        for i in range(6)
    ]

    assert statuses == [200] * 5 + [429]
    limited = limited_client.post("/api/auth/forgot", json={"email": "u@example.com"})
    assert limited.get_json()["ok"] is False
    assert limited.get_json()["retryAfter"] >= 1
    assert "Retry-After" in limited.headers


def _failed_login(client: FlaskClient, i: int, forwarded_for: str):
    return client.post(
        "/api/auth/login",
        json={"email": f"user{i}@example.com", "password": "wrong-pass"},
        headers={"X-Forwarded-For": forwarded_for},
    )


def test_login_budget_ignores_forwarded_for_without_trusted_proxy(
    limited_client: FlaskClient,
) -> None:
    responses = [_failed_login(limited_client, i, f"10.0.{i // 250}.{i % 250}") for i in range(25)]

    statuses = [response.status_code for response in responses]
    assert statuses[:20] == [401] * 20
    assert statuses[20:] == [429] * 5
    assert responses[-1].get_json()["code"] == "rate_limited"


def test_login_budget_uses_hop_appended_by_trusted_proxy(tmp_path: Path) -> None:
    client = _limited_client(tmp_path, proxy_hops=1)

    # The left-most entries are client supplied; only the proxy's own entry counts
    statuses = [
        _failed_login(client, i, f"198.51.100.{i}, 203.0.113.5").status_code for i in range(21)
    ]
    assert statuses == [401] * 20 + [429]

    other = _failed_login(client, 99, "203.0.113.6")
    assert other.status_code == 401
