import json
import threading
import time

import httpx
import pytest

from stepunity.client import RefreshFailedError, StepUnityClient


class FakeAuthServer:
    """Issues ``token-N`` access tokens; only the newest one is accepted."""

    def __init__(self, *, refresh_ok: bool = True) -> None:
        self.refresh_ok = refresh_ok
        self.refresh_calls = 0
        self.current = "token-0"
        self._lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/auth/login":
            body = json.loads(request.content)
            assert body["rememberMe"] is True
            return httpx.Response(
                200,
                json={"ok": True, "accessToken": self.current, "user": {"id": 1}},
                headers={"Set-Cookie": "refresh=r0; Path=/api/auth; HttpOnly"},
            )
        if path == "/api/auth/refresh":
            with self._lock:
                self.refresh_calls += 1
            # Keep the refresh in flight long enough for other callers to pile up
            time.sleep(0.2)
            if not self.refresh_ok:
                return httpx.Response(401, json={"ok": False, "code": "invalid_refresh"})
            with self._lock:
                self.current = f"token-{self.refresh_calls}"
            return httpx.Response(200, json={"ok": True, "accessToken": self.current})
        if path == "/api/auth/me":
            if request.headers.get("Authorization") == f"Bearer {self.current}":
                return httpx.Response(200, json={"ok": True, "user": {"id": 1}})
            return httpx.Response(401, json={"ok": False, "code": "unauthorized"})
        return httpx.Response(404)


def _client(server: FakeAuthServer) -> StepUnityClient:
    return StepUnityClient("http://api.test", transport=httpx.MockTransport(server))


def test_login_stores_access_token() -> None:
    server = FakeAuthServer()
    with _client(server) as client:
        body = client.login("alice@example.com", "Str0ngP@ss!")

        assert body["ok"] is True
        assert client.access_token == "token-0"
        assert client.me()["user"]["id"] == 1
    assert server.refresh_calls == 0


def test_expired_token_is_refreshed_once_and_retried() -> None:
    server = FakeAuthServer()
    with _client(server) as client:
        client.login("alice@example.com", "Str0ngP@ss!")
        server.current = "rotated-elsewhere"

        body = client.me()

        assert body["ok"] is True
        assert server.refresh_calls == 1
        assert client.access_token == "token-1"


def test_concurrent_401s_share_one_refresh() -> None:
    server = FakeAuthServer()
    client = _client(server)
    client.login("alice@example.com", "Str0ngP@ss!")
    server.current = "expired"

    results: list[dict] = []
    barrier = threading.Barrier(5)

    def call_me() -> None:
        barrier.wait()
        results.append(client.me())

    threads = [threading.Thread(target=call_me) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    client.close()

    assert server.refresh_calls == 1
    assert len(results) == 5
    assert all(result["ok"] for result in results)


def test_failed_refresh_signs_out_every_waiter() -> None:
    server = FakeAuthServer(refresh_ok=False)
    client = _client(server)
    client.login("alice@example.com", "Str0ngP@ss!")
    server.current = "expired"

    errors: list[BaseException] = []
    barrier = threading.Barrier(3)

    def call_me() -> None:
        barrier.wait()
        try:
            client.me()
        except RefreshFailedError as exc:
            errors.append(exc)

    threads = [threading.Thread(target=call_me) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    client.close()

    assert len(errors) == 3
    assert client.access_token is None


def test_refresh_rejection_raises() -> None:
    server = FakeAuthServer(refresh_ok=False)
    with _client(server) as client, pytest.raises(RefreshFailedError):
        client.refresh_access_token()
