# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""HTTP client for the auth API with single-flight access token refresh."""

from __future__ import annotations

import threading
from typing import Any

import httpx

from stepunity.shared.logging import logger

_REFRESH_PATH = "/api/auth/refresh"


class RefreshFailedError(RuntimeError):
    """The refresh cookie was rejected; the caller has to sign in again."""


class _RefreshFlight:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.token: str | None = None
        self.error: BaseException | None = None


class StepUnityClient:
    """Keeps the access token in memory and the refresh cookie in the cookie jar.

    When a call answers 401, at most one ``/refresh`` request is in flight.
    Callers arriving meanwhile wait on it and are released together with the
    new token or with the failure. The original call is then retried once.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._http = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)
        self._lock = threading.Lock()
        self._flight: _RefreshFlight | None = None
        self._access_token: str | None = None

    @property
    def access_token(self) -> str | None:
        return self._access_token

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> StepUnityClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Transport

    def _headers(self, token: str | None) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"} if token else {}

    def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        token = self._access_token
        response = self._http.request(method, path, headers=self._headers(token), **kwargs)
        if response.status_code != 401 or path == _REFRESH_PATH:
            return response

        fresh = self.refresh_access_token(stale=token)
        return self._http.request(method, path, headers=self._headers(fresh), **kwargs)

    def refresh_access_token(self, *, stale: str | None = None) -> str:
        """Return a fresh access token, sharing one refresh call among concurrent callers."""
        with self._lock:
            if stale is not None and self._access_token not in (None, stale):
                # Another caller already refreshed after our request was sent
                return self._access_token
            flight = self._flight
            leader = flight is None
            if leader:
                flight = self._flight = _RefreshFlight()

        if not leader:
            flight.done.wait()
            if flight.error is not None:
                raise RefreshFailedError("refresh failed") from flight.error
            assert flight.token is not None
            return flight.token

        try:
            response = self._http.post(_REFRESH_PATH)
            if response.status_code != 200:
                raise RefreshFailedError(f"refresh rejected with status {response.status_code}")
            flight.token = response.json()["accessToken"]
        except (httpx.HTTPError, RefreshFailedError, KeyError, ValueError) as exc:
            logger.warning(f"client: refresh failed ({type(exc).__name__})")
            flight.error = exc
            with self._lock:
                self._access_token = None
                self._flight = None
            flight.done.set()
            if isinstance(exc, RefreshFailedError):
                raise
            raise RefreshFailedError("refresh failed") from exc

        with self._lock:
            self._access_token = flight.token
            self._flight = None
        flight.done.set()
        return flight.token

    def _store_session(self, response: httpx.Response) -> dict[str, Any]:
        body = response.json()
        if response.status_code == 200 and body.get("accessToken"):
            self._access_token = body["accessToken"]
        return body

    # Endpoints

    def register_start(
        self,
        email: str,
        username: str,
        password: str,
        *,
        avatar: tuple[str, bytes, str] | None = None,
        captcha_token: str | None = None,
    ) -> httpx.Response:
        data = {"email": email, "username": username, "password": password}
        if captcha_token:
            data["captchaToken"] = captcha_token
        files = {"avatar": avatar} if avatar else None
        if files:
            return self._http.post("/api/auth/register-start", data=data, files=files)
        return self._http.post("/api/auth/register-start", json=data)

    def register_verify(self, email: str, code: str) -> dict[str, Any]:
        response = self._http.post(
            "/api/auth/register-verify", json={"email": email, "code": code}
        )
        return self._store_session(response)

    def login(self, email: str, password: str, *, remember_me: bool = True) -> dict[str, Any]:
        response = self._http.post(
            "/api/auth/login",
            json={"email": email, "password": password, "rememberMe": remember_me},
        )
        return self._store_session(response)

    def logout(self) -> dict[str, Any]:
        response = self._http.post("/api/auth/logout")
        self._access_token = None
        return response.json()

    def logout_all(self) -> dict[str, Any]:
        response = self.request("POST", "/api/auth/logout-all")
        self._access_token = None
        return response.json()

    def me(self) -> dict[str, Any]:
        return self.request("GET", "/api/auth/me").json()

    def forgot(self, email: str, *, captcha_token: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"email": email}
        if captcha_token:
            payload["captchaToken"] = captcha_token
        return self._http.post("/api/auth/forgot", json=payload).json()

    def reset(self, token: str, new_password: str) -> dict[str, Any]:
        response = self._http.post(
            "/api/auth/reset", json={"token": token, "newPassword": new_password}
        )
        return response.json()


__all__ = ["RefreshFailedError", "StepUnityClient"]
