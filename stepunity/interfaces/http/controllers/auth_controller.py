# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from datetime import timedelta
from typing import Any, TypeVar

from flask import Blueprint, Response, jsonify, request
from pydantic import BaseModel, ValidationError

from stepunity.application.interfaces import RequestMeta, UploadedFile
from stepunity.application.use_cases.users.change_email import (
    IssueEmailChangeProofUseCase,
    StartEmailChangeUseCase,
    VerifyEmailChangeUseCase,
)
from stepunity.application.use_cases.users.get_current_user import GetCurrentUserUseCase
from stepunity.application.use_cases.users.login_user import LoginUserUseCase
from stepunity.application.use_cases.users.logout_user import (
    LogoutAllUseCase,
    LogoutUserUseCase,
)
from stepunity.application.use_cases.users.password_reset import (
    RequestPasswordChangeUseCase,
    RequestPasswordResetUseCase,
    ResetPasswordUseCase,
)
from stepunity.application.use_cases.users.refresh_session import RefreshSessionUseCase
from stepunity.application.use_cases.users.register_user import (
    RegisterStartUseCase,
    RegisterVerifyUseCase,
    RegistrationRequest,
)
from stepunity.domain.users.entities import IssuedSession
from stepunity.domain.users.exceptions import InvalidRefreshTokenError
from stepunity.interfaces.http.auth_guard import BearerAuth, current_user_id
from stepunity.interfaces.http.dto.auth import (
    AuthSuccessDTO,
    EmailChangeProofRequestDTO,
    EmailChangeStartRequestDTO,
    EmailChangeVerifyRequestDTO,
    ForgotRequestDTO,
    LoginRequestDTO,
    RegisterStartRequestDTO,
    RegisterVerifyRequestDTO,
    ResetRequestDTO,
    UserDTO,
)
from stepunity.shared.config.settings import SecurityConfig
from stepunity.shared.errors import handle_app_error
from stepunity.shared.errors.validation import raise_validation_error
from stepunity.shared.logging import logger
from stepunity.shared.middleware.rate_limit import RateLimiterRegistry
from stepunity.shared.utils.http import client_ip, user_agent
from stepunity.shared.utils.time import Clock

_DTO = TypeVar("_DTO", bound=BaseModel)

FORGOT_MESSAGE = "If this email exists, we've sent reset instructions."


def _request_meta() -> RequestMeta:
    return RequestMeta(ip=client_ip(), user_agent=user_agent())


def _parse(model: type[_DTO], data: Any) -> _DTO:  # noqa: UP047
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise_validation_error(exc)


def _json_body() -> dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


class AuthController:
    def __init__(
        self,
        *,
        register_start_use_case: RegisterStartUseCase,
        register_verify_use_case: RegisterVerifyUseCase,
        login_use_case: LoginUserUseCase,
        refresh_use_case: RefreshSessionUseCase,
        logout_use_case: LogoutUserUseCase,
        logout_all_use_case: LogoutAllUseCase,
        current_user_use_case: GetCurrentUserUseCase,
        forgot_use_case: RequestPasswordResetUseCase,
        reset_use_case: ResetPasswordUseCase,
        change_password_use_case: RequestPasswordChangeUseCase,
        email_proof_use_case: IssueEmailChangeProofUseCase,
        email_start_use_case: StartEmailChangeUseCase,
        email_verify_use_case: VerifyEmailChangeUseCase,
        bearer: BearerAuth,
        rate_limits: RateLimiterRegistry,
        security: SecurityConfig,
        clock: Clock,
    ) -> None:
        self._register_start = register_start_use_case
        self._register_verify = register_verify_use_case
        self._login = login_use_case
        self._refresh = refresh_use_case
        self._logout = logout_use_case
        self._logout_all = logout_all_use_case
        self._current_user = current_user_use_case
        self._forgot = forgot_use_case
        self._reset = reset_use_case
        self._change_password = change_password_use_case
        self._email_proof = email_proof_use_case
        self._email_start = email_start_use_case
        self._email_verify = email_verify_use_case
        self._bearer = bearer
        self._rate_limits = rate_limits
        self._security = security
        self._clock = clock

    # Cookie helpers

    def _set_refresh_cookie(self, response: Response, value: str, max_age: timedelta) -> None:
        response.set_cookie(
            self._security.refresh_cookie_name,
            value,
            max_age=max(0, int(max_age.total_seconds())),
            path=self._security.refresh_cookie_path,
            domain=self._security.cookie_domain,
            secure=self._security.cookie_secure,
            httponly=True,
            samesite=self._security.cookie_samesite,
        )

    def _clear_refresh_cookie(self, response: Response) -> None:
        response.delete_cookie(
            self._security.refresh_cookie_name,
            path=self._security.refresh_cookie_path,
            domain=self._security.cookie_domain,
            secure=self._security.cookie_secure,
            httponly=True,
            samesite=self._security.cookie_samesite,
        )

    def _refresh_cookie_value(self) -> str | None:
        return request.cookies.get(self._security.refresh_cookie_name) or None

    def _session_response(self, session: IssuedSession) -> Response:
        payload = AuthSuccessDTO.build(session.access_token, session.user)
        response = jsonify(payload.model_dump(by_alias=True))
        self._set_refresh_cookie(
            response, session.refresh_value, session.refresh_expires_at - self._clock()
        )
        return response

    # Registration

    def register_start(self) -> tuple[Response, int]:
        avatar: UploadedFile | None = None
        if request.mimetype == "multipart/form-data":
            data: dict[str, Any] = request.form.to_dict()
            upload = request.files.get("avatar")
            if upload is not None and upload.filename:
                avatar = UploadedFile(
                    filename=upload.filename,
                    content_type=upload.mimetype or "",
                    data=upload.read(),
                )
        else:
            data = _json_body()

        dto = _parse(RegisterStartRequestDTO, data)
        self._register_start.execute(
            RegistrationRequest(
                email=dto.email,
                username=dto.username,
                password=dto.password,
                avatar=avatar,
                captcha_token=dto.captcha_token,
            ),
            _request_meta(),
        )
        return jsonify({"ok": True, "message": "Verification code sent"}), 200

    def register_verify(self) -> tuple[Response, int]:
        dto = _parse(RegisterVerifyRequestDTO, _json_body())
        session = self._register_verify.execute(dto.email, dto.code, _request_meta())
        logger.info(f"auth.register: ok user_id={session.user.id}")
        return self._session_response(session), 200

    # Sessions

    def login(self) -> tuple[Response, int]:
        dto = _parse(LoginRequestDTO, _json_body())
        session = self._login.execute(
            dto.email, dto.password, remember_me=dto.remember_me, meta=_request_meta()
        )
        logger.info(f"auth.login: ok user_id={session.user.id} remember_me={dto.remember_me}")
        return self._session_response(session), 200

    def refresh(self) -> tuple[Response, int]:
        try:
            rotated = self._refresh.execute(self._refresh_cookie_value(), _request_meta())
        except InvalidRefreshTokenError as exc:
            response, status = handle_app_error(exc)
            self._clear_refresh_cookie(response)
            return response, status

        response = jsonify({"ok": True, "accessToken": rotated.access_token})
        self._set_refresh_cookie(response, rotated.refresh_value, rotated.refresh_max_age)
        return response, 200

    def logout(self) -> tuple[Response, int]:
        self._logout.execute(self._refresh_cookie_value(), _request_meta())
        response = jsonify({"ok": True})
        self._clear_refresh_cookie(response)
        logger.info("auth.logout: ok")
        return response, 200

    def logout_all(self) -> tuple[Response, int]:
        user_id = current_user_id()
        revoked = self._logout_all.execute(user_id, _request_meta())
        response = jsonify({"ok": True})
        self._clear_refresh_cookie(response)
        logger.info(f"auth.logout_all: user_id={user_id} revoked={revoked}")
        return response, 200

    def me(self) -> tuple[Response, int]:
        user = self._current_user.execute(current_user_id())
        return jsonify({"ok": True, "user": UserDTO.from_entity(user).to_json()}), 200

    # Password reset

    def forgot(self) -> tuple[Response, int]:
        dto = _parse(ForgotRequestDTO, _json_body())
        self._forgot.execute(dto.email, _request_meta(), captcha_token=dto.captcha_token)
        return jsonify({"ok": True, "message": FORGOT_MESSAGE}), 200

    def reset(self) -> tuple[Response, int]:
        dto = _parse(ResetRequestDTO, _json_body())
        self._reset.execute(dto.token, dto.new_password, _request_meta())
        return jsonify({"ok": True}), 200

    def change_password_request(self) -> tuple[Response, int]:
        self._change_password.execute(current_user_id(), _request_meta())
        return jsonify({"ok": True, "message": "Password change link sent"}), 200

    # Email change

    def change_email_proof(self) -> tuple[Response, int]:
        dto = _parse(EmailChangeProofRequestDTO, _json_body())
        proof = self._email_proof.execute(current_user_id(), dto.password)
        return jsonify({"ok": True, "proof": proof}), 200

    def change_email_start(self) -> tuple[Response, int]:
        dto = _parse(EmailChangeStartRequestDTO, _json_body())
        self._email_start.execute(current_user_id(), dto.new_email, dto.proof, _request_meta())
        return jsonify({"ok": True, "message": "Verification code sent"}), 200

    def change_email_verify(self) -> tuple[Response, int]:
        dto = _parse(EmailChangeVerifyRequestDTO, _json_body())
        user = self._email_verify.execute(
            current_user_id(), dto.new_email, dto.code, _request_meta()
        )
        return jsonify({"ok": True, "user": UserDTO.from_entity(user).to_json()}), 200

    def as_blueprint(self) -> Blueprint:
        limit = self._rate_limits.limit
        authed = self._bearer.required

        bp = Blueprint("auth", __name__, url_prefix="/api/auth")
        bp.add_url_rule(
            "/register-start",
            view_func=limit("register_start")(self.register_start),
            methods=["POST"],
        )
        bp.add_url_rule(
            "/register-verify",
            view_func=limit("register_verify")(self.register_verify),
            methods=["POST"],
        )
        bp.add_url_rule("/login", view_func=limit("login")(self.login), methods=["POST"])
        bp.add_url_rule("/refresh", view_func=self.refresh, methods=["POST"])
        bp.add_url_rule("/logout", view_func=self.logout, methods=["POST"])
        bp.add_url_rule("/logout-all", view_func=authed(self.logout_all), methods=["POST"])
        bp.add_url_rule("/me", view_func=authed(self.me), methods=["GET"])
        bp.add_url_rule("/forgot", view_func=limit("forgot")(self.forgot), methods=["POST"])
        bp.add_url_rule("/reset", view_func=limit("reset")(self.reset), methods=["POST"])
        bp.add_url_rule(
            "/change-password/request",
            view_func=authed(limit("change_password")(self.change_password_request)),
            methods=["POST"],
        )
        bp.add_url_rule(
            "/change-email/proof",
            view_func=authed(limit("change_email")(self.change_email_proof)),
            methods=["POST"],
        )
        bp.add_url_rule(
            "/change-email/start",
            view_func=authed(limit("change_email")(self.change_email_start)),
            methods=["POST"],
        )
        bp.add_url_rule(
            "/change-email/verify",
            view_func=authed(limit("change_email")(self.change_email_verify)),
            methods=["POST"],
        )
        return bp


__all__ = ["AuthController", "FORGOT_MESSAGE"]
