# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from functools import cached_property

from sqlalchemy.engine import Engine

from stepunity.application.interfaces import (
    AuditTrail,
    AvatarStorage,
    BackgroundRunner,
    BreachChecker,
    CaptchaVerifier,
    Mailer,
)
from stepunity.application.services.password_hashing import WerkzeugPasswordHasher
from stepunity.application.services.session_issuer import SessionIssuer
from stepunity.application.services.token_issuer import JWTTokenIssuer
from stepunity.application.use_cases.users.change_email import (
    IssueEmailChangeProofUseCase,
    StartEmailChangeUseCase,
    VerifyEmailChangeUseCase,
)
from stepunity.application.use_cases.users.cleanup_tokens import PurgeExpiredTokensUseCase
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
)
from stepunity.domain.users.repositories import PasswordHasher
from stepunity.infrastructure.audit import SqlAlchemyAuditTrail
from stepunity.infrastructure.auth.login_attempts import LoginAttemptsTracker
from stepunity.infrastructure.db import SessionFactory, build_engine, build_session_factory
from stepunity.infrastructure.mail.smtp_mailer import SmtpMailer
from stepunity.infrastructure.repositories.users.sqlalchemy_session_repository import (
    SqlAlchemyPasswordResetRepository,
    SqlAlchemyRefreshTokenRepository,
)
from stepunity.infrastructure.repositories.users.sqlalchemy_user_repository import (
    SqlAlchemyUserRepository,
    SqlAlchemyVerificationDraftRepository,
)
from stepunity.infrastructure.resilience import breaker_from_config
from stepunity.infrastructure.security.pwned import PwnedPasswordsClient
from stepunity.infrastructure.security.recaptcha import RecaptchaVerifier
from stepunity.infrastructure.storage import LocalAvatarStorage
from stepunity.interfaces.http.auth_guard import BearerAuth
from stepunity.interfaces.http.controllers.auth_controller import AuthController
from stepunity.interfaces.http.controllers.misc_controller import MiscController
from stepunity.shared.config import AppConfig, load_config
from stepunity.shared.middleware.rate_limit import RateLimiterRegistry
from stepunity.shared.utils.time import Clock, utc_now


class Container:
    """Wires the application graph. Collaborators can be swapped via keyword overrides."""

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        clock: Clock = utc_now,
        engine: Engine | None = None,
        mailer: Mailer | None = None,
        breach_checker: BreachChecker | None = None,
        captcha: CaptchaVerifier | None = None,
        password_hasher: PasswordHasher | None = None,
        background_runner: BackgroundRunner | None = None,
    ) -> None:
        self.config = config or load_config()
        self.clock = clock
        self._engine = engine
        self._mailer = mailer
        self._breach_checker = breach_checker
        self._captcha = captcha
        self._password_hasher = password_hasher
        self._background_runner = background_runner

    # Infrastructure

    @cached_property
    def engine(self) -> Engine:
        return self._engine or build_engine(self.config.database)

    @cached_property
    def session_factory(self) -> SessionFactory:
        return build_session_factory(self.engine)

    @cached_property
    def background_runner(self) -> BackgroundRunner:
        return self._background_runner or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="stepunity-bg"
        )

    @cached_property
    def audit_trail(self) -> AuditTrail:
        return SqlAlchemyAuditTrail(self.session_factory, clock=self.clock)

    @cached_property
    def mailer(self) -> Mailer:
        if self._mailer is not None:
            return self._mailer
        return SmtpMailer(
            self.config.mail,
            self.config.resilience,
            breaker=breaker_from_config("smtp", self.config.resilience),
            code_ttl_minutes=self.config.auth.email_code_ttl_minutes,
        )

    @cached_property
    def breach_checker(self) -> BreachChecker:
        if self._breach_checker is not None:
            return self._breach_checker
        return PwnedPasswordsClient(
            self.config.integrations,
            self.config.resilience,
            breaker=breaker_from_config("pwned_passwords", self.config.resilience),
        )

    @cached_property
    def captcha(self) -> CaptchaVerifier:
        return self._captcha or RecaptchaVerifier(self.config.integrations)

    @cached_property
    def avatar_storage(self) -> AvatarStorage:
        storage = self.config.storage
        return LocalAvatarStorage(
            storage.uploads_dir,
            url_prefix=storage.uploads_url_prefix,
            max_bytes=storage.max_upload_bytes,
        )

    @cached_property
    def rate_limits(self) -> RateLimiterRegistry:
        return RateLimiterRegistry(
            self.config.rate_limits, enabled=self.config.security.enable_rate_limit
        )

    @cached_property
    def shadow_login_attempts(self) -> LoginAttemptsTracker:
        auth = self.config.auth
        return LoginAttemptsTracker(
            threshold=auth.login_max_attempts,
            lock_duration=timedelta(minutes=auth.login_lock_minutes),
        )

    # Repositories

    @cached_property
    def user_repository(self) -> SqlAlchemyUserRepository:
        return SqlAlchemyUserRepository(self.session_factory)

    @cached_property
    def draft_repository(self) -> SqlAlchemyVerificationDraftRepository:
        return SqlAlchemyVerificationDraftRepository(self.session_factory)

    @cached_property
    def refresh_token_repository(self) -> SqlAlchemyRefreshTokenRepository:
        return SqlAlchemyRefreshTokenRepository(self.session_factory)

    @cached_property
    def password_reset_repository(self) -> SqlAlchemyPasswordResetRepository:
        return SqlAlchemyPasswordResetRepository(self.session_factory)

    # Services

    @cached_property
    def password_hasher(self) -> PasswordHasher:
        return self._password_hasher or WerkzeugPasswordHasher(
            self.config.auth.password_hash_method
        )

    @cached_property
    def token_issuer(self) -> JWTTokenIssuer:
        auth = self.config.auth
        return JWTTokenIssuer(
            auth.jwt_secret.get_secret_value(),
            access_ttl=timedelta(minutes=auth.access_token_ttl_minutes),
            proof_ttl=timedelta(minutes=auth.email_change_proof_ttl_minutes),
        )

    @cached_property
    def session_issuer(self) -> SessionIssuer:
        auth = self.config.auth
        return SessionIssuer(
            refresh_tokens=self.refresh_token_repository,
            tokens=self.token_issuer,
            audit=self.audit_trail,
            clock=self.clock,
            long_lifetime=timedelta(days=auth.refresh_token_days),
            short_lifetime=timedelta(days=auth.refresh_token_days_short),
        )

    # Use cases

    @cached_property
    def register_start_use_case(self) -> RegisterStartUseCase:
        auth = self.config.auth
        return RegisterStartUseCase(
            users=self.user_repository,
            drafts=self.draft_repository,
            password_hasher=self.password_hasher,
            tokens=self.token_issuer,
            mailer=self.mailer,
            breach_checker=self.breach_checker,
            captcha=self.captcha,
            avatars=self.avatar_storage,
            audit=self.audit_trail,
            clock=self.clock,
            code_ttl=timedelta(minutes=auth.email_code_ttl_minutes),
            max_attempts=auth.email_max_attempts,
        )

    @cached_property
    def register_verify_use_case(self) -> RegisterVerifyUseCase:
        return RegisterVerifyUseCase(
            users=self.user_repository,
            drafts=self.draft_repository,
            sessions=self.session_issuer,
            audit=self.audit_trail,
            clock=self.clock,
            default_avatar_url=self.config.auth.default_avatar_url,
        )

    @cached_property
    def login_user_use_case(self) -> LoginUserUseCase:
        auth = self.config.auth
        return LoginUserUseCase(
            users=self.user_repository,
            password_hasher=self.password_hasher,
            sessions=self.session_issuer,
            shadow_attempts=self.shadow_login_attempts,
            audit=self.audit_trail,
            clock=self.clock,
            max_attempts=auth.login_max_attempts,
            lock_duration=timedelta(minutes=auth.login_lock_minutes),
        )

    @cached_property
    def refresh_session_use_case(self) -> RefreshSessionUseCase:
        return RefreshSessionUseCase(sessions=self.session_issuer)

    @cached_property
    def logout_user_use_case(self) -> LogoutUserUseCase:
        return LogoutUserUseCase(
            refresh_tokens=self.refresh_token_repository,
            tokens=self.token_issuer,
            audit=self.audit_trail,
            clock=self.clock,
        )

    @cached_property
    def logout_all_use_case(self) -> LogoutAllUseCase:
        return LogoutAllUseCase(
            refresh_tokens=self.refresh_token_repository,
            audit=self.audit_trail,
            clock=self.clock,
        )

    @cached_property
    def get_current_user_use_case(self) -> GetCurrentUserUseCase:
        return GetCurrentUserUseCase(users=self.user_repository)

    @cached_property
    def request_password_reset_use_case(self) -> RequestPasswordResetUseCase:
        auth = self.config.auth
        return RequestPasswordResetUseCase(
            users=self.user_repository,
            resets=self.password_reset_repository,
            tokens=self.token_issuer,
            mailer=self.mailer,
            captcha=self.captcha,
            audit=self.audit_trail,
            runner=self.background_runner,
            clock=self.clock,
            ttl=timedelta(minutes=auth.reset_token_ttl_minutes),
            frontend_origin=auth.frontend_origin,
        )

    @cached_property
    def request_password_change_use_case(self) -> RequestPasswordChangeUseCase:
        auth = self.config.auth
        return RequestPasswordChangeUseCase(
            users=self.user_repository,
            resets=self.password_reset_repository,
            tokens=self.token_issuer,
            mailer=self.mailer,
            audit=self.audit_trail,
            clock=self.clock,
            ttl=timedelta(minutes=auth.reset_token_ttl_minutes),
            frontend_origin=auth.frontend_origin,
        )

    @cached_property
    def reset_password_use_case(self) -> ResetPasswordUseCase:
        return ResetPasswordUseCase(
            users=self.user_repository,
            resets=self.password_reset_repository,
            tokens=self.token_issuer,
            password_hasher=self.password_hasher,
            breach_checker=self.breach_checker,
            audit=self.audit_trail,
            clock=self.clock,
        )

    @cached_property
    def email_change_proof_use_case(self) -> IssueEmailChangeProofUseCase:
        return IssueEmailChangeProofUseCase(
            users=self.user_repository,
            password_hasher=self.password_hasher,
            tokens=self.token_issuer,
        )

    @cached_property
    def email_change_start_use_case(self) -> StartEmailChangeUseCase:
        auth = self.config.auth
        return StartEmailChangeUseCase(
            users=self.user_repository,
            drafts=self.draft_repository,
            tokens=self.token_issuer,
            mailer=self.mailer,
            audit=self.audit_trail,
            clock=self.clock,
            code_ttl=timedelta(minutes=auth.email_code_ttl_minutes),
            max_attempts=auth.email_max_attempts,
        )

    @cached_property
    def email_change_verify_use_case(self) -> VerifyEmailChangeUseCase:
        return VerifyEmailChangeUseCase(
            users=self.user_repository,
            drafts=self.draft_repository,
            audit=self.audit_trail,
            clock=self.clock,
        )

    @cached_property
    def purge_expired_tokens_use_case(self) -> PurgeExpiredTokensUseCase:
        return PurgeExpiredTokensUseCase(
            refresh_tokens=self.refresh_token_repository,
            drafts=self.draft_repository,
            resets=self.password_reset_repository,
            avatars=self.avatar_storage,
            clock=self.clock,
        )

    # Controllers

    @cached_property
    def auth_controller(self) -> AuthController:
        return AuthController(
            register_start_use_case=self.register_start_use_case,
            register_verify_use_case=self.register_verify_use_case,
            login_use_case=self.login_user_use_case,
            refresh_use_case=self.refresh_session_use_case,
            logout_use_case=self.logout_user_use_case,
            logout_all_use_case=self.logout_all_use_case,
            current_user_use_case=self.get_current_user_use_case,
            forgot_use_case=self.request_password_reset_use_case,
            reset_use_case=self.reset_password_use_case,
            change_password_use_case=self.request_password_change_use_case,
            email_proof_use_case=self.email_change_proof_use_case,
            email_start_use_case=self.email_change_start_use_case,
            email_verify_use_case=self.email_change_verify_use_case,
            bearer=BearerAuth(self.token_issuer),
            rate_limits=self.rate_limits,
            security=self.config.security,
            clock=self.clock,
        )

    @cached_property
    def misc_controller(self) -> MiscController:
        storage = self.config.storage
        return MiscController(
            engine=self.engine,
            uploads_dir=storage.uploads_dir,
            uploads_url_prefix=storage.uploads_url_prefix,
            metrics_enabled=self.config.observability.metrics_enabled,
        )


__all__ = ["Container"]
