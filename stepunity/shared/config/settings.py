# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

import sys
from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_SECTION_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
)

_INSECURE_SECRETS = ("dev", "dev-secret", "development", "test", "")


def _parse_bool(value: str | bool) -> bool:
    if isinstance(value, str):
        return value.lower() in ("1", "true", "yes")
    return bool(value)


class DatabaseConfig(BaseSettings):
    url: str = Field("sqlite:///stepunity.db", alias="DATABASE_URL")
    pool_size: int = Field(10, ge=1, alias="DATABASE_POOL_SIZE")
    max_overflow: int = Field(5, ge=0, alias="DATABASE_MAX_OVERFLOW")
    pool_timeout: float = Field(30.0, ge=0.1, alias="DATABASE_POOL_TIMEOUT")

    model_config = _SECTION_CONFIG


class AuthConfig(BaseSettings):
    jwt_secret: SecretStr = Field(SecretStr("dev-secret"), alias="JWT_SECRET")
    access_token_ttl_minutes: int = Field(15, ge=1, alias="ACCESS_TOKEN_TTL_MINUTES")
    email_change_proof_ttl_minutes: int = Field(
        10, ge=1, alias="EMAIL_CHANGE_PROOF_TTL_MINUTES"
    )
    refresh_token_days: int = Field(30, ge=1, alias="REFRESH_TOKEN_DAYS")
    refresh_token_days_short: int = Field(2, ge=1, alias="REFRESH_TOKEN_DAYS_SHORT")

    # Email confirmation
    email_code_ttl_minutes: int = Field(10, ge=1, alias="EMAIL_CODE_TTL_MIN")
    email_max_attempts: int = Field(5, ge=1, alias="EMAIL_MAX_ATTEMPTS")

    # Login lockout
    login_max_attempts: int = Field(4, ge=1, alias="LOGIN_MAX_ATTEMPTS")
    login_lock_minutes: int = Field(5, ge=1, alias="LOGIN_LOCK_MINUTES")

    # Password reset
    reset_token_ttl_minutes: int = Field(30, ge=1, alias="RESET_TOKEN_TTL_MIN")

    password_hash_method: str = Field("scrypt", alias="PASSWORD_HASH_METHOD")
    frontend_origin: str = Field("http://localhost:5173", alias="FRONTEND_ORIGIN")
    default_avatar_url: str = Field(
        "/uploads/defaults/default-avatar.png", alias="DEFAULT_AVATAR_URL"
    )

    model_config = _SECTION_CONFIG


class SecurityConfig(BaseSettings):
    # Cookie security
    cookie_secure: bool = Field(False, alias="COOKIE_SECURE")
    cookie_samesite: str = Field("Lax", alias="COOKIE_SAMESITE")
    cookie_domain: str | None = Field(None, alias="COOKIE_DOMAIN")
    refresh_cookie_name: str = Field("refresh", alias="REFRESH_COOKIE_NAME")
    refresh_cookie_path: str = Field("/api/auth", alias="REFRESH_COOKIE_PATH")

    # CORS
    allowed_origins: list[str] = Field(["http://localhost:5173"], alias="ALLOWED_ORIGINS")

    # Rate limiting
    enable_rate_limit: bool = Field(True, alias="ENABLE_RATE_LIMIT")

    # Reverse proxies in front of the app whose X-Forwarded-For entries are trusted
    trusted_proxy_hops: int = Field(0, ge=0, alias="TRUSTED_PROXY_HOPS")

    # HSTS
    enable_hsts: bool = Field(False, alias="ENABLE_HSTS")

    model_config = _SECTION_CONFIG

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _parse_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("cookie_samesite", mode="before")
    @classmethod
    def _parse_samesite(cls, value: str) -> str:
        raw = (value or "lax").strip().lower()
        if raw == "none":
            return "None"
        if raw == "strict":
            return "Strict"
        return "Lax"

    @field_validator("cookie_domain", mode="before")
    @classmethod
    def _blank_domain(cls, value: str | None) -> str | None:
        return value or None

    @field_validator("cookie_secure", "enable_rate_limit", "enable_hsts", mode="before")
    @classmethod
    def _parse_flags(cls, value: str | bool) -> bool:
        return _parse_bool(value)


class RateLimitConfig(BaseSettings):
    register_start_limit: int = Field(5, ge=1, alias="RL_REGISTER_START_LIMIT")
    register_start_window: float = Field(3600.0, ge=1.0, alias="RL_REGISTER_START_WINDOW")
    register_verify_limit: int = Field(15, ge=1, alias="RL_REGISTER_VERIFY_LIMIT")
    register_verify_window: float = Field(3600.0, ge=1.0, alias="RL_REGISTER_VERIFY_WINDOW")
    login_limit: int = Field(20, ge=1, alias="RL_LOGIN_LIMIT")
    login_window: float = Field(900.0, ge=1.0, alias="RL_LOGIN_WINDOW")
    forgot_limit: int = Field(5, ge=1, alias="RL_FORGOT_LIMIT")
    forgot_window: float = Field(3600.0, ge=1.0, alias="RL_FORGOT_WINDOW")
    reset_limit: int = Field(10, ge=1, alias="RL_RESET_LIMIT")
    reset_window: float = Field(3600.0, ge=1.0, alias="RL_RESET_WINDOW")
    change_email_limit: int = Field(10, ge=1, alias="RL_CHANGE_EMAIL_LIMIT")
    change_email_window: float = Field(3600.0, ge=1.0, alias="RL_CHANGE_EMAIL_WINDOW")
    change_password_limit: int = Field(5, ge=1, alias="RL_CHANGE_PASSWORD_LIMIT")
    change_password_window: float = Field(3600.0, ge=1.0, alias="RL_CHANGE_PASSWORD_WINDOW")

    model_config = _SECTION_CONFIG

    def budget(self, name: str) -> tuple[int, float]:
        return getattr(self, f"{name}_limit"), getattr(self, f"{name}_window")


class MailConfig(BaseSettings):
    enabled: bool = Field(False, alias="SMTP_ENABLED")
    host: str = Field("", alias="SMTP_HOST")
    port: int = Field(2525, alias="SMTP_PORT")
    user: str = Field("", alias="SMTP_USER")
    password: SecretStr | None = Field(None, alias="SMTP_PASS")
    use_tls: bool = Field(False, alias="SMTP_USE_TLS")
    starttls: bool = Field(False, alias="SMTP_STARTTLS")
    timeout: float = Field(10.0, ge=0.1, alias="SMTP_TIMEOUT")
    from_address: str = Field("no-reply@localhost", alias="MAIL_FROM")
    app_name: str = Field("StepUnity", alias="APP_NAME")

    model_config = _SECTION_CONFIG

    @field_validator("enabled", "use_tls", "starttls", mode="before")
    @classmethod
    def _parse_flags(cls, value: str | bool) -> bool:
        return _parse_bool(value)


class IntegrationsConfig(BaseSettings):
    pwned_enabled: bool = Field(True, alias="PWNED_CHECK_ENABLED")
    pwned_base_url: str = Field("https://api.pwnedpasswords.com", alias="PWNED_BASE_URL")
    pwned_timeout: float = Field(5.0, ge=0.1, alias="PWNED_TIMEOUT")

    recaptcha_enabled: bool = Field(False, alias="RECAPTCHA_ENABLED")
    recaptcha_secret: SecretStr | None = Field(None, alias="RECAPTCHA_SECRET")
    recaptcha_verify_url: str = Field(
        "https://www.google.com/recaptcha/api/siteverify", alias="RECAPTCHA_VERIFY_URL"
    )
    recaptcha_timeout: float = Field(5.0, ge=0.1, alias="RECAPTCHA_TIMEOUT")

    model_config = _SECTION_CONFIG

    @field_validator("pwned_enabled", "recaptcha_enabled", mode="before")
    @classmethod
    def _parse_flags(cls, value: str | bool) -> bool:
        return _parse_bool(value)


class ResilienceConfig(BaseSettings):
    max_retries: int = Field(2, ge=0, alias="RESILIENCE_RETRIES")
    backoff_base: float = Field(0.5, ge=0.0, alias="RESILIENCE_BACKOFF_BASE")
    backoff_cap: float = Field(4.0, ge=0.0, alias="RESILIENCE_BACKOFF_CAP")
    circuit_fail_threshold: int = Field(5, ge=1, alias="RESILIENCE_CIRCUIT_THRESHOLD")
    circuit_reset_timeout: float = Field(60.0, ge=1.0, alias="RESILIENCE_CIRCUIT_RESET")

    model_config = _SECTION_CONFIG


class ObservabilityConfig(BaseSettings):
    metrics_enabled: bool = Field(True, alias="METRICS_ENABLED")
    service_name: str = Field("stepunity-api", alias="SERVICE_NAME")

    model_config = _SECTION_CONFIG


class StorageConfig(BaseSettings):
    uploads_dir: Path = Field(Path("uploads"), alias="UPLOADS_DIR")
    uploads_url_prefix: str = Field("/uploads", alias="UPLOADS_URL_PREFIX")
    max_upload_bytes: int = Field(5 * 1024 * 1024, ge=1, alias="MAX_UPLOAD_BYTES")

    model_config = _SECTION_CONFIG


class RetentionConfig(BaseSettings):
    retention_days: int = Field(30, ge=0, alias="TOKEN_CLEANUP_RETENTION_DAYS")

    model_config = _SECTION_CONFIG


def _database_config_factory() -> DatabaseConfig:
    return DatabaseConfig()  # type: ignore[call-arg]


def _auth_config_factory() -> AuthConfig:
    return AuthConfig()  # type: ignore[call-arg]


def _security_config_factory() -> SecurityConfig:
    return SecurityConfig()  # type: ignore[call-arg]


def _rate_limit_config_factory() -> RateLimitConfig:
    return RateLimitConfig()  # type: ignore[call-arg]


def _mail_config_factory() -> MailConfig:
    return MailConfig()  # type: ignore[call-arg]


def _integrations_config_factory() -> IntegrationsConfig:
    return IntegrationsConfig()  # type: ignore[call-arg]


def _resilience_config_factory() -> ResilienceConfig:
    return ResilienceConfig()  # type: ignore[call-arg]


def _observability_config_factory() -> ObservabilityConfig:
    return ObservabilityConfig()  # type: ignore[call-arg]


def _storage_config_factory() -> StorageConfig:
    return StorageConfig()  # type: ignore[call-arg]


def _retention_config_factory() -> RetentionConfig:
    return RetentionConfig()  # type: ignore[call-arg]


class AppConfig(BaseSettings):
    app_env: str = Field("development", alias="APP_ENV")
    secret_key: str = Field("dev", alias="SECRET_KEY")
    debug_logging: bool = Field(False, alias="DEBUG_LOGGING")

    database: DatabaseConfig = Field(default_factory=_database_config_factory)
    auth: AuthConfig = Field(default_factory=_auth_config_factory)
    security: SecurityConfig = Field(default_factory=_security_config_factory)
    rate_limits: RateLimitConfig = Field(default_factory=_rate_limit_config_factory)
    mail: MailConfig = Field(default_factory=_mail_config_factory)
    integrations: IntegrationsConfig = Field(default_factory=_integrations_config_factory)
    resilience: ResilienceConfig = Field(default_factory=_resilience_config_factory)
    observability: ObservabilityConfig = Field(default_factory=_observability_config_factory)
    storage: StorageConfig = Field(default_factory=_storage_config_factory)
    retention: RetentionConfig = Field(default_factory=_retention_config_factory)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        arbitrary_types_allowed=True,
    )

    @field_validator("debug_logging", mode="before")
    @classmethod
    def _parse_debug_logging(cls, value: str | bool) -> bool:
        return _parse_bool(value)

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "AppConfig":
        if not self.is_production():
            return self

        if (
            self.secret_key in _INSECURE_SECRETS
            or self.auth.jwt_secret.get_secret_value() in _INSECURE_SECRETS
        ):
            print(
                "\n❌ CRITICAL SECURITY ERROR: Insecure SECRET_KEY or JWT_SECRET detected in production!\n"
                "   Both must be strong random values in production.\n"
                "   Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(32))\"\n",
                file=sys.stderr,
            )
            sys.exit(1)

        # SameSite=None is rejected by browsers without Secure
        if not self.security.cookie_secure:
            self.security.cookie_secure = True

        warnings = []
        if self.security.cookie_samesite == "None":
            warnings.append("⚠️  Refresh cookie uses SameSite=None")
        if "*" in self.security.allowed_origins:
            warnings.append("⚠️  CORS allows wildcard (*) origins")
        if not self.security.enable_hsts:
            warnings.append("⚠️  HSTS is DISABLED (recommended for HTTPS)")
        if not self.mail.enabled:
            warnings.append("⚠️  SMTP is DISABLED, verification codes will not be delivered")

        if warnings:
            print("\n⚠️  PRODUCTION SECURITY WARNINGS:", file=sys.stderr)
            for warning in warnings:
                print(f"   {warning}", file=sys.stderr)
            print(
                "   Consider enabling these security features in production.\n",
                file=sys.stderr,
            )

        return self

    def is_production(self) -> bool:
        return self.app_env.lower() in ("production", "prod")


@lru_cache(maxsize=1)
def load_config() -> AppConfig:
    return AppConfig()


__all__ = [
    "AppConfig",
    "AuthConfig",
    "DatabaseConfig",
    "IntegrationsConfig",
    "MailConfig",
    "ObservabilityConfig",
    "RateLimitConfig",
    "ResilienceConfig",
    "RetentionConfig",
    "SecurityConfig",
    "StorageConfig",
    "load_config",
]
