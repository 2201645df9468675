# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from stepunity.domain.users.entities import User
from stepunity.shared.utils.time import isoformat_z


class _Request(BaseModel):
    model_config = ConfigDict(extra="ignore", str_max_length=4096)


class RegisterStartRequestDTO(_Request):
    email: EmailStr
    username: str = Field(min_length=3, max_length=24)
    password: str = Field(min_length=6, max_length=200)
    captcha_token: str | None = Field(None, alias="captchaToken")

    @field_validator("username")
    @classmethod
    def _strip_username(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 3:
            msg = "Username must be at least 3 characters"
            raise ValueError(msg)
        return value


class RegisterVerifyRequestDTO(_Request):
    email: EmailStr
    code: str = Field(min_length=6, max_length=6)

    @field_validator("code", mode="before")
    @classmethod
    def _strip_code(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class LoginRequestDTO(_Request):
    email: EmailStr
    password: str = Field(min_length=6, max_length=200)
    remember_me: bool = Field(True, alias="rememberMe")


class ForgotRequestDTO(_Request):
    email: EmailStr
    captcha_token: str | None = Field(None, alias="captchaToken")


class ResetRequestDTO(_Request):
    token: str = Field(min_length=20, max_length=512)
    new_password: str = Field(min_length=8, max_length=128, alias="newPassword")


class EmailChangeProofRequestDTO(_Request):
    password: str = Field(min_length=6, max_length=200)


class EmailChangeStartRequestDTO(_Request):
    new_email: EmailStr = Field(alias="newEmail")
    proof: str = Field(min_length=20)


class EmailChangeVerifyRequestDTO(_Request):
    new_email: EmailStr = Field(alias="newEmail")
    code: str = Field(min_length=6, max_length=6)

    @field_validator("code", mode="before")
    @classmethod
    def _strip_code(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class UserDTO(BaseModel):
    id: int
    email: str
    username: str
    display_name: str | None = Field(serialization_alias="displayName")
    avatar_url: str | None = Field(serialization_alias="avatarUrl")
    created_at: str = Field(serialization_alias="createdAt")

    @classmethod
    def from_entity(cls, user: User) -> UserDTO:
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            display_name=user.display_name,
            avatar_url=user.avatar_url,
            created_at=isoformat_z(user.created_at),
        )

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)


class AuthSuccessDTO(BaseModel):
    ok: bool = True
    access_token: str = Field(serialization_alias="accessToken")
    user: dict

    @classmethod
    def build(cls, access_token: str, user: User) -> AuthSuccessDTO:
        return cls(access_token=access_token, user=UserDTO.from_entity(user).to_json())


__all__ = [
    "AuthSuccessDTO",
    "EmailChangeProofRequestDTO",
    "EmailChangeStartRequestDTO",
    "EmailChangeVerifyRequestDTO",
    "ForgotRequestDTO",
    "LoginRequestDTO",
    "RegisterStartRequestDTO",
    "RegisterVerifyRequestDTO",
    "ResetRequestDTO",
    "UserDTO",
]
