# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Typed payloads carried by verification drafts.

A draft is keyed by email and holds whatever the confirming step needs to
finish the flow. The payload is a tagged union so that promoting a draft
cannot silently drop a required field.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .exceptions import DraftPayloadError


class RegistrationPayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["register"] = "register"
    username: str = Field(min_length=3, max_length=64)
    display_name: str = Field(min_length=1, max_length=128)
    password_hash: str = Field(min_length=1)
    avatar_url: str | None = None


class EmailChangePayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["change_email"] = "change_email"
    user_id: int = Field(ge=1)


DraftPayload = Annotated[RegistrationPayload | EmailChangePayload, Field(discriminator="kind")]

_ADAPTER: TypeAdapter[RegistrationPayload | EmailChangePayload] = TypeAdapter(DraftPayload)


def dump_payload(payload: RegistrationPayload | EmailChangePayload) -> str:
    return payload.model_dump_json()


def parse_payload(raw: str | None) -> RegistrationPayload | EmailChangePayload:
    if not raw:
        raise DraftPayloadError()
    try:
        return _ADAPTER.validate_json(raw)
    except PydanticValidationError as exc:
        raise DraftPayloadError() from exc


__all__ = [
    "DraftPayload",
    "EmailChangePayload",
    "RegistrationPayload",
    "dump_payload",
    "parse_payload",
]
