# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Avatar file storage adapter."""

from __future__ import annotations

import uuid
from pathlib import Path

from stepunity.application.interfaces import AvatarStorage, UploadedFile
from stepunity.domain.users.exceptions import InvalidAvatarError
from stepunity.shared.logging import logger

_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"\xff\xd8\xff", "jpg"),
    (b"GIF87a", "gif"),
    (b"GIF89a", "gif"),
)


def sniff_image_extension(data: bytes) -> str | None:
    for signature, extension in _SIGNATURES:
        if data.startswith(signature):
            return extension
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    return None


class LocalAvatarStorage(AvatarStorage):
    """Stores avatars on the local filesystem within the configured root."""

    SUBDIR = "avatars"

    def __init__(self, root: Path, *, url_prefix: str = "/uploads", max_bytes: int) -> None:
        self._root = root
        self._url_prefix = url_prefix.rstrip("/")
        self._max_bytes = max_bytes

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, relative_path: str) -> Path:
        root = self._root.resolve()
        path = (root / relative_path).resolve()
        if not path.is_relative_to(root):
            msg = "Attempted directory traversal outside storage root"
            raise ValueError(msg)
        return path

    def save(self, upload: UploadedFile) -> str:
        if not upload.data or len(upload.data) > self._max_bytes:
            raise InvalidAvatarError()
        extension = sniff_image_extension(upload.data)
        if extension is None:
            raise InvalidAvatarError()

        relative = f"{self.SUBDIR}/{uuid.uuid4().hex}.{extension}"
        file_path = self._resolve(relative)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(upload.data)
        logger.debug(f"storage: wrote avatar size={len(upload.data)}")
        return f"{self._url_prefix}/{relative}"

    def delete(self, url: str) -> None:
        prefix = f"{self._url_prefix}/{self.SUBDIR}/"
        if not url.startswith(prefix):
            return
        try:
            file_path = self._resolve(url[len(self._url_prefix) + 1 :])
        except ValueError:
            logger.warning("storage: refused to delete path outside storage root")
            return
        file_path.unlink(missing_ok=True)


__all__ = ["LocalAvatarStorage", "sniff_image_extension"]
