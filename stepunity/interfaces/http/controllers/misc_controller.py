# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from pathlib import Path

from flask import Blueprint, jsonify, send_from_directory
from sqlalchemy.engine import Engine

from stepunity.infrastructure.health import check_database
from stepunity.infrastructure.observability import metrics_response


class MiscController:
    def __init__(
        self,
        *,
        engine: Engine,
        uploads_dir: Path,
        uploads_url_prefix: str = "/uploads",
        metrics_enabled: bool = True,
    ) -> None:
        self._engine = engine
        self._uploads_dir = uploads_dir
        self._uploads_url_prefix = "/" + uploads_url_prefix.strip("/")
        self._metrics_enabled = metrics_enabled

    def as_blueprint(self) -> Blueprint:
        bp = Blueprint("misc", __name__)
        bp.add_url_rule("/api/health", view_func=self.health, methods=["GET"])
        if self._metrics_enabled:
            bp.add_url_rule("/api/metrics", view_func=self.metrics, methods=["GET"])
        bp.add_url_rule(
            f"{self._uploads_url_prefix}/<path:filename>",
            view_func=self.uploads,
            methods=["GET"],
        )
        return bp

    def health(self):
        database_ok = check_database(self._engine)
        status = {"ok": database_ok, "database": "ok" if database_ok else "error"}
        return jsonify(status), 200 if database_ok else 503

    def metrics(self):
        return metrics_response()

    def uploads(self, filename: str):
        # send_from_directory refuses paths escaping the directory
        return send_from_directory(self._uploads_dir.resolve(), filename, max_age=86400)
