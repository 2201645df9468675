# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

import time

from flask import Flask, Response, g, request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

REQUEST_LATENCY = Histogram(
    "stepunity_request_latency_seconds",
    "Request latency",
    labelnames=("endpoint",),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)
REQUEST_COUNTER = Counter(
    "stepunity_requests_total",
    "Number of processed requests",
    labelnames=("endpoint", "status"),
)
LOGIN_COUNTER = Counter(
    "stepunity_logins_total",
    "Login attempts by outcome",
    labelnames=("result",),
)
REFRESH_COUNTER = Counter(
    "stepunity_refresh_total",
    "Refresh rotations by outcome",
    labelnames=("result",),
)
VERIFICATION_COUNTER = Counter(
    "stepunity_verifications_total",
    "Email code verifications by outcome",
    labelnames=("result",),
)
EMAIL_COUNTER = Counter(
    "stepunity_emails_total",
    "Outbound emails by kind and outcome",
    labelnames=("kind", "result"),
)


def track_requests(app: Flask) -> None:
    @app.before_request
    def _start_timer() -> None:
        g._metrics_t0 = time.perf_counter()

    @app.after_request
    def _observe(response: Response) -> Response:
        started = getattr(g, "_metrics_t0", None)
        if started is not None:
            endpoint = request.endpoint or "unmatched"
            REQUEST_LATENCY.labels(endpoint=endpoint).observe(time.perf_counter() - started)
            REQUEST_COUNTER.labels(endpoint=endpoint, status=str(response.status_code)).inc()
        return response


def metrics_response() -> Response:
    return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)


__all__ = [
    "EMAIL_COUNTER",
    "LOGIN_COUNTER",
    "REFRESH_COUNTER",
    "REQUEST_COUNTER",
    "REQUEST_LATENCY",
    "VERIFICATION_COUNTER",
    "metrics_response",
    "track_requests",
]
