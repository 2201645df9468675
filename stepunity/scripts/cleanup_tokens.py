# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Delete expired or revoked auth records older than the retention window."""

from __future__ import annotations

import argparse
from datetime import timedelta

from stepunity.infrastructure.container import Container
from stepunity.infrastructure.db import init_db
from stepunity.shared.logging import setup_logging


def main(argv: list[str] | None = None) -> int:
    container = Container()
    parser = argparse.ArgumentParser(description="Purge stale refresh tokens, codes and reset links")
    parser.add_argument(
        "--retention-days",
        type=int,
        default=container.config.retention.retention_days,
        help="Keep records that ended within this many days (default from config)",
    )
    args = parser.parse_args(argv)
    if args.retention_days < 0:
        parser.error("--retention-days must be >= 0")

    setup_logging(to_file=False)
    init_db(container.engine)
    report = container.purge_expired_tokens_use_case.execute(
        timedelta(days=args.retention_days)
    )
    print(f"refresh_tokens deleted: {report.refresh_tokens}")
    print(f"email_verifications deleted: {report.email_verifications}")
    print(f"password_resets deleted: {report.password_resets}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
