#!/usr/bin/env python3
import argparse
import sys
from datetime import timedelta
from pathlib import Path

project_root = Path(__file__).resolve().parents[1]
sys.path.append(str(project_root))

from sqlmodel import Session

from authcore.core.clock import utcnow
from authcore.core.config import settings
from authcore.core.database import engine
from authcore.core.logging import configure_logging
from authcore.services.token_cleanup import purge_expired_tokens


def main() -> int:
    parser = argparse.ArgumentParser(description="Delete expired verification, reset and refresh tokens")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level")
    parser.add_argument(
        "--refresh-retention-days",
        type=int,
        default=settings.refresh_token_retention_days,
        help="Days to keep expired refresh tokens for auditing",
    )
    args = parser.parse_args()

    configure_logging(args.log_level)

    with Session(engine) as session:
        counts = purge_expired_tokens(
            session,
            now=utcnow(),
            refresh_token_retention=timedelta(days=args.refresh_retention_days),
        )

    for label, count in counts.items():
        print(f"{label}: {count} deleted")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
