"""Daily usage reset job. Run once per day from the scheduler."""
from __future__ import annotations

import argparse
import logging

from sqlalchemy import func, select

from codesage.core.config import settings
from codesage.core.database import get_db_session, user_profiles
from codesage.core.logging import configure_logging
from codesage.features.limiter.server import reset_daily_usage
from codesage.models.user import UserRole

logger = logging.getLogger("codesage.workers.reset_daily_usage")


def run_reset(*, dry_run: bool = False) -> dict:
    if dry_run:
        with get_db_session() as session:
            candidates = session.execute(
                select(func.count())
                .select_from(user_profiles)
                .where(user_profiles.c.role == UserRole.FREE_USER.value)
            ).scalar() or 0
        result = {"dry_run": True, "candidates": candidates, "reset": 0}
    else:
        reset = reset_daily_usage()
        result = {"dry_run": False, "candidates": reset, "reset": reset}

    logger.info("[reset_daily_usage] done", extra=result)
    return result


def main() -> int:
    parser = argparse.ArgumentParser(description="Zero daily usage counters for free-tier profiles.")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Count affected profiles without updating.")
    args = parser.parse_args()

    configure_logging(settings.ENV)
    print(run_reset(dry_run=args.dry_run))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
