"""Run one quota refresh sweep outside the API process.

Useful when the in-process worker and scheduler are disabled, or to force
resets right after a refresh day has passed.

Example:
    python tooling/scripts/run_quota_refresh.py
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reset every quota whose refresh time has passed")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override the configured async database URL for this run.",
    )
    return parser.parse_args()


async def _run(database_url: str | None) -> dict[str, int]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # type: ignore import-position

    from cardquota_api.db.session import async_session  # type: ignore import-position
    from cardquota_api.services.quota.refresh import refresh_due_quotas  # type: ignore import-position

    if not database_url:
        summary = await refresh_due_quotas(async_session)
        return summary.as_dict()

    engine = create_async_engine(database_url, future=True)
    try:
        factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
        summary = await refresh_due_quotas(factory)
    finally:
        await engine.dispose()
    return summary.as_dict()


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.database_url))
    logger.success("Quota refresh run completed", **summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
