"""Quota refresh sweep job."""

from __future__ import annotations

from typing import Dict

from loguru import logger

from cardquota_api.observability.quota import get_quota_store
from cardquota_api.services.quota.refresh import SessionFactory, refresh_due_quotas


async def run_quota_refresh(*, session_factory: SessionFactory) -> Dict[str, int]:
    """Reset every ledger row whose scheduled refresh instant has passed."""

    summary = await refresh_due_quotas(session_factory)
    get_quota_store().record_sweep(refreshed=summary.refreshed)
    logger.info("Quota refresh job completed", **summary.as_dict())
    return summary.as_dict()


__all__ = ["run_quota_refresh"]
