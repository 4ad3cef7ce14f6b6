"""Reset routine shared by the refresh sweeper and the quota read path."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from cardquota_api.models.quota import QuotaTracking
from cardquota_api.services.quota.definitions import load_definition
from cardquota_api.services.quota.ledger import QuotaLedgerStore, key_for_row
from cardquota_api.services.quota.schedule import ensure_utc, is_refresh_due, utcnow

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


@dataclass
class RefreshSummary:
    """Outcome of one sweep over pending ledger rows."""

    checked: int = 0
    refreshed: int = 0
    refreshed_ids: List[UUID] = field(default_factory=list)

    def as_dict(self) -> dict[str, int]:
        return {"checked": self.checked, "refreshed": self.refreshed}


async def refresh_row_if_due(db: AsyncSession, row: QuotaTracking, *, now: datetime | None = None) -> bool:
    """Reset ``row`` when its stored reset instant has passed.

    Returns ``True`` when the row was reset. The caller owns the transaction.
    """

    current = ensure_utc(now) if now is not None else utcnow()
    if not is_refresh_due(row.next_refresh_at, now=current):
        return False

    definition = await load_definition(db, key_for_row(row))
    QuotaLedgerStore.reset(row, definition, now=current)
    logger.info(
        "Quota ledger row refreshed",
        quota_id=str(row.id),
        next_refresh_at=row.next_refresh_at.isoformat() if row.next_refresh_at else None,
        definition_missing=definition is None,
    )
    return True


async def refresh_due_rows(db: AsyncSession, *, now: datetime | None = None) -> RefreshSummary:
    """Refresh every due row inside the caller's session (read path).

    Due rows are re-read with a row lock before the reset, the same way the
    sweeper does it, so usage written after the pending scan is never wiped.
    """

    current = ensure_utc(now) if now is not None else utcnow()
    summary = RefreshSummary()
    store = QuotaLedgerStore(db)
    pending = await store.list_pending_refresh()
    summary.checked = len(pending)
    due_ids = [row.id for row in pending if is_refresh_due(row.next_refresh_at, now=current)]

    for quota_id in due_ids:
        row = await store.get_by_id(quota_id, for_update=True)
        if row is None:
            continue
        if await refresh_row_if_due(db, row, now=current):
            summary.refreshed += 1
            summary.refreshed_ids.append(quota_id)
    if summary.refreshed:
        await db.flush()
    return summary


async def _open_session(session_factory: SessionFactory) -> AsyncSession:
    maybe_session = session_factory()
    if isinstance(maybe_session, AsyncSession):
        return maybe_session
    return await maybe_session


async def refresh_due_quotas(session_factory: SessionFactory, *, now: datetime | None = None) -> RefreshSummary:
    """Sweep pending rows, resetting each due row in its own transaction.

    Rows are re-read with a row lock and re-checked before the reset, so a
    concurrent sweep or read-path refresh never resets the same period twice.
    """

    current = ensure_utc(now) if now is not None else utcnow()
    summary = RefreshSummary()

    session = await _open_session(session_factory)
    async with session as managed_session:
        pending = await QuotaLedgerStore(managed_session).list_pending_refresh()
        due_ids = [row.id for row in pending if is_refresh_due(row.next_refresh_at, now=current)]
        summary.checked = len(pending)

    for quota_id in due_ids:
        session = await _open_session(session_factory)
        async with session as managed_session:
            async with managed_session.begin():
                row = await QuotaLedgerStore(managed_session).get_by_id(quota_id, for_update=True)
                if row is None:
                    continue
                if await refresh_row_if_due(managed_session, row, now=current):
                    summary.refreshed += 1
                    summary.refreshed_ids.append(quota_id)

    return summary


__all__ = [
    "RefreshSummary",
    "SessionFactory",
    "refresh_due_quotas",
    "refresh_due_rows",
    "refresh_row_if_due",
]
