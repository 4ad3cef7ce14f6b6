"""Translate quota domain errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from cardquota_api.services.quota.errors import QuotaError, QuotaNotFoundError


async def http_error(db: AsyncSession, exc: QuotaError) -> HTTPException:
    """Roll back the request's unit of work and map ``exc`` to 404 or 400."""

    await db.rollback()
    if isinstance(exc, QuotaNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


__all__ = ["http_error"]
