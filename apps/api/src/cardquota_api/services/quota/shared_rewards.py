"""Shared reward mapping: aliased schemes accrue on a root scheme's entitlements."""

from __future__ import annotations

from typing import Iterable
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cardquota_api.models.quota import SharedRewardMapping


class SharedRewardResolver:
    """Reads and writes ``scheme -> root scheme`` redirections.

    The mapping graph is one level deep. Ownership (both schemes on the same
    card) is validated by whoever configures the mapping, not here.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def resolve_target(self, scheme_id: UUID) -> UUID:
        stmt = select(SharedRewardMapping.root_scheme_id).where(SharedRewardMapping.scheme_id == scheme_id)
        root_scheme_id = (await self._db.execute(stmt)).scalar_one_or_none()
        return root_scheme_id or scheme_id

    async def resolve_targets(self, scheme_ids: Iterable[UUID]) -> dict[UUID, UUID]:
        """Map every given scheme to its canonical scheme (itself when unmapped)."""

        ids = list(dict.fromkeys(scheme_ids))
        resolved = {scheme_id: scheme_id for scheme_id in ids}
        if not ids:
            return resolved
        stmt = select(SharedRewardMapping).where(SharedRewardMapping.scheme_id.in_(ids))
        for mapping in (await self._db.execute(stmt)).scalars():
            resolved[mapping.scheme_id] = mapping.root_scheme_id
        return resolved

    async def set_mapping(self, scheme_id: UUID, root_scheme_id: UUID | None) -> SharedRewardMapping | None:
        """Point ``scheme_id`` at ``root_scheme_id``; ``None`` or self removes the mapping."""

        if root_scheme_id is not None:
            # keep depth 1: a mapped root is replaced by its own root
            root_scheme_id = await self.resolve_target(root_scheme_id)

        if root_scheme_id is None or root_scheme_id == scheme_id:
            await self._db.execute(delete(SharedRewardMapping).where(SharedRewardMapping.scheme_id == scheme_id))
            await self._db.flush()
            logger.info("Cleared shared reward mapping", scheme_id=str(scheme_id))
            return None

        await self._db.execute(
            update(SharedRewardMapping)
            .where(SharedRewardMapping.root_scheme_id == scheme_id)
            .values(root_scheme_id=root_scheme_id)
        )
        mapping = await self._db.get(SharedRewardMapping, scheme_id)
        if mapping is None:
            mapping = SharedRewardMapping(scheme_id=scheme_id, root_scheme_id=root_scheme_id)
            self._db.add(mapping)
        else:
            mapping.root_scheme_id = root_scheme_id
        await self._db.flush()
        logger.info(
            "Updated shared reward mapping",
            scheme_id=str(scheme_id),
            root_scheme_id=str(root_scheme_id),
        )
        return mapping


__all__ = ["SharedRewardResolver"]
