from __future__ import annotations
from typing import Iterable, Sequence
from uuid import UUID
from sqlalchemy import Text, cast, func, select, update
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.ext.asyncio import AsyncSession

from portal.models.challenge import Challenge, Team
from portal.services.progress import ChallengeRef


def to_ref(ch: Challenge) -> ChallengeRef:
    return ChallengeRef(
        id=ch.id, title=ch.title, category=ch.category,
        difficulty=ch.difficulty, points=ch.points, is_active=ch.is_active,
    )


class SqlCatalog:
    """Challenge and team metadata. Writes are limited to the attachment list."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_challenge(self, challenge_id: UUID) -> Challenge | None:
        return await self.session.get(Challenge, challenge_id)

    async def get_challenges(self, ids: Iterable[UUID]) -> dict[UUID, ChallengeRef]:
        ids = list(set(ids))
        if not ids:
            return {}
        rows = (await self.session.execute(select(Challenge).where(Challenge.id.in_(ids)))).scalars().all()
        return {c.id: to_ref(c) for c in rows}

    async def count_active_challenges(self) -> int:
        total = await self.session.scalar(
            select(func.count()).select_from(Challenge).where(Challenge.is_active.is_(True))
        )
        return int(total or 0)

    async def get_team(self, team_id: UUID) -> Team | None:
        return await self.session.get(Team, team_id)

    # Single-statement array updates: concurrent adds and removes compose

    async def add_files(self, challenge_id: UUID, urls: Sequence[str]) -> list[str]:
        stmt = (
            update(Challenge)
            .where(Challenge.id == challenge_id)
            .values(files=func.array_cat(Challenge.files, cast(list(urls), ARRAY(Text))))
            .returning(Challenge.files)
        )
        files = await self.session.scalar(stmt)
        await self.session.commit()
        return list(files or [])

    async def remove_file(self, challenge_id: UUID, url: str) -> list[str]:
        stmt = (
            update(Challenge)
            .where(Challenge.id == challenge_id)
            .values(files=func.array_remove(Challenge.files, url))
            .returning(Challenge.files)
        )
        files = await self.session.scalar(stmt)
        await self.session.commit()
        return list(files or [])
