from __future__ import annotations
from typing import Any, Mapping
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.models.profile import Profile

EDITABLE_FIELDS = ("display_name", "bio", "country")


def normalize_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Keep editable fields only; blank strings are stored as NULL."""
    out: dict[str, Any] = {}
    for name in EDITABLE_FIELDS:
        if name not in fields:
            continue
        value = fields[name]
        if isinstance(value, str):
            value = value.strip() or None
        out[name] = value
    return out


class SqlProfiles:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_profile(self, user_id: UUID) -> Profile | None:
        return await self.session.scalar(select(Profile).where(Profile.user_id == user_id))

    async def update_profile(self, user_id: UUID, fields: Mapping[str, Any]) -> Profile | None:
        profile = await self.get_profile(user_id)
        if not profile:
            return None
        for name, value in normalize_fields(fields).items():
            setattr(profile, name, value)
        await self.session.commit()
        await self.session.refresh(profile)
        return profile

    async def set_avatar(self, user_id: UUID, url: str, key: str) -> Profile | None:
        profile = await self.get_profile(user_id)
        if not profile:
            return None
        profile.avatar_url = url
        profile.avatar_key = key
        await self.session.commit()
        await self.session.refresh(profile)
        return profile
